"""
Tests for SearchIndexClient against a mocked opensearch-py client.
"""

import pytest
from unittest.mock import MagicMock, patch

from opensearchpy import RequestsHttpConnection
from opensearchpy.exceptions import ConnectionError as OpenSearchConnectionError
from opensearchpy.exceptions import NotFoundError, RequestError

from core.storage.client import SearchIndexClient
from core.storage.schemas import IndexSchema


@pytest.fixture
def opensearch_cls():
    with patch('core.storage.client.OpenSearch') as mock_cls:
        yield mock_cls


@pytest.fixture
def raw(opensearch_cls):
    return opensearch_cls.return_value


class TestClientConstruction:
    """TLS and auth derived from configuration"""

    def test_https_with_basic_auth(self, opensearch_cls):
        client = SearchIndexClient("https://search.local:9200/", username="admin",
                                   password="secret", verify_certs=False, timeout=5.0)

        client.client

        kwargs = opensearch_cls.call_args.kwargs
        assert kwargs['hosts'] == ["https://search.local:9200"]
        assert kwargs['http_auth'] == ("admin", "secret")
        assert kwargs['use_ssl'] is True
        assert kwargs['verify_certs'] is False
        assert kwargs['connection_class'] is RequestsHttpConnection
        assert kwargs['timeout'] == 5.0

    def test_plain_http_without_auth(self, opensearch_cls):
        client = SearchIndexClient("http://localhost:9200", username="admin")

        client.client

        kwargs = opensearch_cls.call_args.kwargs
        assert kwargs['http_auth'] is None
        assert kwargs['use_ssl'] is False


class TestConnection:

    @pytest.mark.asyncio
    async def test_connect(self, raw):
        raw.info.return_value = {'version': {'number': '2.11.0'}}
        client = SearchIndexClient(timeout=7.0)

        assert await client.connect() is True
        assert client.is_connected is True
        raw.info.assert_called_once_with(request_timeout=7.0)

    @pytest.mark.asyncio
    async def test_connect_failure(self, raw):
        raw.info.side_effect = OpenSearchConnectionError("N/A", "refused", Exception("refused"))
        client = SearchIndexClient()

        assert await client.connect() is False
        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_disconnect_closes_client(self, raw):
        raw.info.return_value = {}
        client = SearchIndexClient()
        await client.connect()

        await client.disconnect()

        raw.close.assert_called_once()
        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_health_check(self, raw):
        raw.cluster.health.return_value = {'status': 'yellow'}

        health = await SearchIndexClient().health_check()

        assert health['status'] == 'healthy'
        assert health['cluster_status'] == 'yellow'

    @pytest.mark.asyncio
    async def test_health_check_failure(self, raw):
        raw.cluster.health.side_effect = RuntimeError("boom")

        health = await SearchIndexClient().health_check()

        assert health['status'] == 'unhealthy'


class TestIndexManagement:

    @pytest.mark.asyncio
    async def test_index_exists(self, raw):
        raw.indices.exists.return_value = True

        result = await SearchIndexClient().index_exists("subscribers")

        assert result.details['exists'] is True

    @pytest.mark.asyncio
    async def test_create_index(self, raw):
        config = IndexSchema.get_subscriber_index_config("subscribers")

        result = await SearchIndexClient(timeout=3.0).create_index(config)

        assert result.success is True
        assert result.affected_count == 1
        call = raw.indices.create.call_args.kwargs
        assert call['index'] == "subscribers"
        assert call['body'] == config.to_opensearch_body()
        assert call['request_timeout'] == 3.0

    @pytest.mark.asyncio
    async def test_create_existing_index_is_success(self, raw):
        raw.indices.create.side_effect = RequestError(400, 'resource_already_exists_exception', {})

        result = await SearchIndexClient().create_index(
            IndexSchema.get_subscriber_index_config("subscribers")
        )

        assert result.success is True
        assert result.affected_count == 0

    @pytest.mark.asyncio
    async def test_create_with_bad_mapping_fails(self, raw):
        raw.indices.create.side_effect = RequestError(400, 'mapper_parsing_exception', {})

        result = await SearchIndexClient().create_index(
            IndexSchema.get_subscriber_index_config("subscribers")
        )

        assert result.success is False
        assert 'mapper_parsing_exception' in result.error


class TestDocumentWrites:
    """Single-document and bulk writes"""

    @pytest.mark.asyncio
    async def test_index_document(self, raw):
        raw.index.return_value = {'result': 'created'}
        client = SearchIndexClient(timeout=4.0)

        result = await client.index_document("subscribers", "ATL001", {'full_name': 'Rajesh Kumar'})

        assert result.success is True
        raw.index.assert_called_once_with(
            index="subscribers", id="ATL001", body={'full_name': 'Rajesh Kumar'}, request_timeout=4.0
        )

    @pytest.mark.asyncio
    async def test_index_document_failure(self, raw):
        raw.index.side_effect = RuntimeError("read timed out")
        client = SearchIndexClient()

        result = await client.index_document("subscribers", "ATL001", {})

        assert result.success is False
        assert result.error_details == {'id': 'ATL001'}
        assert client.get_performance_stats()['failed_requests'] == 1

    @pytest.mark.asyncio
    async def test_delete_missing_document_is_success(self, raw):
        raw.delete.side_effect = NotFoundError(404, 'not_found', {})

        result = await SearchIndexClient().delete_document("subscribers", "GONE")

        assert result.success is True
        assert result.affected_count == 0

    @pytest.mark.asyncio
    async def test_delete_failure(self, raw):
        raw.delete.side_effect = RuntimeError("cluster unavailable")

        result = await SearchIndexClient().delete_document("subscribers", "D1")

        assert result.success is False

    @pytest.mark.asyncio
    async def test_get_document(self, raw):
        raw.get.return_value = {'_id': 'A', '_source': {'status': 'active'}}

        result = await SearchIndexClient().get_document("subscribers", "A")

        assert result.details == {'found': True, 'source': {'status': 'active'}}

    @pytest.mark.asyncio
    async def test_get_missing_document(self, raw):
        raw.get.side_effect = NotFoundError(404, 'not_found', {})

        result = await SearchIndexClient().get_document("subscribers", "A")

        assert result.success is True
        assert result.details['found'] is False

    @pytest.mark.asyncio
    async def test_bulk_index_builds_actions(self, raw):
        raw.bulk.return_value = {'errors': False, 'items': [
            {'index': {'_id': 'A', 'status': 201}},
            {'index': {'_id': 'B', 'status': 200}},
        ]}

        result = await SearchIndexClient().bulk_index("subscribers", [('A', {'n': 1}), ('B', {'n': 2})])

        assert result.affected_count == 2
        assert result.details['failed_ids'] == []
        assert raw.bulk.call_args.kwargs['body'] == [
            {'index': {'_index': 'subscribers', '_id': 'A'}}, {'n': 1},
            {'index': {'_index': 'subscribers', '_id': 'B'}}, {'n': 2},
        ]

    @pytest.mark.asyncio
    async def test_bulk_item_errors(self, raw):
        raw.bulk.return_value = {'errors': True, 'items': [
            {'index': {'_id': 'A', 'status': 201}},
            {'index': {'_id': 'B', 'status': 400, 'error': {'type': 'mapper_parsing_exception'}}},
        ]}

        result = await SearchIndexClient().bulk_index("subscribers", [('A', {}), ('B', {})])

        assert result.success is True
        assert result.affected_count == 1
        assert result.details['failed_ids'] == ['B']
        assert result.details['item_errors']['B'] == {'type': 'mapper_parsing_exception'}
        assert result.warnings

    @pytest.mark.asyncio
    async def test_bulk_request_failure(self, raw):
        raw.bulk.side_effect = RuntimeError("413 request entity too large")

        result = await SearchIndexClient().bulk_index("subscribers", [('A', {})])

        assert result.success is False
        assert result.total_count == 1

    @pytest.mark.asyncio
    async def test_empty_bulk_makes_no_request(self, raw):
        result = await SearchIndexClient().bulk_index("subscribers", [])

        assert result.success is True
        raw.bulk.assert_not_called()

    @pytest.mark.asyncio
    async def test_count(self, raw):
        raw.count.return_value = {'count': 42}

        result = await SearchIndexClient().count("subscribers")

        assert result.affected_count == 42
