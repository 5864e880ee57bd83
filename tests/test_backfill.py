"""
Tests for BackfillSynchronizer bulk projection and progress reporting.
"""

import pytest
from bson import Binary, MinKey, Regex, Timestamp

from core.storage.indexing import BackfillSynchronizer, BackfillProgress, BackfillResult
from tests.fakes import FakeDocumentStore, FakeSearchIndex

INDEX = "subscribers"


def make_documents(count: int):
    return [
        {'_id': f"SUB{i:03d}", 'id': f"SUB{i:03d}", 'name': f"Subscriber {i}", '__v': 0}
        for i in range(count)
    ]


class TestBackfillSynchronizer:
    """Test suite for the one-off backfill"""

    @pytest.fixture
    def index(self):
        return FakeSearchIndex({INDEX})

    @pytest.mark.asyncio
    async def test_every_document_is_indexed_once(self, index):
        documents = make_documents(5)
        backfill = BackfillSynchronizer(FakeDocumentStore(documents), index, INDEX, batch_size=2)

        synced = await backfill.run_backfill()

        assert synced == 5
        assert set(index.documents(INDEX)) == {doc['_id'] for doc in documents}
        for doc in documents:
            body = index.documents(INDEX)[doc['_id']]
            assert body['full_name'] == doc['name']
            assert '_id' not in body

    @pytest.mark.asyncio
    async def test_empty_collection_issues_no_bulk_calls(self, index):
        backfill = BackfillSynchronizer(FakeDocumentStore(), index, INDEX)

        synced = await backfill.run_backfill()

        assert synced == 0
        assert index.bulk_calls == []
        assert backfill.last_result.total_batches == 0
        assert backfill.last_result.success_rate == 100.0

    @pytest.mark.asyncio
    async def test_batches_of_three_report_running_totals(self, index, caplog):
        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(8)), index, INDEX, batch_size=3)

        with caplog.at_level('INFO', logger='core.storage.indexing'):
            synced = await backfill.run_backfill()

        assert synced == 8
        assert index.bulk_calls == [3, 3, 2]
        messages = [r.message for r in caplog.records]
        assert "Synced 3 documents in batch 1 (3 total)" in messages
        assert "Synced 3 documents in batch 2 (6 total)" in messages
        assert "Synced 2 documents in batch 3 (8 total)" in messages

    @pytest.mark.asyncio
    async def test_batch_size_override(self, index):
        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(4)), index, INDEX, batch_size=100)

        await backfill.run_backfill(batch_size=1)

        assert index.bulk_calls == [1, 1, 1, 1]

    @pytest.mark.asyncio
    async def test_failed_bulk_call_is_skipped(self, index, caplog):
        index.fail_bulk_calls = {2}
        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(6)), index, INDEX, batch_size=2)

        with caplog.at_level('ERROR'):
            synced = await backfill.run_backfill()

        result = backfill.last_result
        assert synced == 4
        assert result.failed_batches == 1
        assert result.failed_documents == 2
        assert result.failed_ids == ['SUB002', 'SUB003']
        assert 'SUB002' not in index.documents(INDEX)
        assert 'SUB004' in index.documents(INDEX)
        assert any('batch 2 failed' in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_item_failures_are_logged_per_document(self, index, caplog):
        index.bulk_item_failures = {'SUB001'}
        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(3)), index, INDEX)

        with caplog.at_level('ERROR'):
            synced = await backfill.run_backfill()

        assert synced == 2
        assert backfill.last_result.failed_ids == ['SUB001']
        assert any('SUB001' in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unprojectable_documents_are_skipped(self, index):
        store = FakeDocumentStore(make_documents(2))
        store.documents['EMPTY'] = {'_id': None, 'name': 'broken'}
        backfill = BackfillSynchronizer(store, index, INDEX)

        synced = await backfill.run_backfill()

        assert synced == 2
        assert backfill.last_result.skipped_documents == 1
        assert backfill.last_result.total_documents == 3

    @pytest.mark.asyncio
    async def test_unserializable_document_does_not_fail_its_batch(self, index, caplog):
        class Opaque:
            pass

        store = FakeDocumentStore(make_documents(3))
        store.documents['SUB001']['blob'] = Opaque()
        backfill = BackfillSynchronizer(store, index, INDEX, batch_size=10)

        with caplog.at_level('WARNING', logger='core.storage.indexing'):
            synced = await backfill.run_backfill()

        assert synced == 2
        assert set(index.documents(INDEX)) == {'SUB000', 'SUB002'}
        assert index.bulk_calls == [2]
        assert backfill.last_result.skipped_documents == 1
        assert backfill.last_result.failed_batches == 0
        assert any('SUB001' in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_bson_only_values_are_indexed(self, index):
        store = FakeDocumentStore(make_documents(1))
        store.documents['SUB000'].update({
            'photo': Binary(b'\x00\x01'),
            'pattern': Regex('^98', 'i'),
            'synced_at': Timestamp(1700000000, 1),
            'floor': MinKey(),
        })
        backfill = BackfillSynchronizer(store, index, INDEX)

        synced = await backfill.run_backfill()

        assert synced == 1
        body = index.documents(INDEX)['SUB000']
        assert body['photo'] == 'AAE='
        assert body['pattern'] == '^98'
        assert body['floor'] is None

    @pytest.mark.asyncio
    async def test_progress_callbacks(self, index):
        reports = []
        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(5)), index, INDEX, batch_size=2)
        backfill.add_progress_callback(reports.append)

        await backfill.run_backfill()

        assert [p.current_batch for p in reports] == [1, 2, 3]
        assert [p.synced_documents for p in reports] == [2, 4, 5]
        assert reports[-1].progress_percentage == 100.0
        assert all(isinstance(p, BackfillProgress) for p in reports)

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_abort(self, index):
        def broken(progress):
            raise RuntimeError("display closed")

        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(2)), index, INDEX)
        backfill.add_progress_callback(broken)

        assert await backfill.run_backfill() == 2

    @pytest.mark.asyncio
    async def test_removed_callback_is_not_called(self, index):
        reports = []
        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(2)), index, INDEX)
        backfill.add_progress_callback(reports.append)
        backfill.remove_progress_callback(reports.append)

        await backfill.run_backfill()

        assert reports == []

    @pytest.mark.asyncio
    async def test_running_twice_converges(self, index):
        store = FakeDocumentStore(make_documents(3))
        backfill = BackfillSynchronizer(store, index, INDEX)

        await backfill.run_backfill()
        first = dict(index.documents(INDEX))
        await backfill.run_backfill()

        assert index.documents(INDEX) == first

    @pytest.mark.asyncio
    async def test_show_progress(self, index):
        backfill = BackfillSynchronizer(FakeDocumentStore(make_documents(3)), index, INDEX)

        assert await backfill.run_backfill(show_progress=True) == 3

    def test_invalid_batch_size(self, index):
        with pytest.raises(ValueError):
            BackfillSynchronizer(FakeDocumentStore(), index, INDEX, batch_size=0)


class TestBackfillResult:
    """Result bookkeeping"""

    def test_success_rate(self):
        result = BackfillResult(index_name=INDEX, total_documents=4, synced_documents=3)
        assert result.success_rate == 75.0

    def test_to_dict(self):
        result = BackfillResult(index_name=INDEX, total_documents=2, synced_documents=2, total_batches=1)
        data = result.to_dict()
        assert data['index_name'] == INDEX
        assert data['success_rate'] == 100.0
        assert data['total_batches'] == 1
