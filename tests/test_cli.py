"""
Unit tests for CLI functionality.

Tests the subscriber-sync command-line interface commands: run, backfill,
ensure-index, status.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from click.testing import CliRunner

from core import __version__
from core.errors import ConsumerFatalError, DocumentStoreError, StartupError
from core.storage.indexing import BackfillResult
from subscriber_sync.cli import main
from tests.fakes import FakeDocumentStore, FakeSearchIndex


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_setup():
    """Keep the CLI from reconfiguring logging or reading .env files"""
    with patch('subscriber_sync.cli.setup_logging'), patch('subscriber_sync.cli.load_dotenv'):
        yield


@pytest.fixture
def service_cls():
    with patch('subscriber_sync.cli.SyncService') as mock_cls:
        service = mock_cls.return_value
        service.run = AsyncMock()
        service.run_backfill_only = AsyncMock(return_value=0)
        service.backfill = MagicMock()
        service.backfill.last_result = None
        yield mock_cls


class TestMain:

    def test_version(self, runner):
        result = runner.invoke(main, ['--version'])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_invalid_configuration_exits_1(self, runner, service_cls):
        result = runner.invoke(main, ['run'], env={'MONGODB_URI': 'localhost:27017'})

        assert result.exit_code == 1
        service_cls.assert_not_called()

    def test_missing_config_file_exits_1(self, runner, tmp_path):
        result = runner.invoke(main, ['status', '--config', str(tmp_path / 'absent.json')])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestRunCommand:
    """Test the run command"""

    def test_run(self, runner, service_cls):
        result = runner.invoke(main, ['run'])

        assert result.exit_code == 0
        service_cls.return_value.run.assert_awaited_once_with(run_backfill=None)

    def test_skip_backfill(self, runner, service_cls):
        result = runner.invoke(main, ['run', '--skip-backfill'])

        assert result.exit_code == 0
        service_cls.return_value.run.assert_awaited_once_with(run_backfill=False)

    def test_config_file_is_used(self, runner, service_cls, tmp_path):
        config_file = tmp_path / 'sync.json'
        config_file.write_text('{"opensearch": {"index_name": "unified_datasets"}}')

        result = runner.invoke(main, ['run', '-c', str(config_file)])

        assert result.exit_code == 0
        config = service_cls.call_args.args[0]
        assert config.opensearch.index_name == "unified_datasets"

    @pytest.mark.parametrize("error", [
        StartupError("Document Store unavailable"),
        ConsumerFatalError("Could not open change stream after 5 attempts"),
        DocumentStoreError("Failed to fetch document ATL001: connection reset"),
    ])
    def test_fatal_errors_exit_1(self, runner, service_cls, error):
        service_cls.return_value.run.side_effect = error

        result = runner.invoke(main, ['run'])

        assert result.exit_code == 1


class TestBackfillCommand:
    """Test the backfill command"""

    def test_backfill(self, runner, service_cls):
        service = service_cls.return_value
        service.run_backfill_only.return_value = 8
        service.backfill.last_result = BackfillResult(
            index_name="subscribers", total_documents=8, synced_documents=8, total_batches=3
        )

        result = runner.invoke(main, ['backfill', '--batch-size', '3', '--progress'])

        assert result.exit_code == 0
        service.run_backfill_only.assert_awaited_once_with(batch_size=3, show_progress=True)
        assert "Backfill Result" in result.output
        assert "completed successfully" in result.output

    def test_backfill_with_failures_warns(self, runner, service_cls):
        service = service_cls.return_value
        service.run_backfill_only.return_value = 6
        service.backfill.last_result = BackfillResult(
            index_name="subscribers", total_documents=8, synced_documents=6,
            failed_documents=2, total_batches=3, failed_batches=1
        )

        result = runner.invoke(main, ['backfill'])

        assert result.exit_code == 0
        assert "not indexed" in result.output

    def test_backfill_startup_failure(self, runner, service_cls):
        service_cls.return_value.run_backfill_only.side_effect = StartupError("Search Index unavailable")

        result = runner.invoke(main, ['backfill'])

        assert result.exit_code == 1
        assert "Backfill failed" in result.output

    def test_backfill_read_failure(self, runner, service_cls):
        service_cls.return_value.run_backfill_only.side_effect = DocumentStoreError("cursor killed")

        result = runner.invoke(main, ['backfill'])

        assert result.exit_code == 1
        assert "Backfill failed" in result.output
        assert "cursor killed" in result.output

    def test_batch_size_must_be_positive(self, runner, service_cls):
        result = runner.invoke(main, ['backfill', '--batch-size', '0'])

        assert result.exit_code == 2


class TestEnsureIndexCommand:
    """Test the ensure-index command"""

    def test_creates_index(self, runner):
        index = FakeSearchIndex()
        with patch('subscriber_sync.cli._build_index_client', return_value=index):
            result = runner.invoke(main, ['ensure-index'])

        assert result.exit_code == 0
        assert "Created index 'subscribers'" in result.output
        assert index.disconnect_calls == 1

    def test_existing_index(self, runner):
        with patch('subscriber_sync.cli._build_index_client', return_value=FakeSearchIndex({'subscribers'})):
            result = runner.invoke(main, ['ensure-index'])

        assert result.exit_code == 0
        assert "already exists" in result.output

    def test_create_failure(self, runner):
        index = FakeSearchIndex()
        index.fail_create = True
        with patch('subscriber_sync.cli._build_index_client', return_value=index):
            result = runner.invoke(main, ['ensure-index'])

        assert result.exit_code == 1

    def test_unreachable_search_index(self, runner):
        index = FakeSearchIndex()
        index.connect_result = False
        with patch('subscriber_sync.cli._build_index_client', return_value=index):
            result = runner.invoke(main, ['ensure-index'])

        assert result.exit_code == 1


class TestStatusCommand:
    """Test the status command"""

    def test_all_ok(self, runner):
        index = FakeSearchIndex({'subscribers'})
        index.indices['subscribers']['A'] = {}
        store = FakeDocumentStore([{'_id': 'A'}])
        with patch('subscriber_sync.cli._build_store', return_value=store), \
             patch('subscriber_sync.cli._build_index_client', return_value=index):
            result = runner.invoke(main, ['status'])

        assert result.exit_code == 0
        assert "All systems ready" in result.output
        assert store.disconnect_calls == 1

    def test_document_store_down(self, runner):
        store = FakeDocumentStore()
        store.connect_error = DocumentStoreError("not a replica set")
        with patch('subscriber_sync.cli._build_store', return_value=store), \
             patch('subscriber_sync.cli._build_index_client', return_value=FakeSearchIndex({'subscribers'})):
            result = runner.invoke(main, ['status'])

        assert result.exit_code == 1
        assert "need attention" in result.output

    def test_missing_index(self, runner):
        with patch('subscriber_sync.cli._build_store', return_value=FakeDocumentStore()), \
             patch('subscriber_sync.cli._build_index_client', return_value=FakeSearchIndex()):
            result = runner.invoke(main, ['status'])

        assert result.exit_code == 1
