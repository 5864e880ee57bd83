"""
Tests for Resume Position storage.
"""

import pytest

from core.sync.resume import (
    FileResumeTokenStore,
    InMemoryResumeTokenStore,
    create_resume_store,
)


class TestInMemoryResumeTokenStore:

    @pytest.mark.asyncio
    async def test_save_load_clear(self):
        store = InMemoryResumeTokenStore()
        assert await store.load() is None

        await store.save({'_data': 'abc'})
        assert await store.load() == {'_data': 'abc'}

        await store.clear()
        assert await store.load() is None


class TestFileResumeTokenStore:
    """Test suite for the file-backed Resume Position"""

    @pytest.mark.asyncio
    async def test_token_survives_new_instance(self, tmp_path):
        path = tmp_path / 'state' / 'resume.json'
        await FileResumeTokenStore(path).save({'_data': '8263A1'})

        assert await FileResumeTokenStore(path).load() == {'_data': '8263A1'}

    @pytest.mark.asyncio
    async def test_missing_file_loads_none(self, tmp_path):
        assert await FileResumeTokenStore(tmp_path / 'absent.json').load() is None

    @pytest.mark.asyncio
    async def test_corrupt_file_is_ignored(self, tmp_path, caplog):
        path = tmp_path / 'resume.json'
        path.write_text('{not json')

        with caplog.at_level('WARNING'):
            assert await FileResumeTokenStore(path).load() is None
        assert any('unreadable' in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_non_object_token_is_ignored(self, tmp_path):
        path = tmp_path / 'resume.json'
        path.write_text('[1, 2]')

        assert await FileResumeTokenStore(path).load() is None

    @pytest.mark.asyncio
    async def test_save_leaves_no_temp_files(self, tmp_path):
        store = FileResumeTokenStore(tmp_path / 'resume.json')
        await store.save({'_data': 'one'})
        await store.save({'_data': 'two'})

        assert [p.name for p in tmp_path.iterdir()] == ['resume.json']
        assert await store.load() == {'_data': 'two'}

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, tmp_path):
        store = FileResumeTokenStore(tmp_path / 'resume.json')
        await store.save({'_data': 'one'})

        await store.clear()
        await store.clear()

        assert await store.load() is None


def test_create_resume_store(tmp_path):
    assert isinstance(create_resume_store(None), InMemoryResumeTokenStore)
    store = create_resume_store(tmp_path / 'resume.json')
    assert isinstance(store, FileResumeTokenStore)
