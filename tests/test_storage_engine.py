"""Tests for the crash-safe storage engine."""

import threading

import pytest

from yuque_exporter.errors import AssetNotFoundError, LockTimeoutError, StorageError
from yuque_exporter.models import ExportFormat
from yuque_exporter.storage import NAMESPACES, PathLock, StorageEngine
from yuque_exporter.storage import storage_engine as storage_module


class TestDirectoryBootstrap:
    """Test namespace directory creation."""

    def test_creates_exactly_the_namespaces(self, tmp_path):
        engine = StorageEngine(tmp_path / 'root')
        engine.initialize_directories()

        created = sorted(p.name for p in (tmp_path / 'root').iterdir())
        assert created == sorted(NAMESPACES)

    def test_is_idempotent(self, tmp_path):
        engine = StorageEngine(tmp_path / 'root')
        engine.initialize_directories()
        engine.put('configs/a.json', b'{}')
        engine.initialize_directories()

        assert engine.get('configs/a.json') == b'{}'

    @pytest.mark.parametrize('workers', [2, 10])
    def test_concurrent_bootstrap(self, tmp_path, workers):
        """Several engines bootstrapping the same root at once all succeed."""
        root = tmp_path / 'shared'
        errors = []
        barrier = threading.Barrier(workers)

        def bootstrap():
            try:
                barrier.wait()
                StorageEngine(root).initialize_directories()
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=bootstrap) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sorted(p.name for p in root.iterdir()) == sorted(NAMESPACES)


class TestPutGet:
    """Test the write protocol and reads."""

    def test_put_then_get(self, storage):
        storage.put('documents/x.html', b'<p>hi</p>')
        assert storage.get('documents/x.html') == b'<p>hi</p>'

    def test_get_missing_returns_none(self, storage):
        assert storage.get('documents/missing.json') is None

    def test_put_leaves_no_backup(self, storage):
        storage.put('configs/a.json', b'1')
        storage.put('configs/a.json', b'2')

        path = storage.path_for('configs/a.json')
        assert path.read_bytes() == b'2'
        assert not path.with_name('a.json.bak').exists()

    def test_failed_write_restores_and_keeps_backup(self, storage, monkeypatch):
        storage.put('configs/a.json', b'{"v": 1}')

        def broken_fsync(fd):
            raise OSError("disk full")

        monkeypatch.setattr(storage_module.os, 'fsync', broken_fsync)

        with pytest.raises(StorageError):
            storage.put('configs/a.json', b'{"v": 2}')

        path = storage.path_for('configs/a.json')
        assert path.read_bytes() == b'{"v": 1}'
        assert path.with_name('a.json.bak').exists()

    def test_key_outside_root_is_rejected(self, storage):
        with pytest.raises(StorageError):
            storage.path_for('../outside.txt')

    def test_delete_is_idempotent(self, storage):
        storage.put('documents/x.pdf', b'%PDF')
        storage.delete('documents/x.pdf')
        storage.delete('documents/x.pdf')

        assert not storage.exists('documents/x.pdf')

    def test_lock_timeout_raises(self, tmp_path):
        engine = StorageEngine(tmp_path / 'data', lock_timeout=0.3, lock_retries=1)
        engine.initialize_directories()
        target = engine.path_for('configs/busy.json')

        holder = PathLock(engine.locks_dir, target, stale_timeout=5)
        with holder:
            with pytest.raises(LockTimeoutError):
                engine.put('configs/busy.json', b'{}')

        # Once released the write goes through
        engine.put('configs/busy.json', b'{}')
        assert engine.get('configs/busy.json') == b'{}'

    def test_lock_timeout_is_a_storage_error(self):
        assert issubclass(LockTimeoutError, StorageError)


class TestJsonBackupRestore(object):
    """Test corrupt JSON recovery."""

    def test_corrupt_json_is_restored_from_backup(self, storage):
        storage.save_config('sources', {'sources': {'kb': {'status': 'active'}}})
        path = storage.path_for('configs/sources.json')

        # Simulate a crash mid-write: good copy in .bak, garbage in place
        backup = path.with_name('sources.json.bak')
        backup.write_bytes(path.read_bytes())
        path.write_bytes(b'{"sources": {"kb": ')

        assert storage.load_config('sources') == {'sources': {'kb': {'status': 'active'}}}
        assert path.read_bytes() == backup.read_bytes()

    def test_corrupt_json_without_backup_is_empty(self, storage):
        path = storage.path_for('documents/broken.json')
        path.write_bytes(b'not json at all')

        assert storage.load_document('broken') == {}

    def test_missing_config_is_empty(self, storage):
        assert storage.load_config('nothing') == {}

    def test_json_is_pretty_and_keeps_unicode(self, storage):
        storage.save_document('doc', {'title': '语雀'})
        raw = storage.get('documents/doc.json').decode('utf-8')

        assert '语雀' in raw
        assert raw.startswith('{\n  "title"')


class TestSamePathSerialization:
    """Test that readers and writers of one key never interleave."""

    def test_update_json_keeps_every_update(self, storage):
        workers, rounds = 6, 10
        errors = []

        def bump(data):
            data['count'] = data.get('count', 0) + 1

        def worker():
            try:
                for _ in range(rounds):
                    storage.update_json('configs/counter.json', bump)
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert storage.get_json('configs/counter.json') == {'count': workers * rounds}

    def test_update_json_returns_stored_value(self, storage):
        result = storage.update_config('sources', lambda data: {'sources': {'kb': {}}})

        assert result == {'sources': {'kb': {}}}
        assert storage.load_config('sources') == result

    def test_reader_waits_for_writer_in_progress(self, storage):
        storage.save_config('sources', {'v': 1})
        path = storage.path_for('configs/sources.json')
        backup = path.with_name('sources.json.bak')
        results = []

        reader = threading.Thread(target=lambda: results.append(storage.load_config('sources')))
        with PathLock(storage.locks_dir, path):
            # State of a write in progress: old bytes in .bak, partial bytes in place
            backup.write_bytes(path.read_bytes())
            path.write_bytes(b'{"v": ')
            reader.start()
            reader.join(0.3)
            assert reader.is_alive()
            path.write_bytes(b'{"v": 2}')
            backup.unlink()
        reader.join(5)

        assert results == [{'v': 2}]
        assert path.read_bytes() == b'{"v": 2}'
        assert not backup.exists()

    def test_concurrent_put_and_get_json(self, storage):
        payloads = [{'n': n, 'body': 'x' * (2000 * (n % 3 + 1))} for n in range(30)]
        reads = []
        errors = []

        def writer():
            try:
                for payload in payloads:
                    storage.put_json('documents/shared.json', payload)
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        def reader():
            try:
                for _ in range(30):
                    reads.append(storage.get_json('documents/shared.json'))
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        storage.put_json('documents/shared.json', payloads[0])
        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert all(read in payloads for read in reads)
        assert storage.get_json('documents/shared.json') == payloads[-1]
        assert not storage.path_for('documents/shared.json.bak').exists()


class TestAssets:
    """Test asset addressing."""

    def test_save_asset_returns_address(self, storage):
        address = storage.save_asset('kb', '42', 'a.png', b'png')

        assert address == 'assets/kb/42/a.png'
        assert storage.asset_exists('kb', '42', 'a.png')
        assert storage.load_asset_address(address) == b'png'

    def test_missing_asset_raises(self, storage):
        with pytest.raises(AssetNotFoundError):
            storage.load_asset('kb', '42', 'nope.png')

    def test_last_write_wins(self, storage):
        storage.save_asset('kb', '42', 'a.png', b'one')
        storage.save_asset('kb', '42', 'a.png', b'two')

        assert storage.load_asset('kb', '42', 'a.png') == b'two'

    def test_invalid_filename_rejected(self, storage):
        with pytest.raises(StorageError):
            storage.save_asset('kb', '42', '..', b'x')


class TestFormattedDocuments:
    """Test formatted views and downloads."""

    def test_markdown_document_returns_body(self, storage):
        storage.save_document('d1', {'title': 'Guide', 'format': 'markdown', 'body': '# Hi'})

        formatted = storage.get_formatted_document('d1')
        assert formatted == {'content': '# Hi', 'format': 'markdown', 'title': 'Guide'}

    def test_lake_document_wraps_html(self, storage):
        storage.save_document('d2', {'title': 'Lake', 'format': 'lake', 'body_html': '<p>x</p>'})

        formatted = storage.get_formatted_document('d2')
        assert formatted['format'] == 'html'
        assert '<title>Lake</title>' in formatted['content']
        assert '<p>x</p>' in formatted['content']

    def test_unknown_format_prefers_html(self, storage):
        storage.save_document('d3', {'title': 'X', 'format': 'board', 'body': 'b', 'body_html': '<b>h</b>'})
        assert storage.get_formatted_document('d3')['format'] == 'html'

    def test_missing_document_is_none(self, storage):
        assert storage.get_formatted_document('ghost') is None

    def test_download_markdown(self, storage):
        storage.save_document('d1', {'title': 'Guide', 'format': 'markdown', 'body': '# Hi'})

        filename, data, content_type = storage.download('d1', 'md')
        assert filename == 'Guide.md'
        assert data == b'# Hi'
        assert content_type.startswith('text/markdown')

    def test_download_rendered_pdf(self, storage):
        storage.save_document('d1', {'title': 'Guide', 'format': 'markdown', 'body': '# Hi'})
        storage.save_rendered('d1', ExportFormat.PDF, b'%PDF-1.4')

        filename, data, content_type = storage.download('d1', 'pdf')
        assert (filename, data, content_type) == ('Guide.pdf', b'%PDF-1.4', 'application/pdf')

    def test_download_missing_rendering_raises(self, storage):
        storage.save_document('d1', {'title': 'Guide', 'format': 'markdown', 'body': '# Hi'})
        with pytest.raises(StorageError):
            storage.download('d1', 'docx')

    def test_download_missing_document_raises(self, storage):
        with pytest.raises(StorageError):
            storage.download('ghost', 'html')


class TestSanitizeFilename:
    """Test filename sanitization."""

    def test_replaces_unsafe_characters(self):
        assert StorageEngine.sanitize_filename('a/b:c*?', '.pdf') == 'a_b_c__.pdf'

    def test_truncates_base_name(self):
        name = StorageEngine.sanitize_filename('x' * 250, '.html')
        assert name == 'x' * 200 + '.html'

    def test_does_not_duplicate_extension(self):
        assert StorageEngine.sanitize_filename('report.pdf', '.pdf') == 'report.pdf'
