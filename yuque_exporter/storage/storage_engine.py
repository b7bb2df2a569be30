"""Crash-safe, lock-serialized file storage for configs, documents and assets."""

import json
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..errors import AssetNotFoundError, StorageError
from ..models import ContentFormat, ExportFormat
from .file_lock import PathLock


NAMESPACES = ('configs', 'documents', 'assets', 'locks')

CONTENT_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.svg': 'image/svg+xml',
    '.webp': 'image/webp',
    '.bmp': 'image/bmp',
    '.pdf': 'application/pdf',
    '.doc': 'application/msword',
    '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    '.xls': 'application/vnd.ms-excel',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    '.zip': 'application/zip',
    '.txt': 'text/plain',
    '.md': 'text/markdown; charset=utf-8',
    '.json': 'application/json',
    '.xml': 'application/xml',
    '.html': 'text/html; charset=utf-8',
    '.css': 'text/css',
    '.js': 'application/javascript',
}

UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')
MAX_FILENAME_LENGTH = 200


class StorageEngine:
    """
    Directory-addressed key/value store rooted at ``root``.

    Keys are POSIX-style paths relative to the root, e.g.
    ``documents/yuque_src_42.json``. Every write goes through the same
    protocol: take the per-path lock, copy the current file to ``<path>.bak``,
    write the new bytes, then drop the backup. A failed write keeps the
    backup on disk and raises StorageError.
    """

    def __init__(
        self,
        root: Union[str, Path],
        lock_timeout: float = 10.0,
        lock_retries: int = 5,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the storage engine.

        Args:
            root: Data root directory
            lock_timeout: Seconds to wait for a contended path lock
            lock_retries: Retry attempts for lock acquisition
            logger: Logger instance
        """
        self.root = Path(root).expanduser().resolve()
        self.configs_dir = self.root / 'configs'
        self.documents_dir = self.root / 'documents'
        self.assets_dir = self.root / 'assets'
        self.locks_dir = self.root / 'locks'
        self.lock_timeout = lock_timeout
        self.lock_retries = lock_retries
        self.logger = logger or logging.getLogger('yuque_exporter.storage.engine')

    # ---- bootstrap -------------------------------------------------------

    def initialize_directories(self) -> None:
        """
        Create the namespace directories. Idempotent and safe to call from
        several threads or processes at once.
        """
        try:
            for name in NAMESPACES:
                directory = self.root / name
                directory.mkdir(parents=True, exist_ok=True)
                self.logger.debug(f"Directory ready: {directory}")
        except OSError as e:
            self.logger.error(f"Failed to initialize storage directories under {self.root}: {e}")
            raise StorageError(f"Directory initialization failed: {e}") from e

        self.logger.info(f"Storage initialized at {self.root}")

    # ---- generic key/value -----------------------------------------------

    def path_for(self, key: str) -> Path:
        """Resolve ``key`` to an absolute path, refusing anything outside the root."""
        relative = Path(*[part for part in key.replace('\\', '/').split('/') if part])
        path = (self.root / relative).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    def put(self, key: str, data: bytes) -> Path:
        """
        Write ``data`` at ``key`` under the backup/restore protocol.

        Args:
            key: Storage key
            data: Bytes to persist

        Returns:
            Absolute path of the written file

        Raises:
            LockTimeoutError: If the path lock cannot be acquired
            StorageError: If the write fails (the ``.bak`` is left in place)
        """
        path = self.path_for(key)
        with self._lock(path):
            self._write(path, key, data)
        return path

    def get(self, key: str) -> Optional[bytes]:
        """
        Read the bytes stored at ``key`` while holding its path lock.

        Returns:
            File contents, or None when the key does not exist
        """
        path = self.path_for(key)
        with self._lock(path):
            return self._read(path, key)

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def delete(self, key: str) -> None:
        """Remove ``key`` and any leftover backup. Missing files are ignored."""
        path = self.path_for(key)
        with self._lock(path):
            for candidate in (path, self._backup_path(path)):
                try:
                    candidate.unlink()
                    self.logger.debug(f"Deleted {candidate}")
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise StorageError(f"Failed to delete {key}: {e}") from e

    def put_json(self, key: str, data: Any) -> Path:
        return self.put(key, self._encode_json(data))

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a JSON value.

        A corrupt file is repaired once from its ``.bak``; without a backup
        the ``default`` (an empty dict unless given) is returned.
        """
        empty = {} if default is None else default
        path = self.path_for(key)
        with self._lock(path):
            return self._read_json(path, key, empty)

    def update_json(self, key: str, update: Callable[[Any], Any], default: Any = None) -> Any:
        """
        Read, modify and write a JSON value under a single path lock.

        Args:
            key: Storage key
            update: Called with the current value (``default`` or ``{}`` when
                missing); returns the value to store, or None to store the
                argument after mutating it in place
            default: Value passed to ``update`` when nothing is stored

        Returns:
            The stored value
        """
        empty = {} if default is None else default
        path = self.path_for(key)
        with self._lock(path):
            current = self._read_json(path, key, empty)
            updated = update(current)
            if updated is None:
                updated = current
            self._write(path, key, self._encode_json(updated))
        return updated

    # ---- configs -----------------------------------------------------------

    def save_config(self, name: str, data: Any) -> Path:
        return self.put_json(f"configs/{name}.json", data)

    def load_config(self, name: str) -> Any:
        return self.get_json(f"configs/{name}.json")

    def update_config(self, name: str, update: Callable[[Any], Any]) -> Any:
        return self.update_json(f"configs/{name}.json", update)

    # ---- documents ---------------------------------------------------------

    def save_document(self, doc_id: str, record: Dict[str, Any]) -> Path:
        return self.put_json(f"documents/{doc_id}.json", record)

    def load_document(self, doc_id: str) -> Dict[str, Any]:
        """Load a document record; ``{}`` when missing or unrecoverable."""
        return self.get_json(f"documents/{doc_id}.json")

    def document_exists(self, doc_id: str) -> bool:
        return self.exists(f"documents/{doc_id}.json")

    def save_rendered(self, doc_id: str, fmt: ExportFormat, data: bytes) -> Path:
        return self.put(self._rendered_key(doc_id, fmt), data)

    def load_rendered(self, doc_id: str, fmt: ExportFormat) -> Optional[bytes]:
        return self.get(self._rendered_key(doc_id, fmt))

    def rendered_exists(self, doc_id: str, fmt: ExportFormat) -> bool:
        return self.exists(self._rendered_key(doc_id, fmt))

    def delete_rendered(self, doc_id: str, fmt: ExportFormat) -> None:
        self.delete(self._rendered_key(doc_id, fmt))

    @staticmethod
    def _rendered_key(doc_id: str, fmt: ExportFormat) -> str:
        return f"documents/{doc_id}{fmt.extension}"

    # ---- assets ------------------------------------------------------------

    @staticmethod
    def asset_address(source_id: str, doc_id: str, filename: str) -> str:
        """Local address recorded in rewritten content for a stored asset."""
        return f"assets/{source_id}/{doc_id}/{filename}"

    @staticmethod
    def is_asset_address(reference: str) -> bool:
        return reference.startswith('assets/')

    def save_asset(self, source_id: str, doc_id: str, filename: str, data: bytes) -> str:
        """
        Persist an asset and return its local address.

        Raises:
            StorageError: If the filename is unusable or the write fails
        """
        if not filename or filename in ('.', '..'):
            raise StorageError(f"Invalid asset filename: {filename!r}")
        address = self.asset_address(source_id, doc_id, filename)
        self.put(address, data)
        return address

    def load_asset(self, source_id: str, doc_id: str, filename: str) -> bytes:
        """
        Raises:
            AssetNotFoundError: If the asset was never stored
        """
        return self.load_asset_address(self.asset_address(source_id, doc_id, filename))

    def load_asset_address(self, address: str) -> bytes:
        data = self.get(address)
        if data is None:
            raise AssetNotFoundError(f"Asset not found: {address}")
        return data

    def asset_exists(self, source_id: str, doc_id: str, filename: str) -> bool:
        return self.exists(self.asset_address(source_id, doc_id, filename))

    # ---- formatted views -----------------------------------------------------

    def get_formatted_document(self, doc_id: str) -> Optional[Dict[str, str]]:
        """
        Return the stored document as a single text body.

        Markdown documents yield their ``body``; lake and html documents yield
        ``body_html`` wrapped in a minimal page. Unknown formats prefer
        ``body_html`` when present.

        Returns:
            Dict with ``content``, ``format`` and ``title``, or None if missing
        """
        record = self.load_document(doc_id)
        if not record:
            self.logger.debug(f"Document not found: {doc_id}")
            return None

        title = record.get('title') or f"document-{doc_id}"
        declared = (record.get('format') or '').lower()

        if declared in (ContentFormat.MARKDOWN.value, 'md'):
            return {'content': record.get('body') or '', 'format': 'markdown', 'title': title}

        if declared in (ContentFormat.LAKE.value, ContentFormat.HTML.value) or record.get('body_html'):
            content = self.wrap_html_document(record.get('body_html') or '', title)
            return {'content': content, 'format': 'html', 'title': title}

        return {'content': record.get('body') or '', 'format': 'markdown', 'title': title}

    @staticmethod
    def wrap_html_document(html_content: str, title: str) -> str:
        return (
            "<!doctype html>\n<html>\n<head>\n"
            "  <meta charset=\"UTF-8\">\n"
            "  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\">\n"
            f"  <title>{title}</title>\n"
            "</head>\n<body>\n"
            f"  {html_content}\n"
            "</body>\n</html>"
        )

    def download(self, doc_id: str, fmt: Optional[str] = None) -> Tuple[str, bytes, str]:
        """
        Produce a downloadable artifact for ``doc_id``.

        Args:
            doc_id: Local document id
            fmt: ``html``, ``pdf``, ``docx``, ``json``, ``md``/``markdown`` or
                None to pick from the document's own format

        Returns:
            Tuple of (filename, content bytes, content type)

        Raises:
            StorageError: If the document or requested rendering does not exist
        """
        record = self.load_document(doc_id)
        if not record:
            raise StorageError(f"Document not found: {doc_id}")
        title = record.get('title') or f"document-{doc_id}"

        if fmt in (ExportFormat.PDF.value, ExportFormat.DOCX.value, ExportFormat.JSON.value):
            export_format = ExportFormat(fmt)
            data = self.load_rendered(doc_id, export_format)
            if data is None:
                raise StorageError(f"No {fmt} rendering stored for {doc_id}")
            extension = export_format.extension
            return self.sanitize_filename(title, extension), data, CONTENT_TYPES[extension]

        if fmt == ExportFormat.HTML.value:
            stored = self.load_rendered(doc_id, ExportFormat.HTML)
            if stored is not None:
                return self.sanitize_filename(title, '.html'), stored, CONTENT_TYPES['.html']

        formatted = self.get_formatted_document(doc_id) or {}
        if fmt in ('md', 'markdown'):
            kind = 'markdown'
        elif fmt == ExportFormat.HTML.value:
            kind = 'html'
        else:
            kind = formatted.get('format', 'markdown')

        extension = '.html' if kind == 'html' else '.md'
        content = formatted.get('content', '')
        if kind == 'html' and formatted.get('format') != 'html':
            content = self.wrap_html_document(content, title)
        return self.sanitize_filename(title, extension), content.encode('utf-8'), CONTENT_TYPES[extension]

    @staticmethod
    def sanitize_filename(filename: str, extension: str = '') -> str:
        """
        Replace characters that are unsafe in file names with ``_`` and
        truncate the base name to 200 characters, keeping ``extension``.
        """
        base_name = filename
        if extension and base_name.endswith(extension):
            base_name = base_name[:-len(extension)]
        safe = UNSAFE_FILENAME_CHARS.sub('_', base_name)[:MAX_FILENAME_LENGTH]
        return safe + extension

    # ---- locked read / write internals -----------------------------------
    # Callers hold the path lock; PathLock is not reentrant across instances.

    def _write(self, path: Path, key: str, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create directory for {key}: {e}") from e

        had_backup = self._create_backup(path)

        try:
            with open(path, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            self.logger.error(f"Write failed for {key}: {e}")
            if had_backup:
                self._restore_from_backup(path)
            raise StorageError(f"Failed to write {key}: {e}") from e

        self._delete_backup(path)
        self.logger.debug(f"Stored {len(data)} bytes at {key}")

    @staticmethod
    def _read(path: Path, key: str) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def _read_json(self, path: Path, key: str, empty: Any) -> Any:
        """Decode ``path``; a corrupt file is repaired once from its ``.bak``."""
        for attempt in range(2):
            raw = self._read(path, key)
            if raw is None:
                return empty
            try:
                return json.loads(raw.decode('utf-8'))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                self.logger.warning(f"Corrupt JSON at {key}: {e}")
                if attempt == 0 and self._restore_from_backup(path):
                    self.logger.info(f"Retrying read of {key} after restoring backup")
                    continue
                self.logger.error(f"No usable backup for {key}, returning empty result")
                return empty

        return empty

    @staticmethod
    def _encode_json(data: Any) -> bytes:
        return json.dumps(data, indent=2, ensure_ascii=False).encode('utf-8')

    # ---- backup / lock internals -------------------------------------------

    def _lock(self, path: Path) -> PathLock:
        return PathLock(
            self.locks_dir,
            path,
            stale_timeout=self.lock_timeout,
            retries=self.lock_retries,
        )

    @staticmethod
    def _backup_path(path: Path) -> Path:
        return path.with_name(path.name + '.bak')

    def _create_backup(self, path: Path) -> bool:
        if not path.exists():
            return False
        try:
            shutil.copy2(path, self._backup_path(path))
        except OSError as e:
            raise StorageError(f"Failed to create backup of {path}: {e}") from e
        self.logger.debug(f"Backup created: {self._backup_path(path)}")
        return True

    def _delete_backup(self, path: Path) -> None:
        try:
            self._backup_path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            # The new content is already committed
            self.logger.warning(f"Could not remove backup for {path}: {e}")

    def _restore_from_backup(self, path: Path) -> bool:
        backup = self._backup_path(path)
        if not backup.exists():
            return False
        try:
            shutil.copy2(backup, path)
        except OSError as e:
            self.logger.error(f"Restore from backup failed for {path}: {e}")
            return False
        self.logger.info(f"Restored {path.name} from backup")
        return True


__all__ = ['StorageEngine', 'NAMESPACES', 'CONTENT_TYPES']
