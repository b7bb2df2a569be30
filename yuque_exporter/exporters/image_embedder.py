"""Inline image embedding: replaces image references with base64 data URIs."""

import base64
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Tuple

from ..document_model import DocumentModel, Image
from ..errors import AssetError, StorageError
from ..models import ProgressLevel
from ..storage import StorageEngine
from .asset_downloader import AssetDownloader
from .asset_resolver import derive_filename, is_external_url

LARGE_FILE_THRESHOLD = 10 * 1024 * 1024  # 10MB

IMAGE_MIME_TYPES = {
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'svg': 'image/svg+xml',
    'bmp': 'image/bmp',
    'ico': 'image/x-icon',
}
DEFAULT_MIME_TYPE = 'image/png'


def mime_type_for(filename: str, content_type: Optional[str] = None) -> str:
    """
    MIME type for image bytes: the server's ``image/*`` Content-Type when
    given, else a guess from the file extension, else ``image/png``.
    """
    if content_type:
        media_type = content_type.split(';', 1)[0].strip().lower()
        if media_type.startswith('image/'):
            return media_type
    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    return IMAGE_MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class ImageEmbedder:
    """
    Embeds every image of a document model as a data URI.

    Sources are resolved in order: local asset addresses straight from
    storage, then http(s) URLs from the storage cache, then through the
    downloader. Unique sources are fetched on a bounded thread pool; the
    model is only mutated on the calling thread once all fetches finish.
    """

    def __init__(
        self,
        storage: StorageEngine,
        downloader: AssetDownloader,
        source_id: str,
        max_concurrent: int = 5,
        progress: Optional[Callable[[str, ProgressLevel], None]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the embedder.

        Args:
            storage: Storage engine holding downloaded assets
            downloader: Shared asset downloader
            source_id: Source the documents belong to
            max_concurrent: Maximum simultaneous image fetches
            progress: Callback receiving (message, level) progress events
            logger: Logger instance
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.storage = storage
        self.downloader = downloader
        self.source_id = source_id
        self.max_concurrent = max_concurrent
        self.progress = progress
        self.logger = logger or logging.getLogger('yuque_exporter.exporters.image_embedder')

    def embed(self, model: DocumentModel, doc_id: str) -> Dict[str, int]:
        """
        Replace image sources in ``model`` with data URIs, in place.

        Images that cannot be loaded keep their ``src`` and are marked
        ``failed`` with the error message.

        Args:
            model: Document model to mutate
            doc_id: Remote document id (the asset namespace)

        Returns:
            Statistics dictionary (total, embedded, cached, failed, skipped)
        """
        stats = {
            'total': 0,
            'embedded': 0,
            'cached': 0,
            'failed': 0,
            'skipped': 0
        }

        pending: Dict[str, List[Image]] = {}
        for image in model.iter_images():
            stats['total'] += 1
            if image.is_inline:
                stats['skipped'] += 1
                continue
            if not (StorageEngine.is_asset_address(image.src) or is_external_url(image.src)):
                self.logger.debug(f"Skipping image with unsupported source: {image.src[:80]}")
                stats['skipped'] += 1
                continue
            pending.setdefault(image.src, []).append(image)

        if not pending:
            return stats

        self.logger.debug(f"Embedding {len(pending)} unique image(s) for document {doc_id} "
                          f"with up to {self.max_concurrent} concurrent fetches")

        results: Dict[str, Tuple[Optional[str], Optional[str], bool]] = {}
        with ThreadPoolExecutor(max_workers=self.max_concurrent) as executor:
            future_to_src = {
                executor.submit(self._load, src, doc_id): src
                for src in pending
            }

            for future in as_completed(future_to_src):
                src = future_to_src[future]
                try:
                    data_uri, cached = future.result()
                    results[src] = (data_uri, None, cached)
                except (AssetError, StorageError) as e:
                    self.logger.warning(f"Failed to embed image {src}: {e}")
                    self.logger.debug("Image embedding failure details", exc_info=True)
                    results[src] = (None, str(e), False)

        for src, images in pending.items():
            data_uri, error, cached = results[src]
            if cached:
                stats['cached'] += 1
            for image in images:
                if data_uri is not None:
                    image.src = data_uri
                    image.failed = False
                    image.error = None
                    stats['embedded'] += 1
                else:
                    image.failed = True
                    image.error = error
                    stats['failed'] += 1

        if stats['failed'] and self.progress is not None:
            self.progress(f"{stats['failed']} image(s) could not be embedded", ProgressLevel.ERROR)

        self.logger.debug(f"Image embedding stats for {doc_id}: {stats}")
        return stats

    def _load(self, src: str, doc_id: str) -> Tuple[str, bool]:
        """
        Load one image source.

        Returns:
            Tuple of (data URI, whether it came from storage)
        """
        content_type = None

        if StorageEngine.is_asset_address(src):
            filename = src.rsplit('/', 1)[-1]
            data = self.storage.load_asset_address(src)
            cached = True
        else:
            filename = derive_filename(src)
            if self.storage.asset_exists(self.source_id, doc_id, filename):
                data = self.storage.load_asset(self.source_id, doc_id, filename)
                cached = True
            else:
                asset = self.downloader.fetch(src)
                data = asset.content
                content_type = asset.content_type
                cached = False

        if not data:
            raise AssetError(f"Image is empty: {src}")
        if len(data) > LARGE_FILE_THRESHOLD:
            self.logger.warning(f"Large image ({len(data) / (1024 * 1024):.1f} MB) embedded: {src}")

        return to_data_uri(data, mime_type_for(filename, content_type)), cached


__all__ = ['ImageEmbedder', 'mime_type_for', 'to_data_uri', 'LARGE_FILE_THRESHOLD']
