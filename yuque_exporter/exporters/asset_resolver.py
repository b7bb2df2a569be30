"""Finds media references in raw bodies, stores them locally and rewrites links."""

import hashlib
import html
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import quote, unquote, urlparse

from ..converters.card_parser import CARD_TAG_PATTERN, card_attributes, decode_card_value
from ..errors import AssetError, CardParseError, StorageError
from ..models import ContentFormat, ProgressLevel
from ..storage import StorageEngine
from .asset_downloader import AssetDownloader

ASSET_EXTENSIONS = (
    '.png', '.jpg', '.jpeg', '.gif', '.svg', '.webp', '.bmp',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz',
)

MD_IMAGE_PATTERN = re.compile(r'!\[([^\]]*)\]\(([^)\s]+)(?:\s+"[^"]*")?\)')
MD_LINK_PATTERN = re.compile(r'(?<!!)\[([^\]]+)\]\(([^)\s]+)(?:\s+"[^"]*")?\)')
HTML_IMG_PATTERN = re.compile(r'<img\b[^>]*?\bsrc=["\']([^"\']+)["\']', re.IGNORECASE)
HTML_LINK_PATTERN = re.compile(r'<a\b[^>]*?\bhref=["\']([^"\']+)["\']', re.IGNORECASE)

# encodeURIComponent leaves these unescaped
URI_COMPONENT_SAFE = "!~*'()"

ProgressCallback = Callable[[str, ProgressLevel], None]


def is_external_url(url: str) -> bool:
    return url.startswith('http://') or url.startswith('https://')


def is_asset_url(url: str) -> bool:
    """True for http(s) URLs that mention a known asset extension."""
    if not is_external_url(url):
        return False
    lower_url = url.lower()
    return any(ext in lower_url for ext in ASSET_EXTENSIONS)


def derive_filename(url: str) -> str:
    """
    Local filename for an asset URL: the decoded last path segment, or
    ``asset_<hash>.<ext>`` when the URL has no usable segment.
    """
    try:
        segment = urlparse(url).path.rsplit('/', 1)[-1]
    except ValueError:
        segment = ''

    filename = unquote(segment).strip()
    filename = filename.replace('/', '_').replace('\\', '_')
    if filename and filename not in ('.', '..'):
        return filename

    digest = hashlib.sha1(url.encode('utf-8')).hexdigest()[:12]
    tail = url.rsplit('.', 1)[-1].split('?')[0].split('#')[0] if '.' in url else ''
    ext = tail if re.fullmatch(r'[A-Za-z0-9]{1,5}', tail or '') else 'bin'
    return f"asset_{digest}.{ext}"


def extract_asset_urls(content: str, content_format: ContentFormat) -> List[str]:
    """
    Collect candidate asset URLs in first-seen order without duplicates.

    Args:
        content: Raw body text
        content_format: Syntax of ``content``

    Returns:
        Ordered unique list of URLs as they appear in ``content``
    """
    urls: List[str] = []

    def add(url: str) -> None:
        if url not in urls:
            urls.append(url)

    if content_format == ContentFormat.MARKDOWN:
        for match in MD_IMAGE_PATTERN.finditer(content):
            if is_external_url(match.group(2)):
                add(match.group(2))
        for match in MD_LINK_PATTERN.finditer(content):
            if is_asset_url(match.group(2)):
                add(match.group(2))
        return urls

    for match in HTML_IMG_PATTERN.finditer(content):
        if is_external_url(match.group(1)):
            add(match.group(1))
    for match in HTML_LINK_PATTERN.finditer(content):
        if is_asset_url(match.group(1)):
            add(match.group(1))

    if content_format == ContentFormat.LAKE:
        for match in CARD_TAG_PATTERN.finditer(content):
            attrs = card_attributes(match.group('attrs'))
            raw_value = attrs.get('value', '')
            if not raw_value.startswith('data:'):
                continue
            try:
                payload = decode_card_value(raw_value)
            except CardParseError:
                continue
            data = payload.get('data') if isinstance(payload.get('data'), dict) else {}
            for key in ('src', 'url'):
                candidate = payload.get(key) or data.get(key)
                if isinstance(candidate, str) and is_external_url(candidate):
                    add(candidate)
                    break

    return urls


@dataclass
class AssetResolution:
    """Rewritten body plus the bookkeeping of one resolver pass."""

    content: str
    downloaded: int = 0
    failed: int = 0
    address_map: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)


class AssetResolver:
    """
    Downloads every asset a document references into the storage engine and
    rewrites the body to point at the local asset addresses.
    """

    def __init__(
        self,
        storage: StorageEngine,
        downloader: AssetDownloader,
        source_id: str,
        progress: Optional[ProgressCallback] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the resolver.

        Args:
            storage: Storage engine receiving the assets
            downloader: Shared asset downloader
            source_id: Source the documents belong to
            progress: Callback receiving (message, level) progress events
            logger: Logger instance
        """
        self.storage = storage
        self.downloader = downloader
        self.source_id = source_id
        self.progress = progress
        self.logger = logger or logging.getLogger('yuque_exporter.exporters.asset_resolver')

        self.stats = {
            'downloaded': 0,
            'failed': 0,
        }

    def resolve(self, content: str, doc_id: str, content_format: ContentFormat) -> AssetResolution:
        """
        Fetch, persist and relink every asset referenced by ``content``.

        A URL that fails to download is left untouched in the body.

        Args:
            content: Raw body text
            doc_id: Remote document id (the asset namespace)
            content_format: Syntax of ``content``

        Returns:
            AssetResolution with the rewritten content
        """
        result = AssetResolution(content=content)
        urls = extract_asset_urls(content, content_format)
        if not urls:
            return result

        self.logger.debug(f"Found {len(urls)} asset reference(s) in document {doc_id}")
        used_names: Dict[str, str] = {}

        for url in urls:
            fetch_url = html.unescape(url) if content_format != ContentFormat.MARKDOWN else url
            try:
                filename = self._unique_filename(fetch_url, used_names)
                asset = self.downloader.fetch(fetch_url)
                address = self.storage.save_asset(self.source_id, doc_id, filename, asset.content)
            except (AssetError, StorageError) as e:
                result.failed += 1
                result.failures[url] = str(e)
                self.stats['failed'] += 1
                self.logger.warning(f"Asset download failed, keeping original link {url}: {e}")
                self.logger.debug("Asset failure details", exc_info=True)
                self._report(f"Asset download failed {url}: {e}", ProgressLevel.ERROR)
                continue

            used_names[filename] = fetch_url
            result.address_map[url] = address
            result.content = self._rewrite(result.content, url, address)
            result.downloaded += 1
            self.stats['downloaded'] += 1

        if result.downloaded:
            self._report(f"Downloaded {result.downloaded} asset(s)", ProgressLevel.SUCCESS)
        if result.failed:
            self._report(f"{result.failed} asset(s) failed to download, original links kept", ProgressLevel.INFO)

        return result

    @staticmethod
    def _unique_filename(url: str, used_names: Dict[str, str]) -> str:
        filename = derive_filename(url)
        owner = used_names.get(filename)
        if owner is None or owner == url:
            return filename
        digest = hashlib.sha1(url.encode('utf-8')).hexdigest()[:8]
        return f"{digest}_{filename}"

    @staticmethod
    def _rewrite(content: str, url: str, address: str) -> str:
        content = content.replace(url, address)
        encoded_url = quote(url, safe=URI_COMPONENT_SAFE)
        if encoded_url != url:
            content = content.replace(encoded_url, quote(address, safe=URI_COMPONENT_SAFE))
        return content

    def _report(self, message: str, level: ProgressLevel) -> None:
        if self.progress is not None:
            self.progress(message, level)


__all__ = [
    'AssetResolver',
    'AssetResolution',
    'ASSET_EXTENSIONS',
    'extract_asset_urls',
    'derive_filename',
    'is_external_url',
    'is_asset_url',
]
