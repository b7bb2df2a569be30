"""HTTP fetcher for media referenced by document bodies."""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import AssetError

BROWSER_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)
YUQUE_REFERER = 'https://www.yuque.com/'


@dataclass
class DownloadedAsset:
    url: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class AssetDownloader:
    """
    Fetches remote assets the way a browser on yuque.com would.

    Yuque's CDN rejects hotlinked requests without a browser User-Agent and a
    yuque.com Referer, so both are always sent. A single session is shared by
    the asset resolver and the image embedder; ``requests.Session`` is safe
    to use from the embedder's worker threads for plain GETs.
    """

    def __init__(
        self,
        timeout: float = 30,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.timeout = timeout
        self.logger = logger or logging.getLogger('yuque_exporter.exporters.asset_downloader')

        if session is None:
            session = requests.Session()
            retry_strategy = Retry(
                total=max_retries,
                backoff_factor=0.5,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET"]
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)

        self.session = session
        self.headers: Dict[str, str] = {
            'User-Agent': BROWSER_USER_AGENT,
            'Referer': YUQUE_REFERER,
            'Accept': 'image/avif,image/webp,image/apng,image/*,*/*;q=0.8',
        }

    def fetch(self, url: str) -> DownloadedAsset:
        """
        Download ``url``.

        Args:
            url: Absolute http(s) URL

        Returns:
            DownloadedAsset with body and Content-Type

        Raises:
            AssetError: On any network error or non-2xx status
        """
        self.logger.debug(f"Downloading asset: {url}")
        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise AssetError(f"Timed out after {self.timeout}s downloading {url}") from e
        except requests.exceptions.RequestException as e:
            raise AssetError(f"Download failed for {url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise AssetError(f"HTTP {response.status_code} downloading {url}")

        content_type = response.headers.get('Content-Type')
        asset = DownloadedAsset(url=url, content=response.content, content_type=content_type)
        self.logger.debug(f"Downloaded {asset.size} bytes ({content_type or 'unknown type'}) from {url}")
        return asset

    def close(self) -> None:
        self.session.close()


__all__ = ['AssetDownloader', 'DownloadedAsset', 'BROWSER_USER_AGENT', 'YUQUE_REFERER']
