"""Shared fixtures for the exporter test suite."""

import threading
import time
from typing import Dict, Iterable, List, Optional

import pytest

from yuque_exporter.errors import AssetError
from yuque_exporter.exporters.asset_downloader import DownloadedAsset
from yuque_exporter.storage import StorageEngine

# Smallest valid PNG (1x1 transparent pixel)
PNG_BYTES = bytes.fromhex(
    '89504e470d0a1a0a0000000d49484452000000010000000108060000001f15c489'
    '0000000a49444154789c63000100000500010d0a2db40000000049454e44ae426082'
)


class FakeDownloader:
    """Stands in for AssetDownloader; serves canned bodies and counts calls."""

    def __init__(
        self,
        content: Optional[Dict[str, bytes]] = None,
        default: Optional[bytes] = PNG_BYTES,
        failing: Iterable[str] = (),
        delay: float = 0.0,
        content_type: Optional[str] = 'image/png'
    ):
        self.content = content or {}
        self.default = default
        self.failing = set(failing)
        self.delay = delay
        self.content_type = content_type
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
        self._lock = threading.Lock()

    def fetch(self, url: str) -> DownloadedAsset:
        with self._lock:
            self.calls.append(url)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if url in self.failing:
                raise AssetError(f"HTTP 404 downloading {url}")
            body = self.content.get(url, self.default)
            if body is None:
                raise AssetError(f"HTTP 404 downloading {url}")
            return DownloadedAsset(url=url, content=body, content_type=self.content_type)
        finally:
            with self._lock:
                self.in_flight -= 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def storage(tmp_path):
    engine = StorageEngine(tmp_path / 'data', lock_timeout=2, lock_retries=2)
    engine.initialize_directories()
    return engine


@pytest.fixture
def downloader():
    return FakeDownloader()
