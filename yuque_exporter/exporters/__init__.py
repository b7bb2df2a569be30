"""
Asset handling package for the export pipeline.

Package Structure:
- asset_downloader: browser-like HTTP fetcher shared by the stages below
- asset_resolver: finds asset URLs in raw bodies, stores them and rewrites links
- image_embedder: turns image references in a document model into data URIs
"""

from .asset_downloader import AssetDownloader, DownloadedAsset
from .asset_resolver import AssetResolution, AssetResolver, derive_filename, extract_asset_urls
from .image_embedder import ImageEmbedder, mime_type_for

__all__ = [
    'AssetDownloader',
    'DownloadedAsset',
    'AssetResolver',
    'AssetResolution',
    'ImageEmbedder',
    'derive_filename',
    'extract_asset_urls',
    'mime_type_for'
]
