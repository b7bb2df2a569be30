"""
Yuque Exporter

Exports a Yuque knowledge base to local storage, with every document kept as
a structured JSON record and rendered as a standalone HTML page, a Word
document and a PDF. Images are downloaded and embedded so the output is
viewable offline.

Features:
- Table of contents walk with folder structure preserved in a catalog
- Asset download with link rewriting (markdown, html and lake bodies)
- Lake card dialect parsing (images, code, tables, files, video, bookmarks)
- Format-neutral document model rendered to HTML, DOCX and PDF
- Bounded concurrent image embedding as base64 data URIs
- Crash-safe storage with per-path file locks and backup/restore
- Comprehensive logging and progress tracking

Basic Usage:
    1. Copy config.yaml.example to config.yaml
    2. Fill in your Yuque token, group login and book slug
    3. Run: yuque-export --config config.yaml

Example Configuration (config.yaml):
    yuque:
        id: "handbook"
        token: ${YUQUE_TOKEN}
        group_login: "my-team"
        book_slug: "handbook"

    storage:
        root: "./data"
"""

__version__ = "1.0.0"
__description__ = "Yuque knowledge base exporter with JSON, HTML, Word and PDF output"

# Import and expose key classes for public API
from .models import (
    CatalogEntry,
    ContentFormat,
    ExportFormat,
    ExportResult,
    ProgressLevel,
    RawDocument,
    SourceConfig,
    TocNode,
)
from .document_model import DocumentModel
from .config_loader import ConfigLoader, get_nested, source_config_from
from .logger import setup_logging, ProgressTracker, log_section, log_config
from .storage import StorageEngine
from .yuque_client import YuqueClient
from .orchestrator import ExportOrchestrator, export

# Expose main entry point for CLI
from .cli import main as cli_main

__all__ = [
    # Version info
    '__version__',
    '__description__',

    # Core data models
    'CatalogEntry',
    'ContentFormat',
    'DocumentModel',
    'ExportFormat',
    'ExportResult',
    'ProgressLevel',
    'RawDocument',
    'SourceConfig',
    'TocNode',

    # Configuration
    'ConfigLoader',
    'get_nested',
    'source_config_from',

    # Logging
    'setup_logging',
    'ProgressTracker',
    'log_section',
    'log_config',

    # Pipeline
    'StorageEngine',
    'YuqueClient',
    'ExportOrchestrator',
    'export',

    # CLI entry point
    'cli_main',
]
