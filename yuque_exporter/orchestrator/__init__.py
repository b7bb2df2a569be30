"""
Orchestration package for coordinating the export pipeline.

This package provides the orchestration layer that sequences an export:
TOC → Folders → Documents → Catalog → Report. It handles the complete
pipeline for materializing a Yuque knowledge base on local storage.
"""

from .catalog import Catalog
from .export_orchestrator import ExportOrchestrator, export
from .export_report import ExportReport

__all__ = [
    'Catalog',
    'ExportOrchestrator',
    'ExportReport',
    'export'
]
