"""
Storage package: lock-serialized, backup-protected persistence.

Layout under the data root:
- configs/<name>.json
- documents/<docId>.json|.html|.pdf|.docx
- assets/<sourceId>/<docId>/<filename>
- locks/ (per-path lock files)
"""

from .file_lock import PathLock
from .storage_engine import CONTENT_TYPES, NAMESPACES, StorageEngine

__all__ = [
    'StorageEngine',
    'PathLock',
    'NAMESPACES',
    'CONTENT_TYPES'
]
