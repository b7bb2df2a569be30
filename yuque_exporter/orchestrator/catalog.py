"""Persisted catalog of exported folders and documents."""

import logging
from typing import Any, Dict, Iterator, List, Optional

from ..models import CatalogEntry
from ..storage import StorageEngine

CATALOG_CONFIG = 'catalog'


class Catalog:
    """
    Catalog entries kept in ``configs/catalog.json``, keyed by local id.

    Entries are created on first export and updated in place afterwards; the
    catalog never deletes or duplicates an entry. Every upsert merges into
    the file as it is on disk, so several exports can share one catalog.
    """

    def __init__(self, storage: StorageEngine, logger: Optional[logging.Logger] = None):
        self.storage = storage
        self.logger = logger or logging.getLogger('yuque_exporter.orchestrator.catalog')
        self._entries: Dict[str, CatalogEntry] = {}
        self.load()

    def load(self) -> None:
        self._set_entries(self.storage.load_config(CATALOG_CONFIG))
        self.logger.debug(f"Loaded {len(self._entries)} catalog entries")

    def get(self, entry_id: str) -> Optional[CatalogEntry]:
        return self._entries.get(entry_id)

    def upsert(self, entry: CatalogEntry) -> bool:
        """
        Insert or replace the entry with ``entry.id`` in the stored catalog.

        Returns:
            True if the entry was new
        """
        outcome = {'created': True}

        def merge(data: Any) -> Dict[str, Any]:
            items = data.get('entries') if isinstance(data, dict) else None
            items = [item for item in items or [] if isinstance(item, dict)]
            for index, item in enumerate(items):
                if item.get('id') == entry.id:
                    items[index] = entry.to_dict()
                    outcome['created'] = False
                    break
            else:
                items.append(entry.to_dict())
            return {'entries': items}

        self._set_entries(self.storage.update_config(CATALOG_CONFIG, merge))
        created = outcome['created']
        self.logger.debug(f"{'Created' if created else 'Updated'} catalog entry {entry.id}")
        return created

    def entries_for_source(self, source_id: str) -> List[CatalogEntry]:
        return [entry for entry in self._entries.values() if entry.source_id == source_id]

    def _set_entries(self, data: Any) -> None:
        self._entries = {}
        items = data.get('entries', []) if isinstance(data, dict) else []
        for item in items:
            try:
                entry = CatalogEntry.from_dict(item)
            except (KeyError, TypeError, AttributeError):
                self.logger.warning(f"Ignoring malformed catalog entry: {item}")
                continue
            self._entries[entry.id] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._entries


__all__ = ['Catalog', 'CATALOG_CONFIG']
