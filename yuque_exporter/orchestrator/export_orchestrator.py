"""
Export orchestrator for coordinating the complete export pipeline.

This module provides the central coordinator that sequences the export of one
Yuque knowledge base: TOC → Folders → Documents (fetch, resolve assets, parse,
embed images, render, persist) → Catalog → Report.
"""

import logging
import sys
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as date_parser
from tqdm import tqdm

from ..config_loader import DEFAULT_CONFIG, get_nested
from ..converters import parse_document
from ..errors import (
    AuthorizationError,
    ExportError,
    GenerationTimeoutError,
    NotFoundError,
    PdfToolNotFoundError,
    RenderError,
    StorageError,
    TransportError,
)
from ..exporters import AssetDownloader, AssetResolver, ImageEmbedder
from ..logger import ProgressTracker, log_section
from ..models import (
    CatalogEntry,
    ContentFormat,
    ExportFormat,
    ExportResult,
    FormatStatus,
    ProgressEvent,
    ProgressLevel,
    RawDocument,
    SourceConfig,
    TocNode,
    utc_now_iso,
)
from ..renderers import get_renderer, render_with_timeout
from ..renderers.base_renderer import RenderOptions
from ..storage import StorageEngine
from ..yuque_client import YuqueClient
from .catalog import Catalog
from .export_report import ExportReport

ProgressSink = Callable[[str, ProgressLevel], None]

SOURCES_CONFIG = 'sources'
RENDERED_FORMATS = (ExportFormat.HTML, ExportFormat.DOCX, ExportFormat.PDF)
NETWORK_HINT = "check network connection"
NOT_FOUND_HINT = "knowledge base not found, check group_login and book_slug"


class DocumentExportError(ExportError):
    """A single document could not be exported; the run continues."""
    pass


def root_folder_id(source_id: str) -> str:
    return f"yuque_root_{source_id}"


def folder_id(source_id: str, node_uuid: str) -> str:
    return f"yuque_folder_{source_id}_{node_uuid}"


def document_id(source_id: str, remote_id: str) -> str:
    return f"yuque_{source_id}_{remote_id}"


def content_size(content: str) -> str:
    """Size of a body as ``B``/``KB``/``MB`` with one decimal."""
    size = len(content.encode('utf-8'))
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def normalize_remote_date(value: Optional[str]) -> Optional[str]:
    """ISO-8601 form of a remote timestamp, or the raw value when it does not parse."""
    if not value:
        return None
    try:
        return date_parser.isoparse(value).isoformat()
    except (ValueError, OverflowError):
        logging.getLogger('yuque_exporter.orchestrator').debug(f"Unparseable remote date: {value}")
        return value


class ExportOrchestrator:
    """Central coordinator sequencing the export of one knowledge base: TOC → Folders → Documents → Report."""

    def __init__(
        self,
        source: SourceConfig,
        config: Optional[Dict[str, Any]] = None,
        storage: Optional[StorageEngine] = None,
        client: Optional[YuqueClient] = None,
        downloader: Optional[AssetDownloader] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize export orchestrator.

        Args:
            source: Source connection settings
            config: Configuration dictionary, defaults to DEFAULT_CONFIG
            storage: Storage engine, built from ``storage.root`` when omitted
            client: Remote client, built from ``source`` when omitted
            downloader: Asset downloader shared by resolver and embedder
            logger: Optional logger instance
        """
        self.source = source
        self.config = config or DEFAULT_CONFIG
        self.logger = logger or logging.getLogger('yuque_exporter.orchestrator')

        self.storage = storage or StorageEngine(
            get_nested(self.config, 'storage.root', './data'),
            lock_timeout=get_nested(self.config, 'storage.lock_timeout', 10),
            lock_retries=get_nested(self.config, 'storage.lock_retries', 5),
        )
        self.client = client or YuqueClient.from_source(source, self.config)
        self.downloader = downloader or AssetDownloader(
            timeout=get_nested(self.config, 'export.download_timeout', 30)
        )

        formats = get_nested(self.config, 'export.formats', [f.value for f in ExportFormat])
        self.formats: List[ExportFormat] = [ExportFormat(fmt) for fmt in formats]
        self.embed_images = get_nested(self.config, 'export.embed_images', True)
        self.show_progress_bar = get_nested(self.config, 'export.progress_bars', True)

        self.report_generator = ExportReport(logger=self.logger)
        self.catalog: Optional[Catalog] = None
        self.events: List[ProgressEvent] = []
        self.progress_sink: Optional[ProgressSink] = None
        self.stats: Dict[str, Any] = {}
        # Formats whose tool is missing are not retried for every document
        self._unavailable: Dict[ExportFormat, str] = {}

        self.logger.info(
            f"ExportOrchestrator initialized for source '{source.id}' "
            f"({source.group_login}/{source.book_slug}), formats: {[f.value for f in self.formats]}"
        )

    # ---- public -------------------------------------------------------------

    def export(self, progress_sink: Optional[ProgressSink] = None) -> ExportResult:
        """
        Run the complete export.

        Per-document failures are tallied and the run continues; an
        AuthorizationError or a TOC failure aborts the run.

        Args:
            progress_sink: Callback receiving (message, level) progress events

        Returns:
            ExportResult with the run summary
        """
        self.progress_sink = progress_sink
        self.events = []
        self.stats = self._new_stats()
        self._unavailable = {}
        start_time = time.time()

        log_section(f"Export: {self.source.name}")
        self._emit(f"Starting export of {self.source.group_login}/{self.source.book_slug}", ProgressLevel.INFO)

        try:
            self.storage.initialize_directories()
            self.catalog = Catalog(self.storage, logger=self.logger.getChild('catalog'))

            self.logger.info("Executing Phase 1: Table of Contents")
            nodes = self._fetch_toc()

            self.logger.info("Executing Phase 2: Folder Structure")
            folder_map = self._create_folders(nodes)

            self.logger.info("Executing Phase 3: Documents")
            self._export_documents(nodes, folder_map)

        except AuthorizationError as e:
            return self._abort(f"{e}: {e.hint}", start_time)
        except TransportError as e:
            hint = NOT_FOUND_HINT if isinstance(e, NotFoundError) else NETWORK_HINT
            return self._abort(f"Failed to fetch table of contents: {e}, {hint}", start_time)
        except StorageError as e:
            return self._abort(f"Storage failure: {e}", start_time)

        duration = time.time() - start_time
        summary = self.report_generator.build_summary(self.stats, duration)
        for message, level in self.report_generator.summary_events(summary):
            self._emit(message, level)

        self._update_source_status('active', None)
        self.logger.info(f"Export orchestration complete in {duration:.2f}s")

        failed = summary['documents_failed']
        message = (f"Exported {summary['documents_succeeded']} document(s)"
                   + (f", {failed} failed" if failed else ''))
        return ExportResult(success=True, message=message, summary=summary)

    def close(self) -> None:
        self.client.close()
        self.downloader.close()

    # ---- phases -------------------------------------------------------------

    def _fetch_toc(self) -> List[TocNode]:
        self._emit("Fetching table of contents", ProgressLevel.INFO)
        nodes = self.client.fetch_toc()

        documents = sum(1 for node in nodes if node.is_document)
        containers = sum(1 for node in nodes if node.is_container)
        self._emit(f"Found {documents} document(s) and {containers} folder(s)", ProgressLevel.SUCCESS)
        return nodes

    def _create_folders(self, nodes: List[TocNode]) -> Dict[str, str]:
        """
        Create the root folder and one folder per container node, parents first.

        Returns:
            Map of container uuid to local folder id
        """
        log_section("Phase 2: Folder Structure")

        root_id = root_folder_id(self.source.id)
        self._upsert_folder(root_id, None, f"Yuque - {self.source.name}")

        folder_map: Dict[str, str] = {}
        containers = sorted((node for node in nodes if node.is_container), key=lambda node: node.depth)
        for node in containers:
            parent_id = folder_map.get(node.parent_uuid, root_id) if node.parent_uuid else root_id
            local_id = folder_id(self.source.id, node.uuid)
            self._upsert_folder(local_id, parent_id, node.title)
            folder_map[node.uuid] = local_id

        self.logger.info(f"Phase 2 complete: {len(folder_map) + 1} folder(s) ready")
        return folder_map

    def _upsert_folder(self, local_id: str, parent_id: Optional[str], title: str) -> None:
        existing = self.catalog.get(local_id)
        entry = CatalogEntry(
            id=local_id,
            title=title,
            kind='folder',
            parent_id=parent_id,
            source_id=self.source.id,
            owner_name='Yuque',
            updated_at=existing.updated_at if existing else utc_now_iso()[:10],
            last_synced_at=utc_now_iso(),
        )
        if self.catalog.upsert(entry):
            self.stats['folders_created'] += 1

    def _export_documents(self, nodes: List[TocNode], folder_map: Dict[str, str]) -> None:
        log_section("Phase 3: Documents")

        skipped = [node for node in nodes if not node.is_document and not node.is_container]
        for node in skipped:
            self.logger.debug(f"Skipping external link node '{node.title}'")
        self.stats['documents_skipped'] = len(skipped)

        documents = [node for node in nodes if node.is_document]
        self.stats['documents_total'] = len(documents)
        if not documents:
            self.logger.warning("No documents to export")
            return

        use_bar = self.show_progress_bar and sys.stdout.isatty()
        progress_bar = tqdm(total=len(documents), desc="Exporting documents", unit="doc") if use_bar else None

        try:
            with ProgressTracker(total=len(documents)) as tracker:
                for node in documents:
                    parent_id = self._parent_folder(node, folder_map)
                    try:
                        self._export_document(node, parent_id)
                        self.stats['documents_succeeded'] += 1
                        self._deliver(tracker.document_exported(node.title))
                    except AuthorizationError:
                        raise
                    except Exception as e:
                        self.stats['documents_failed'] += 1
                        self.stats['failures'].append({'id': node.uuid, 'title': node.title, 'error': str(e)})
                        self.logger.error(f"Failed to export document '{node.title}': {e}")
                        self.logger.debug("Document export failure details", exc_info=True)
                        self._deliver(tracker.document_failed(node.title, e))
                    if progress_bar is not None:
                        progress_bar.update(1)
        finally:
            if progress_bar is not None:
                progress_bar.close()

        self.logger.info(
            f"Phase 3 complete: {self.stats['documents_succeeded']} succeeded, "
            f"{self.stats['documents_failed']} failed, "
            f"{self.stats['documents_skipped']} skipped"
        )

    def _parent_folder(self, node: TocNode, folder_map: Dict[str, str]) -> str:
        root_id = root_folder_id(self.source.id)
        if not node.parent_uuid:
            return root_id
        return folder_map.get(node.parent_uuid, root_id)

    # ---- single document ----------------------------------------------------

    def _export_document(self, node: TocNode, parent_id: str) -> None:
        """
        Fetch → AssetsResolved → Parsed → ImagesEmbedded → Rendered → Persisted → CatalogUpdated.

        Raises:
            DocumentExportError: If the node cannot be exported
            TransportError: If the document fetch failed
            StorageError: If the record could not be written
            AuthorizationError: If the token lost access
        """
        if not node.slug:
            raise DocumentExportError("Document has no slug")

        raw = self.client.fetch_document(node.slug)
        remote_id = raw.id or (str(node.doc_id) if node.doc_id is not None else '')
        if not remote_id:
            raise DocumentExportError("Remote document has no id")
        local_id = document_id(self.source.id, remote_id)

        content, syntax = raw.select_body()
        resolver = AssetResolver(
            self.storage,
            self.downloader,
            self.source.id,
            progress=self._emit,
            logger=self.logger.getChild('assets'),
        )
        resolution = resolver.resolve(content, remote_id, syntax)
        self.stats['assets_downloaded'] += resolution.downloaded
        self.stats['assets_failed'] += resolution.failed

        model = parse_document(raw, content=resolution.content, logger=self.logger.getChild('parser'))

        record = self._build_record(raw, local_id, content, resolution.content, syntax, resolution.address_map)
        record['model'] = model.to_dict()
        self.storage.save_document(local_id, record)

        if self.embed_images:
            embedder = ImageEmbedder(
                self.storage,
                self.downloader,
                self.source.id,
                max_concurrent=get_nested(self.config, 'export.max_concurrent_downloads', 5),
                progress=self._emit,
                logger=self.logger.getChild('images'),
            )
            image_stats = embedder.embed(model, remote_id)
            self.stats['images_embedded'] += image_stats['embedded']
            self.stats['images_failed'] += image_stats['failed']

        options = RenderOptions.from_config(
            self.config,
            title=raw.title,
            author=raw.author.name,
            metadata={'Updated': raw.updated_at or '', 'Source': f"{self.source.group_login}/{self.source.book_slug}"},
        )
        format_status = {ExportFormat.JSON.value: FormatStatus.RENDERED.value}
        self._count_format(ExportFormat.JSON, FormatStatus.RENDERED)
        for export_format in RENDERED_FORMATS:
            status = self._render_format(export_format, model, options, local_id, raw.title)
            format_status[export_format.value] = status.value
            self._count_format(export_format, status)

        file_type = 'md' if raw.format == ContentFormat.MARKDOWN else 'html'
        entry = CatalogEntry(
            id=local_id,
            title=f"{raw.title}.{file_type}",
            kind='document',
            parent_id=parent_id,
            source_id=self.source.id,
            remote_doc_id=remote_id,
            remote_slug=raw.slug or node.slug,
            file_type=file_type,
            format_status=format_status,
            owner_name=raw.author.name,
            size=content_size(resolution.content),
            tags=[f"yuque:{self.source.id}"],
            status='active',
            sync_status='Synced',
            updated_at=normalize_remote_date(raw.updated_at),
            last_synced_at=utc_now_iso(),
        )
        existing = self.catalog.get(local_id)
        if existing is not None:
            entry.tags = sorted(set(existing.tags) | set(entry.tags))
        self.catalog.upsert(entry)

    def _build_record(
        self,
        raw: RawDocument,
        local_id: str,
        original: str,
        resolved: str,
        syntax: ContentFormat,
        address_map: Dict[str, str]
    ) -> Dict[str, Any]:
        """The persisted JSON record; contains nothing that varies between identical exports."""
        record = raw.to_dict()
        for key in ('body', 'body_html', 'body_lake'):
            if original and record.get(key) == original:
                record[key] = resolved
        record.update({
            'local_id': local_id,
            'source_id': self.source.id,
            'content_format': syntax.value,
            'assets': dict(address_map),
        })
        return record

    def _render_format(
        self,
        export_format: ExportFormat,
        model,
        options: RenderOptions,
        local_id: str,
        title: str
    ) -> FormatStatus:
        if export_format not in self.formats:
            return FormatStatus.SKIPPED

        if export_format in self._unavailable:
            self.logger.debug(f"Skipping {export_format.value} for {local_id}: {self._unavailable[export_format]}")
            return FormatStatus.FAILED

        if export_format == ExportFormat.PDF:
            # The PDF tool loads the page from a temporary directory
            options = replace(options, asset_base=self.storage.root.as_uri() + '/')

        try:
            data = render_with_timeout(get_renderer(export_format), model, options)
            self.storage.save_rendered(local_id, export_format, data)
        except PdfToolNotFoundError as e:
            self._unavailable[export_format] = str(e)
            self.logger.error(f"{export_format.value.upper()} generation unavailable: {e}")
            self._emit(f"{export_format.value.upper()} generation unavailable: {e}", ProgressLevel.ERROR)
            return FormatStatus.FAILED
        except (GenerationTimeoutError, RenderError, StorageError) as e:
            self.logger.warning(f"{export_format.value.upper()} generation failed for '{title}': {e}")
            self.logger.debug("Render failure details", exc_info=True)
            self._emit(f"{export_format.value.upper()} generation failed {title}: {e}", ProgressLevel.ERROR)
            return FormatStatus.FAILED

        self.logger.debug(f"Rendered {export_format.value} for {local_id} ({len(data)} bytes)")
        return FormatStatus.RENDERED

    # ---- bookkeeping --------------------------------------------------------

    @staticmethod
    def _new_stats() -> Dict[str, Any]:
        return {
            'documents_total': 0,
            'documents_succeeded': 0,
            'documents_failed': 0,
            'documents_skipped': 0,
            'folders_created': 0,
            'assets_downloaded': 0,
            'assets_failed': 0,
            'images_embedded': 0,
            'images_failed': 0,
            'formats': {},
            'failures': [],
        }

    def _count_format(self, export_format: ExportFormat, status: FormatStatus) -> None:
        counts = self.stats['formats'].setdefault(
            export_format.value, {member.value: 0 for member in FormatStatus}
        )
        counts[status.value] += 1

    def _abort(self, message: str, start_time: float) -> ExportResult:
        duration = time.time() - start_time
        self.logger.error(f"Export aborted: {message}")
        self._emit(f"Export aborted: {message}", ProgressLevel.ERROR)
        self._update_source_status('error', message)

        summary = self.report_generator.build_summary(self.stats, duration)
        summary['aborted'] = True
        return ExportResult(success=False, message=message, summary=summary)

    def _update_source_status(self, status: str, error_message: Optional[str]) -> None:
        now = utc_now_iso()
        self.source.status = status
        self.source.error_message = error_message
        self.source.updated_at = now
        if status == 'active':
            self.source.last_sync_at = now

        def record(data: Any) -> Dict[str, Any]:
            if not isinstance(data, dict):
                data = {}
            sources = data.setdefault('sources', {})
            if not self.source.created_at:
                self.source.created_at = (sources.get(self.source.id) or {}).get('created_at') or now
            sources[self.source.id] = self.source.to_dict()
            return data

        try:
            self.storage.update_config(SOURCES_CONFIG, record)
        except StorageError as e:
            self.logger.warning(f"Could not record source status: {e}")

    def _emit(self, message: str, level: ProgressLevel = ProgressLevel.INFO) -> None:
        self._deliver(ProgressEvent(message=message, level=level))

    def _deliver(self, event: ProgressEvent) -> None:
        self.events.append(event)
        message, level = event.message, event.level
        if self.progress_sink is not None:
            self.progress_sink(message, level)


def export(
    source_config: SourceConfig,
    progress_sink: Optional[ProgressSink] = None,
    config: Optional[Dict[str, Any]] = None,
    **kwargs: Any
) -> ExportResult:
    """
    Convenience function to export one knowledge base.

    Args:
        source_config: Source connection settings
        progress_sink: Callback receiving (message, level) progress events
        config: Optional configuration dictionary
        **kwargs: Forwarded to ExportOrchestrator (storage, client, downloader, logger)

    Returns:
        ExportResult with the run summary
    """
    orchestrator = ExportOrchestrator(source_config, config=config, **kwargs)
    try:
        return orchestrator.export(progress_sink)
    finally:
        orchestrator.close()


__all__ = [
    'ExportOrchestrator',
    'DocumentExportError',
    'export',
    'root_folder_id',
    'folder_id',
    'document_id',
    'normalize_remote_date',
]
