"""Data models for the Yuque export pipeline."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger('yuque_exporter')


class ExportFormat(Enum):
    """Output formats produced for every exported document."""
    JSON = "json"
    HTML = "html"
    DOCX = "docx"
    PDF = "pdf"

    @property
    def extension(self) -> str:
        return f".{self.value}"


class ContentFormat(Enum):
    """Body syntax declared by the remote record."""
    MARKDOWN = "markdown"
    LAKE = "lake"
    HTML = "html"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'ContentFormat':
        """Map a remote format string to a member, defaulting to markdown."""
        if not value:
            return cls.MARKDOWN
        value = value.lower()
        if value == 'md':
            return cls.MARKDOWN
        try:
            return cls(value)
        except ValueError:
            logger.debug(f"Unknown content format '{value}', treating as markdown")
            return cls.MARKDOWN


class NodeKind(Enum):
    """TOC node kinds as reported by the remote API."""
    CONTAINER = "TITLE"
    DOCUMENT = "DOC"
    EXTERNAL_LINK = "URL"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'NodeKind':
        value = (value or '').upper()
        if value == 'LINK':
            return cls.EXTERNAL_LINK
        try:
            return cls(value)
        except ValueError:
            return cls.EXTERNAL_LINK


class ProgressLevel(Enum):
    """Severity of an event delivered to the progress sink."""
    INFO = "Info"
    SUCCESS = "Success"
    ERROR = "Error"


class FormatStatus(Enum):
    """Per-format outcome recorded on a catalog entry."""
    RENDERED = "rendered"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SourceConfig:
    """Connection settings for one remote knowledge base."""

    id: str
    group_login: str
    book_slug: str
    token: str
    name: str = ''
    base_url: str = 'https://www.yuque.com'
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_sync_at: Optional[str] = None
    status: str = 'active'
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id
        self.base_url = self.base_url.rstrip('/')

    def to_dict(self, include_token: bool = False) -> Dict[str, Any]:
        """Serialize source config. The token is omitted unless requested."""
        data = {
            'id': self.id,
            'name': self.name,
            'base_url': self.base_url,
            'group_login': self.group_login,
            'book_slug': self.book_slug,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'last_sync_at': self.last_sync_at,
            'status': self.status,
            'error_message': self.error_message,
        }
        if include_token:
            data['token'] = self.token
        return data


@dataclass
class TocNode:
    """One entry of the remote table of contents."""

    uuid: str
    kind: NodeKind
    title: str
    slug: Optional[str] = None
    parent_uuid: Optional[str] = None
    doc_id: Optional[int] = None
    depth: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'TocNode':
        """Build a node from a TOC item of the v2 API."""
        kind = NodeKind.parse(data.get('type'))
        slug = data.get('slug') or data.get('url') or None
        return cls(
            uuid=str(data.get('uuid', '')),
            kind=kind,
            title=data.get('title') or '',
            slug=slug if kind == NodeKind.DOCUMENT else None,
            parent_uuid=data.get('parent_uuid') or None,
            doc_id=data.get('doc_id'),
        )

    @property
    def is_container(self) -> bool:
        return self.kind == NodeKind.CONTAINER

    @property
    def is_document(self) -> bool:
        return self.kind == NodeKind.DOCUMENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'uuid': self.uuid,
            'type': self.kind.value,
            'title': self.title,
            'slug': self.slug,
            'parent_uuid': self.parent_uuid,
            'doc_id': self.doc_id,
            'depth': self.depth,
        }


def assign_depths(nodes: List[TocNode]) -> List[TocNode]:
    """
    Compute ``depth`` for every node by walking parent chains.

    A node whose parent is missing from ``nodes`` is treated as root-level.
    A parent cycle is broken at its first member in TOC order, which becomes
    root-level; nodes that merely hang below a cycle keep their parent.

    Args:
        nodes: Nodes from a single TOC fetch

    Returns:
        The same list, with depths filled in
    """
    by_uuid = {node.uuid: node for node in nodes}

    for node in nodes:
        if node.parent_uuid and node.parent_uuid not in by_uuid:
            logger.debug(f"TOC node '{node.title}' has unknown parent {node.parent_uuid}, treating as root")
            node.parent_uuid = None

    for node in nodes:
        current = _chain_end(node, by_uuid)
        if current.parent_uuid == node.uuid:
            logger.warning(f"TOC parent cycle detected at '{node.title}', treating as root")
            node.parent_uuid = None

    for node in nodes:
        depth = 0
        seen = {node.uuid}
        current = node
        while current.parent_uuid and current.parent_uuid not in seen:
            seen.add(current.parent_uuid)
            current = by_uuid[current.parent_uuid]
            depth += 1
        node.depth = depth

    return nodes


def _chain_end(node: TocNode, by_uuid: Dict[str, TocNode]) -> TocNode:
    """Last node reached by following parents before a root or a repeat."""
    seen = {node.uuid}
    current = node
    while current.parent_uuid and current.parent_uuid not in seen:
        seen.add(current.parent_uuid)
        current = by_uuid[current.parent_uuid]
    return current


@dataclass
class Author:
    name: str = 'Unknown'
    login: str = 'unknown'

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'login': self.login}


@dataclass
class RawDocument:
    """The remote record for one document node."""

    id: str
    slug: str
    title: str
    format: ContentFormat = ContentFormat.MARKDOWN
    body: Optional[str] = None
    body_html: Optional[str] = None
    body_lake: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    author: Author = field(default_factory=Author)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RawDocument':
        """Build a document from the ``data`` object of the docs endpoint."""
        person = data.get('user') or data.get('creator') or {}
        return cls(
            id=str(data.get('id', '')),
            slug=data.get('slug') or '',
            title=data.get('title') or '',
            format=ContentFormat.parse(data.get('format')),
            body=data.get('body'),
            body_html=data.get('body_html'),
            body_lake=data.get('body_lake'),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            author=Author(
                name=person.get('name') or 'Unknown',
                login=person.get('login') or 'unknown',
            ),
        )

    def select_body(self) -> Tuple[str, ContentFormat]:
        """
        Pick the body to convert and the syntax it is written in.

        Lake documents prefer ``body_lake`` over ``body_html`` over ``body``;
        html documents prefer ``body_html``; markdown documents prefer
        ``body``.

        Returns:
            Tuple of (content, ContentFormat)
        """
        if self.format == ContentFormat.LAKE:
            candidates = [
                (self.body_lake, ContentFormat.LAKE),
                (self.body_html, ContentFormat.HTML),
                (self.body, ContentFormat.LAKE),
            ]
        elif self.format == ContentFormat.HTML:
            candidates = [
                (self.body_html, ContentFormat.HTML),
                (self.body, ContentFormat.HTML),
            ]
        else:
            candidates = [
                (self.body, ContentFormat.MARKDOWN),
                (self.body_html, ContentFormat.HTML),
            ]

        for content, syntax in candidates:
            if content:
                return content, syntax
        return '', candidates[0][1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'slug': self.slug,
            'title': self.title,
            'format': self.format.value,
            'body': self.body,
            'body_html': self.body_html,
            'body_lake': self.body_lake,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'user': self.author.to_dict(),
        }


@dataclass
class CatalogEntry:
    """Bookkeeping record linking a local item to its remote origin."""

    id: str
    title: str
    kind: str  # "folder" or "document"
    parent_id: Optional[str] = None
    source_id: Optional[str] = None
    remote_doc_id: Optional[str] = None
    remote_slug: Optional[str] = None
    file_type: Optional[str] = None
    format_status: Dict[str, str] = field(default_factory=dict)
    owner_name: str = 'Yuque'
    size: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    status: Optional[str] = None
    sync_status: Optional[str] = None
    updated_at: Optional[str] = None
    last_synced_at: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.kind == 'folder'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'parent_id': self.parent_id,
            'title': self.title,
            'kind': self.kind,
            'source_id': self.source_id,
            'remote_doc_id': self.remote_doc_id,
            'remote_slug': self.remote_slug,
            'file_type': self.file_type,
            'format_status': dict(self.format_status),
            'owner_name': self.owner_name,
            'size': self.size,
            'tags': list(self.tags),
            'status': self.status,
            'sync_status': self.sync_status,
            'updated_at': self.updated_at,
            'last_synced_at': self.last_synced_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CatalogEntry':
        return cls(
            id=data['id'],
            title=data.get('title', ''),
            kind=data.get('kind', 'document'),
            parent_id=data.get('parent_id'),
            source_id=data.get('source_id'),
            remote_doc_id=data.get('remote_doc_id'),
            remote_slug=data.get('remote_slug'),
            file_type=data.get('file_type'),
            format_status=data.get('format_status') or {},
            owner_name=data.get('owner_name', 'Yuque'),
            size=data.get('size'),
            tags=data.get('tags') or [],
            status=data.get('status'),
            sync_status=data.get('sync_status'),
            updated_at=data.get('updated_at'),
            last_synced_at=data.get('last_synced_at'),
        )


@dataclass
class ProgressEvent:
    """Structured log line delivered to the caller's progress sink."""

    message: str
    level: ProgressLevel = ProgressLevel.INFO
    timestamp: str = field(default_factory=lambda: utc_now_iso())

    def to_dict(self) -> Dict[str, Any]:
        return {'message': self.message, 'level': self.level.value, 'timestamp': self.timestamp}


@dataclass
class ExportResult:
    """Outcome of one export run."""

    success: bool
    message: str
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'success': self.success, 'message': self.message, 'summary': self.summary}


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


__all__ = [
    'ExportFormat',
    'ContentFormat',
    'NodeKind',
    'ProgressLevel',
    'FormatStatus',
    'SourceConfig',
    'TocNode',
    'assign_depths',
    'Author',
    'RawDocument',
    'CatalogEntry',
    'ProgressEvent',
    'ExportResult',
    'utc_now_iso',
]
