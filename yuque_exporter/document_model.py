"""Format-neutral document model produced by the markup parsers.

A document is an ordered list of blocks. Leaf blocks carry text (or styled
runs), container paragraphs carry ``children``; a block never carries both.
Every block round-trips through ``to_dict`` / ``block_from_dict`` using a
``type`` discriminator so the model can be persisted inside the JSON record.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

ALIGNMENTS = ('left', 'center', 'right', 'justify')


@dataclass
class RunStyle:
    """Inline style accumulated while descending through styled markup."""

    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    color: Optional[str] = None
    background_color: Optional[str] = None
    font_size: Optional[int] = None
    font_family: Optional[str] = None

    def merge(self, **changes: Any) -> 'RunStyle':
        """Return a copy with truthy ``changes`` applied on top of this style."""
        values = self.to_dict()
        for key, value in changes.items():
            if value:
                values[key] = value
        return RunStyle(**values)

    def is_plain(self) -> bool:
        return self == RunStyle()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bold': self.bold,
            'italic': self.italic,
            'underline': self.underline,
            'strikethrough': self.strikethrough,
            'color': self.color,
            'background_color': self.background_color,
            'font_size': self.font_size,
            'font_family': self.font_family,
        }

    def to_compact_dict(self) -> Dict[str, Any]:
        """Only the fields that differ from the default style."""
        return {key: value for key, value in self.to_dict().items() if value}


@dataclass
class TextRun:
    text: str
    style: RunStyle = field(default_factory=RunStyle)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'text': self.text}
        style = self.style.to_compact_dict()
        if style:
            data['style'] = style
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TextRun':
        return cls(text=data.get('text', ''), style=RunStyle(**(data.get('style') or {})))


@dataclass
class Heading:
    level: int
    text: str
    alignment: Optional[str] = None

    type = 'heading'

    def __post_init__(self) -> None:
        self.level = min(max(int(self.level), 1), 6)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': self.type, 'level': self.level, 'text': self.text}
        if self.alignment:
            data['alignment'] = self.alignment
        return data


@dataclass
class Paragraph:
    """Either a leaf of styled runs or a container of child blocks."""

    runs: List[TextRun] = field(default_factory=list)
    children: List['Block'] = field(default_factory=list)
    alignment: Optional[str] = None

    type = 'paragraph'

    @classmethod
    def plain(cls, text: str, alignment: Optional[str] = None) -> 'Paragraph':
        return cls(runs=[TextRun(text)], alignment=alignment)

    @property
    def is_container(self) -> bool:
        return bool(self.children)

    @property
    def text(self) -> str:
        if self.children:
            return '\n'.join(block_text(child) for child in self.children)
        return ''.join(run.text for run in self.runs)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': self.type}
        if self.children:
            data['children'] = [child.to_dict() for child in self.children]
        else:
            data['runs'] = [run.to_dict() for run in self.runs]
        if self.alignment:
            data['alignment'] = self.alignment
        return data


@dataclass
class ListBlock:
    kind: str  # "bullet" or "numbered"
    items: List[str] = field(default_factory=list)

    type = 'list'

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'kind': self.kind, 'items': list(self.items)}


@dataclass
class TableCell:
    text: str
    colspan: int = 1
    rowspan: int = 1
    header: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'text': self.text}
        if self.colspan > 1:
            data['colspan'] = self.colspan
        if self.rowspan > 1:
            data['rowspan'] = self.rowspan
        if self.header:
            data['header'] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TableCell':
        return cls(
            text=data.get('text', ''),
            colspan=int(data.get('colspan', 1)),
            rowspan=int(data.get('rowspan', 1)),
            header=bool(data.get('header', False)),
        )


@dataclass
class Table:
    rows: List[List[TableCell]] = field(default_factory=list)

    type = 'table'

    @property
    def column_count(self) -> int:
        if not self.rows:
            return 0
        return max(sum(cell.colspan for cell in row) for row in self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'rows': [[cell.to_dict() for cell in row] for row in self.rows]}


@dataclass
class Image:
    """
    Image reference. ``src`` is a remote URL, a local asset address or a
    ``data:`` URI once embedded. ``failed`` marks an embedding failure so
    renderers can substitute a placeholder.
    """

    src: str
    width: Optional[int] = None
    height: Optional[int] = None
    alt: str = ''
    failed: bool = False
    error: Optional[str] = None

    type = 'image'

    @property
    def is_inline(self) -> bool:
        return self.src.startswith('data:')

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': self.type, 'src': self.src, 'alt': self.alt}
        if self.width:
            data['width'] = self.width
        if self.height:
            data['height'] = self.height
        if self.failed:
            data['failed'] = True
            data['error'] = self.error
        return data


@dataclass
class CodeBlock:
    text: str
    language: Optional[str] = None

    type = 'code'

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': self.type, 'text': self.text}
        if self.language:
            data['language'] = self.language
        return data


Block = Union[Heading, Paragraph, ListBlock, Table, Image, CodeBlock]


def block_text(block: Block) -> str:
    """Plain text of any block, used for summaries and fallbacks."""
    if isinstance(block, (Heading, CodeBlock)):
        return block.text
    if isinstance(block, Paragraph):
        return block.text
    if isinstance(block, ListBlock):
        return '\n'.join(block.items)
    if isinstance(block, Table):
        return '\n'.join(' | '.join(cell.text for cell in row) for row in block.rows)
    if isinstance(block, Image):
        return block.alt
    return ''


def block_from_dict(data: Dict[str, Any]) -> Block:
    """Rebuild a block from its ``to_dict`` form."""
    block_type = data.get('type')

    if block_type == 'heading':
        return Heading(level=data.get('level', 1), text=data.get('text', ''), alignment=data.get('alignment'))
    if block_type == 'paragraph':
        return Paragraph(
            runs=[TextRun.from_dict(run) for run in data.get('runs', [])],
            children=[block_from_dict(child) for child in data.get('children', [])],
            alignment=data.get('alignment'),
        )
    if block_type == 'list':
        return ListBlock(kind=data.get('kind', 'bullet'), items=list(data.get('items', [])))
    if block_type == 'table':
        return Table(rows=[[TableCell.from_dict(cell) for cell in row] for row in data.get('rows', [])])
    if block_type == 'image':
        return Image(
            src=data.get('src', ''),
            width=data.get('width'),
            height=data.get('height'),
            alt=data.get('alt', ''),
            failed=bool(data.get('failed', False)),
            error=data.get('error'),
        )
    if block_type == 'code':
        return CodeBlock(text=data.get('text', ''), language=data.get('language'))

    raise ValueError(f"Unknown block type: {block_type!r}")


@dataclass
class DocumentModel:
    """Ordered block list plus the metadata renderers need for page headers."""

    blocks: List[Block] = field(default_factory=list)
    title: str = ''
    author: Optional[str] = None
    description: Optional[str] = None

    def __len__(self) -> int:
        return len(self.blocks)

    def __iter__(self) -> Iterator[Block]:
        return iter(self.blocks)

    def iter_images(self) -> Iterator[Image]:
        """Yield every Image block, including those nested in containers."""
        yield from _walk_images(self.blocks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'author': self.author,
            'description': self.description,
            'blocks': [block.to_dict() for block in self.blocks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentModel':
        return cls(
            blocks=[block_from_dict(block) for block in data.get('blocks', [])],
            title=data.get('title', ''),
            author=data.get('author'),
            description=data.get('description'),
        )


def _walk_images(blocks: List[Block]) -> Iterator[Image]:
    for block in blocks:
        if isinstance(block, Image):
            yield block
        elif isinstance(block, Paragraph) and block.children:
            yield from _walk_images(block.children)


__all__ = [
    'ALIGNMENTS',
    'RunStyle',
    'TextRun',
    'Heading',
    'Paragraph',
    'ListBlock',
    'TableCell',
    'Table',
    'Image',
    'CodeBlock',
    'Block',
    'block_text',
    'block_from_dict',
    'DocumentModel',
]
