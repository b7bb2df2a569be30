"""HTML (and pre-processed lake) parser producing document-model blocks."""

import logging
import re
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import Comment, Declaration, Doctype, ProcessingInstruction

from ..document_model import (
    ALIGNMENTS,
    Block,
    CodeBlock,
    Heading,
    Image,
    ListBlock,
    Paragraph,
    RunStyle,
    Table,
    TableCell,
    TextRun,
)
from .card_parser import LINK_STYLE, parse_card
from .markdown_parser import CODE_STYLE, HORIZONTAL_RULE

HEADING_TAGS = {'h1': 1, 'h2': 2, 'h3': 3, 'h4': 4, 'h5': 5, 'h6': 6}
CONTAINER_TAGS = {
    'p', 'div', 'section', 'article', 'blockquote', 'header', 'footer',
    'main', 'aside', 'nav', 'figure', 'figcaption', 'center', 'details', 'summary',
}
SKIP_TAGS = {'script', 'style', 'head', 'title', 'meta', 'link', 'noscript', 'template', 'svg'}
SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)

CARD_REF_ATTR = 'data-card-ref'

WHITESPACE_PATTERN = re.compile(r'\s+')
SIZE_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(px|pt)?\s*$', re.IGNORECASE)


def parse_style_attribute(style_text: Optional[str]) -> dict:
    """Split an inline ``style`` attribute into a lowercase property dict."""
    properties = {}
    for declaration in (style_text or '').split(';'):
        if ':' not in declaration:
            continue
        prop, value = declaration.split(':', 1)
        prop = prop.strip().lower()
        value = value.strip()
        if prop and value:
            properties[prop] = value
    return properties


def _parse_size(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    match = SIZE_PATTERN.match(str(value))
    if not match:
        return None
    size = int(round(float(match.group(1))))
    return size if size > 0 else None


class _BlockBuilder:
    """Collects blocks for one container, buffering inline runs into paragraphs."""

    def __init__(self, alignment: Optional[str] = None):
        self.alignment = alignment
        self.blocks: List[Block] = []
        self.runs: List[TextRun] = []

    def add_run(self, run: TextRun) -> None:
        self.runs.append(run)

    def add_block(self, block: Block) -> None:
        self.flush()
        self.blocks.append(block)

    def add_blocks(self, blocks: Sequence[Block]) -> None:
        self.flush()
        self.blocks.extend(blocks)

    def flush(self) -> None:
        runs = _normalize_runs(self.runs)
        self.runs = []
        if runs:
            self.blocks.append(Paragraph(runs=runs, alignment=self.alignment))

    def finish(self) -> List[Block]:
        self.flush()
        return self.blocks


def _normalize_runs(runs: List[TextRun]) -> List[TextRun]:
    """Trim outer whitespace, drop empty runs and merge neighbours with equal style."""
    if not any(run.text.strip() for run in runs):
        return []

    merged: List[TextRun] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].style == run.style:
            merged[-1] = TextRun(merged[-1].text + run.text, run.style)
        else:
            merged.append(TextRun(run.text, run.style))

    while merged and not merged[0].text.strip(' '):
        merged.pop(0)
    while merged and not merged[-1].text.strip(' '):
        merged.pop()
    if merged:
        merged[0] = TextRun(merged[0].text.lstrip(' '), merged[0].style)
        merged[-1] = TextRun(merged[-1].text.rstrip(' '), merged[-1].style)
    return [run for run in merged if run.text]


class HtmlParser:
    """
    Walks an HTML tree and emits blocks.

    Block-level tags (headings, lists, tables, images, ``pre``, ``hr``) end the
    current paragraph; inline tags accumulate a RunStyle that is applied to
    the text beneath them. Container tags (``p``, ``div``, ``blockquote`` and
    friends) become a container Paragraph when they hold several blocks,
    collapse to their only block, or vanish when empty.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('yuque_exporter.converters.html_parser')
        self.card_blocks: Sequence[List[Block]] = ()

    def parse(self, html: str, card_blocks: Optional[Sequence[List[Block]]] = None) -> List[Block]:
        """
        Parse HTML into blocks.

        Args:
            html: HTML source
            card_blocks: Pre-parsed card blocks, referenced from the HTML by
                ``<span data-card-ref="N">`` placeholders

        Returns:
            Blocks in document order
        """
        if not html or not html.strip():
            return []

        self.card_blocks = card_blocks or ()
        soup = BeautifulSoup(html, 'lxml')
        root = soup.body or soup

        builder = _BlockBuilder()
        self._walk(root, RunStyle(), builder)
        blocks = builder.finish()

        self.logger.debug(f"Parsed HTML into {len(blocks)} blocks")
        return blocks

    def _walk(self, node: Tag, style: RunStyle, builder: _BlockBuilder) -> None:
        for child in node.children:
            if isinstance(child, SKIPPED_STRINGS):
                continue
            if isinstance(child, NavigableString):
                text = WHITESPACE_PATTERN.sub(' ', str(child))
                if text.strip() or builder.runs:
                    builder.add_run(TextRun(text, style))
            elif isinstance(child, Tag):
                self._handle_tag(child, style, builder)

    def _handle_tag(self, tag: Tag, style: RunStyle, builder: _BlockBuilder) -> None:
        name = (tag.name or '').lower()

        if name in SKIP_TAGS:
            return

        if tag.has_attr(CARD_REF_ATTR):
            builder.add_blocks(self._card_ref(tag.get(CARD_REF_ATTR)))
            return

        if name == 'card':
            builder.add_blocks(parse_card(str(tag)))
            return

        if name in HEADING_TAGS:
            text = self._text(tag)
            if text:
                builder.add_block(Heading(level=HEADING_TAGS[name], text=text, alignment=self._alignment(tag)))
            return

        if name in CONTAINER_TAGS or name == 'li':
            builder.add_blocks(self._container(tag, style))
            return

        if name in ('ul', 'ol'):
            self._list(tag, name, builder)
            return

        if name == 'table':
            table = self._table(tag)
            if table is not None:
                builder.add_block(table)
            builder.add_blocks(self._embedded_blocks(tag))
            return

        if name == 'img':
            image = self._image(tag)
            if image is not None:
                builder.add_block(image)
            return

        if name == 'pre':
            builder.add_block(self._code_block(tag))
            return

        if name == 'hr':
            builder.add_block(Paragraph.plain(HORIZONTAL_RULE))
            return

        if name == 'br':
            builder.add_run(TextRun('\n', style))
            return

        if name == 'code':
            text = tag.get_text()
            if text:
                builder.add_run(TextRun(text, style.merge(**CODE_STYLE.to_compact_dict())))
            return

        if name == 'a':
            self._link(tag, style, builder)
            return

        self._walk(tag, self._inline_style(tag, style), builder)

    def _container(self, tag: Tag, style: RunStyle) -> List[Block]:
        alignment = self._alignment(tag)
        sub_builder = _BlockBuilder(alignment)
        self._walk(tag, self._inline_style(tag, style), sub_builder)
        blocks = sub_builder.finish()

        if not blocks:
            return []
        if len(blocks) == 1:
            only = blocks[0]
            if alignment and isinstance(only, (Paragraph, Heading)) and not only.alignment:
                only.alignment = alignment
            return [only]
        return [Paragraph(children=blocks, alignment=alignment)]

    def _list(self, tag: Tag, name: str, builder: _BlockBuilder) -> None:
        items = []
        embedded = []
        for item in tag.find_all('li', recursive=False):
            text = self._text(item)
            if text:
                items.append(text)
            embedded.extend(self._embedded_blocks(item))

        if items:
            builder.add_block(ListBlock(kind='numbered' if name == 'ol' else 'bullet', items=items))
        builder.add_blocks(embedded)

    def _table(self, tag: Tag) -> Optional[Table]:
        rows = []
        for row in tag.find_all('tr'):
            if row.find_parent('table') is not tag:
                continue
            cells = []
            for cell in row.find_all(['th', 'td'], recursive=False):
                cells.append(TableCell(
                    text=self._text(cell),
                    colspan=_parse_size(cell.get('colspan')) or 1,
                    rowspan=_parse_size(cell.get('rowspan')) or 1,
                    header=cell.name == 'th',
                ))
            if cells:
                rows.append(cells)
        return Table(rows=rows) if rows else None

    def _embedded_blocks(self, tag: Tag) -> List[Block]:
        """Images and card blocks nested in a list item or table, in document order."""
        blocks: List[Block] = []
        for node in tag.find_all(True):
            if node.has_attr(CARD_REF_ATTR):
                blocks.extend(self._card_ref(node.get(CARD_REF_ATTR)))
            elif node.name == 'card':
                blocks.extend(parse_card(str(node)))
            elif node.name == 'img':
                image = self._image(node)
                if image is not None:
                    blocks.append(image)
        return blocks

    def _image(self, tag: Tag) -> Optional[Image]:
        src = tag.get('src') or tag.get('data-src')
        if not src:
            self.logger.debug("Skipping <img> without src")
            return None

        css = parse_style_attribute(tag.get('style'))
        width = _parse_size(tag.get('width')) or _parse_size(css.get('width'))
        height = _parse_size(tag.get('height')) or _parse_size(css.get('height'))
        return Image(src=src.strip(), width=width, height=height, alt=tag.get('alt') or '')

    def _code_block(self, tag: Tag) -> CodeBlock:
        code = tag.find('code')
        language = tag.get('data-language') or tag.get('data-lang')
        for candidate in (code, tag):
            if language or candidate is None:
                break
            for css_class in candidate.get('class') or []:
                if css_class.startswith('language-') or css_class.startswith('lang-'):
                    language = css_class.split('-', 1)[1]
                    break
        return CodeBlock(text=tag.get_text().strip('\n'), language=language or None)

    def _link(self, tag: Tag, style: RunStyle, builder: _BlockBuilder) -> None:
        link_style = style.merge(**LINK_STYLE.to_compact_dict())
        self._walk(tag, link_style, builder)

        href = (tag.get('href') or '').strip()
        if href and href != self._text(tag):
            builder.add_run(TextRun(f" ({href})", link_style))

    def _card_ref(self, ref: Optional[str]) -> List[Block]:
        try:
            return list(self.card_blocks[int(ref)])
        except (TypeError, ValueError, IndexError):
            self.logger.debug(f"Dangling card reference {ref!r}")
            return []

    def _inline_style(self, tag: Tag, style: RunStyle) -> RunStyle:
        name = (tag.name or '').lower()
        changes = {}

        if name in ('b', 'strong'):
            changes['bold'] = True
        elif name in ('i', 'em', 'cite', 'var'):
            changes['italic'] = True
        elif name in ('u', 'ins'):
            changes['underline'] = True
        elif name in ('s', 'del', 'strike'):
            changes['strikethrough'] = True
        elif name == 'mark':
            changes['background_color'] = '#ffff00'
        elif name == 'font':
            changes['color'] = tag.get('color')
            changes['font_family'] = self._font_family(tag.get('face'))

        css = parse_style_attribute(tag.get('style'))

        weight = css.get('font-weight', '').lower()
        if weight in ('bold', 'bolder') or (weight.isdigit() and int(weight) >= 600):
            changes['bold'] = True
        if css.get('font-style', '').lower() in ('italic', 'oblique'):
            changes['italic'] = True

        decoration = (css.get('text-decoration') or css.get('text-decoration-line') or '').lower()
        if 'underline' in decoration:
            changes['underline'] = True
        if 'line-through' in decoration:
            changes['strikethrough'] = True

        if css.get('color'):
            changes['color'] = css['color']
        background = css.get('background-color') or css.get('background')
        if background and not background.lower().startswith(('url(', 'none', 'transparent')):
            changes['background_color'] = background
        if css.get('font-size'):
            changes['font_size'] = _parse_size(css['font-size'])
        if css.get('font-family'):
            changes['font_family'] = self._font_family(css['font-family'])

        return style.merge(**changes) if changes else style

    @staticmethod
    def _font_family(value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        family = value.split(',')[0].strip().strip('"\'').strip()
        return family or None

    @staticmethod
    def _alignment(tag: Tag) -> Optional[str]:
        css = parse_style_attribute(tag.get('style'))
        alignment = (css.get('text-align') or tag.get('align') or '').strip().lower()
        return alignment if alignment in ALIGNMENTS else None

    @staticmethod
    def _text(tag: Tag) -> str:
        return WHITESPACE_PATTERN.sub(' ', tag.get_text(' ')).strip()


__all__ = ['HtmlParser', 'parse_style_attribute', 'CARD_REF_ATTR']
