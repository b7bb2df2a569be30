"""Line-oriented markdown parser producing document-model blocks."""

import logging
import re
from typing import List, Optional, Tuple

from ..document_model import (
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
from .card_parser import LINK_STYLE

HEADING_PATTERN = re.compile(r'^(#{1,6})\s+(.+?)\s*#*\s*$')
FENCE_PATTERN = re.compile(r'^\s*(```|~~~)\s*([\w+#.-]*)')
BULLET_PATTERN = re.compile(r'^\s*[-*+]\s+(.+)$')
NUMBERED_PATTERN = re.compile(r'^\s*\d+[.)]\s+(.+)$')
TABLE_SEPARATOR_PATTERN = re.compile(r'^\|?[\s\-:|]+\|?$')
HR_PATTERN = re.compile(r'^\s*([-*_])(\s*\1){2,}\s*$')
QUOTE_PATTERN = re.compile(r'^\s*>\s?(.*)$')
IMAGE_PATTERN = re.compile(r'!\[([^\]]*)\]\(\s*([^)\s]+)(?:\s+"([^"]*)")?\s*\)')

# Ordered by precedence: code spans first so their content is never styled
INLINE_PATTERN = re.compile(
    r'(?P<code>`(?P<code_text>[^`]+)`)'
    r'|(?P<link>\[(?P<link_text>[^\]]+)\]\((?P<link_url>[^)\s]+)(?:\s+"[^"]*")?\))'
    r'|(?P<bold>\*\*(?P<bold_text>.+?)\*\*|__(?P<bold_alt>.+?)__)'
    r'|(?P<strike>~~(?P<strike_text>.+?)~~)'
    r'|(?P<italic>\*(?P<italic_text>[^*]+)\*|(?<![\w])_(?P<italic_alt>[^_]+)_(?![\w]))'
)

CODE_STYLE = RunStyle(font_family='Courier New', background_color='#f5f5f5')
HORIZONTAL_RULE = '─' * 50


class MarkdownParser:
    """Converts markdown text into a list of blocks."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('yuque_exporter.converters.markdown_parser')

    def parse(self, markdown: str) -> List[Block]:
        """
        Parse markdown into blocks.

        Args:
            markdown: Markdown source

        Returns:
            Blocks in document order
        """
        lines = (markdown or '').replace('\r\n', '\n').replace('\r', '\n').split('\n')
        blocks: List[Block] = []
        i = 0

        while i < len(lines):
            line = lines[i]
            stripped = line.strip()

            if not stripped:
                i += 1
                continue

            fence = FENCE_PATTERN.match(line)
            if fence:
                block, i = self._parse_code_block(lines, i, fence.group(1), fence.group(2))
                blocks.append(block)
                continue

            heading = HEADING_PATTERN.match(stripped)
            if heading:
                blocks.append(Heading(level=len(heading.group(1)), text=self._plain_text(heading.group(2))))
                i += 1
                continue

            if stripped.startswith('|'):
                table, next_index = self._parse_table(lines, i)
                if table is not None:
                    blocks.append(table)
                    i = next_index
                    continue

            if HR_PATTERN.match(stripped):
                blocks.append(Paragraph.plain(HORIZONTAL_RULE))
                i += 1
                continue

            if BULLET_PATTERN.match(line):
                block, i = self._parse_list(lines, i, 'bullet', BULLET_PATTERN)
                blocks.append(block)
                continue

            if NUMBERED_PATTERN.match(line):
                block, i = self._parse_list(lines, i, 'numbered', NUMBERED_PATTERN)
                blocks.append(block)
                continue

            quote = QUOTE_PATTERN.match(line)
            if quote:
                text = quote.group(1).strip()
                if text:
                    blocks.extend(self._parse_text_line(text))
                i += 1
                continue

            blocks.extend(self._parse_text_line(stripped))
            i += 1

        self.logger.debug(f"Parsed markdown into {len(blocks)} blocks")
        return blocks

    def _parse_code_block(self, lines: List[str], start: int, fence: str, language: str) -> Tuple[CodeBlock, int]:
        code_lines = []
        i = start + 1
        while i < len(lines) and not lines[i].strip().startswith(fence):
            code_lines.append(lines[i])
            i += 1
        return CodeBlock(text='\n'.join(code_lines), language=language or None), i + 1

    def _parse_table(self, lines: List[str], start: int) -> Tuple[Optional[Table], int]:
        rows: List[List[TableCell]] = []
        i = start
        while i < len(lines) and lines[i].strip().startswith('|'):
            line = lines[i].strip()
            i += 1
            if TABLE_SEPARATOR_PATTERN.match(line) and '-' in line:
                continue
            cells = line.strip('|').split('|')
            rows.append([
                TableCell(text=self._plain_text(cell.strip()), header=not rows)
                for cell in cells
            ])

        if not rows:
            return None, start
        return Table(rows=rows), i

    def _parse_list(self, lines: List[str], start: int, kind: str, pattern) -> Tuple[ListBlock, int]:
        items = []
        i = start
        while i < len(lines):
            match = pattern.match(lines[i])
            if not match:
                break
            items.append(self._plain_text(match.group(1).strip()))
            i += 1
        return ListBlock(kind=kind, items=items), i

    def _parse_text_line(self, text: str) -> List[Block]:
        """A text line becomes a paragraph, an image, or a container of both."""
        parts: List[Block] = []
        position = 0

        for match in IMAGE_PATTERN.finditer(text):
            before = text[position:match.start()].strip()
            if before:
                parts.append(Paragraph(runs=self.parse_inline(before)))
            parts.append(Image(src=match.group(2), alt=match.group(1) or match.group(3) or ''))
            position = match.end()

        rest = text[position:].strip()
        if rest:
            parts.append(Paragraph(runs=self.parse_inline(rest)))

        if len(parts) > 1:
            return [Paragraph(children=parts)]
        return parts

    def parse_inline(self, text: str, style: Optional[RunStyle] = None) -> List[TextRun]:
        """
        Split inline markdown into styled runs.

        Supports ``**bold**``, ``__bold__``, ``*italic*``, ``_italic_``,
        ``~~strike~~``, inline code and ``[text](url)`` links (rendered as
        ``text (url)``). Emphasis may nest.
        """
        style = style or RunStyle()
        runs: List[TextRun] = []
        position = 0

        for match in INLINE_PATTERN.finditer(text):
            if match.start() > position:
                runs.append(TextRun(text[position:match.start()], style))

            if match.group('code'):
                runs.append(TextRun(match.group('code_text'), style.merge(**CODE_STYLE.to_compact_dict())))
            elif match.group('link'):
                label = match.group('link_text')
                url = match.group('link_url')
                link_text = label if label == url else f"{label} ({url})"
                runs.append(TextRun(link_text, style.merge(**LINK_STYLE.to_compact_dict())))
            elif match.group('bold'):
                inner = match.group('bold_text') or match.group('bold_alt')
                runs.extend(self.parse_inline(inner, style.merge(bold=True)))
            elif match.group('strike'):
                runs.extend(self.parse_inline(match.group('strike_text'), style.merge(strikethrough=True)))
            else:
                inner = match.group('italic_text') or match.group('italic_alt')
                runs.extend(self.parse_inline(inner, style.merge(italic=True)))

            position = match.end()

        if position < len(text):
            runs.append(TextRun(text[position:], style))

        return runs or [TextRun(text, style)]

    def _plain_text(self, text: str) -> str:
        return ''.join(run.text for run in self.parse_inline(text))


__all__ = ['MarkdownParser', 'HORIZONTAL_RULE', 'CODE_STYLE']
