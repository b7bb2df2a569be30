"""
Parser for Yuque lake ``<card>`` tags.

A card is an element whose ``value`` attribute holds a (usually
percent-encoded) ``data:`` JSON payload, e.g.::

    <card type="inline" name="image" value="data:%7B%22src%22%3A...%7D"></card>

This module is pure: it works on tag text with regular expressions and
returns document-model blocks. Cards that cannot be decoded, have an unknown
type or lack required fields produce no blocks and never raise.
"""

import html
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from ..document_model import Block, CodeBlock, Image, Paragraph, RunStyle, Table, TableCell, TextRun
from ..errors import CardParseError

logger = logging.getLogger('yuque_exporter.converters.card_parser')

CARD_TAG_PATTERN = re.compile(
    r'<card\b(?P<attrs>[^>]*?)(?:/>|>(?:(?:(?!<card\b)[\s\S])*?</card>)?)',
    re.IGNORECASE
)
ATTRIBUTE_PATTERN = re.compile(r'([A-Za-z_:][\w:.-]*)\s*=\s*(?:"([^"]*)"|\'([^\']*)\')')

CARD_ALIASES = {
    'img': 'image',
    'codeblock': 'code',
    'attachment': 'file',
    'bookmark': 'link',
}
PLACEMENT_TYPES = ('inline', 'block')

LINK_STYLE = RunStyle(color='#0066cc', underline=True)
SIZE_UNITS = ('B', 'KB', 'MB', 'GB', 'TB')


def card_attributes(attr_text: str) -> Dict[str, str]:
    """Parse the attribute section of a card tag into a lowercase-keyed dict."""
    attributes = {}
    for match in ATTRIBUTE_PATTERN.finditer(attr_text or ''):
        value = match.group(2) if match.group(2) is not None else match.group(3)
        attributes.setdefault(match.group(1).lower(), value)
    return attributes


def decode_card_value(raw_value: str) -> Dict[str, Any]:
    """
    Decode a card ``value`` attribute into its JSON object.

    Decoding order: HTML entities, percent-encoding, ``data:`` prefix,
    surrounding single quotes, then JSON.

    Raises:
        CardParseError: If the payload is not a JSON object
    """
    decoded = html.unescape(raw_value or '')
    decoded = unquote(decoded)
    if decoded.startswith('data:'):
        decoded = decoded[len('data:'):]
    decoded = decoded.strip()
    if len(decoded) >= 2 and decoded.startswith("'") and decoded.endswith("'"):
        decoded = decoded[1:-1]

    try:
        payload = json.loads(decoded)
    except ValueError as e:
        raise CardParseError(f"Card value is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise CardParseError(f"Card value must be a JSON object, got {type(payload).__name__}")
    return payload


def resolve_card_type(attributes: Dict[str, str], payload: Dict[str, Any]) -> Optional[str]:
    """
    Card type from the tag's ``name``, then its ``type`` unless that is only a
    placement marker, then the payload's ``type`` or ``name``.
    """
    candidates = [
        attributes.get('name'),
        attributes.get('type') if (attributes.get('type') or '').lower() not in PLACEMENT_TYPES else None,
        payload.get('type'),
        payload.get('name'),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            card_type = candidate.strip().lower()
            return CARD_ALIASES.get(card_type, card_type)
    return None


def parse_card(tag_text: str) -> List[Block]:
    """
    Convert one ``<card ...>`` tag into blocks.

    Args:
        tag_text: Full card tag text, or just its attribute section

    Returns:
        Blocks for the card; empty when the card is unusable
    """
    match = CARD_TAG_PATTERN.match(tag_text.strip())
    attributes = card_attributes(match.group('attrs') if match else tag_text)

    raw_value = attributes.get('value')
    if not raw_value:
        logger.debug("Card without value attribute skipped")
        return []

    try:
        payload = decode_card_value(raw_value)
    except CardParseError as e:
        logger.warning(f"Dropping undecodable card: {e}")
        return []

    card_type = resolve_card_type(attributes, payload)
    converter = CARD_CONVERTERS.get(card_type or '')
    if converter is None:
        logger.debug(f"Unknown card type '{card_type}' skipped")
        return []

    try:
        return converter(payload)
    except CardParseError as e:
        logger.debug(f"Dropping {card_type} card: {e}")
        return []


def format_file_size(size: Any) -> str:
    """Human readable size with two decimals, e.g. ``1.50 MB``. Empty for bad input."""
    if isinstance(size, bool):
        return ''
    if isinstance(size, str):
        try:
            size = float(size)
        except ValueError:
            return ''
    if not isinstance(size, (int, float)) or math.isnan(size) or size < 0:
        return ''

    value = float(size)
    unit_index = 0
    while value >= 1024 and unit_index < len(SIZE_UNITS) - 1:
        value /= 1024
        unit_index += 1
    return f"{value:.2f} {SIZE_UNITS[unit_index]}"


def _field(payload: Dict[str, Any], *keys: str) -> Any:
    """First non-empty value among ``keys``, looking in the payload then its ``data``."""
    data = payload.get('data') if isinstance(payload.get('data'), dict) else {}
    for key in keys:
        for source in (payload, data):
            value = source.get(key)
            if value not in (None, '', [], {}):
                return value
    return None


def _dimension(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or value <= 0:
        return None
    return int(round(value))


def _image_card(payload: Dict[str, Any]) -> List[Block]:
    src = _field(payload, 'src', 'url')
    if not isinstance(src, str):
        raise CardParseError("image card has no src")
    alt = _field(payload, 'alt', 'title', 'name')
    return [Image(
        src=src,
        width=_dimension(_field(payload, 'width')),
        height=_dimension(_field(payload, 'height')),
        alt=alt if isinstance(alt, str) else '',
    )]


def _code_card(payload: Dict[str, Any]) -> List[Block]:
    code = _field(payload, 'code', 'content')
    if not isinstance(code, str):
        raise CardParseError("code card has no code")
    language = _field(payload, 'language', 'lang', 'mode')
    return [CodeBlock(text=code, language=language if isinstance(language, str) else None)]


def _table_card(payload: Dict[str, Any]) -> List[Block]:
    rows = _field(payload, 'rows')
    if not isinstance(rows, list) or not rows:
        raise CardParseError("table card has no rows")

    table_rows = []
    for index, row in enumerate(rows):
        cells = row if isinstance(row, list) else (row.get('cells') or [] if isinstance(row, dict) else [])
        table_rows.append([
            TableCell(text=_cell_text(cell), header=index == 0)
            for cell in cells
        ])

    if not any(table_rows):
        raise CardParseError("table card rows are empty")
    return [Table(rows=[row for row in table_rows if row])]


def _cell_text(cell: Any) -> str:
    if isinstance(cell, str):
        return cell
    if isinstance(cell, dict):
        value = cell.get('content') or cell.get('value') or ''
        return value if isinstance(value, str) else str(value)
    return '' if cell is None else str(cell)


def _file_card(payload: Dict[str, Any]) -> List[Block]:
    name = _field(payload, 'name', 'title') or 'Attachment'
    url = _field(payload, 'url', 'src')

    runs = [TextRun('📎 ')]
    if isinstance(url, str):
        runs.append(TextRun(f"{name} ({url})", LINK_STYLE))
    else:
        runs.append(TextRun(str(name)))

    size_text = format_file_size(_field(payload, 'size'))
    if size_text:
        runs.append(TextRun(f" ({size_text})"))
    return [Paragraph(runs=runs)]


def _video_card(payload: Dict[str, Any]) -> List[Block]:
    url = _field(payload, 'url', 'src')
    title = str(_field(payload, 'title') or 'Video')
    poster = _field(payload, 'poster', 'cover')

    if isinstance(url, str):
        blocks: List[Block] = [Paragraph(runs=[TextRun('🎬 '), TextRun(f"{title} ({url})", LINK_STYLE)])]
    else:
        blocks = [Paragraph(runs=[TextRun(f'🎬 {title}')])]

    if isinstance(poster, str):
        blocks.append(Image(src=poster, alt=title))
    return blocks


def _link_card(payload: Dict[str, Any]) -> List[Block]:
    url = _field(payload, 'url', 'href')
    if not isinstance(url, str):
        raise CardParseError("link card has no url")

    title = str(_field(payload, 'title') or url)
    text = url if title == url else f"{title} ({url})"
    blocks: List[Block] = [Paragraph(runs=[TextRun(text, LINK_STYLE)])]

    description = _field(payload, 'description')
    if isinstance(description, str):
        blocks.append(Paragraph(runs=[TextRun(description, RunStyle(italic=True, color='#666666'))]))
    return blocks


CARD_CONVERTERS = {
    'image': _image_card,
    'code': _code_card,
    'table': _table_card,
    'file': _file_card,
    'video': _video_card,
    'link': _link_card,
}


__all__ = [
    'CARD_TAG_PATTERN',
    'LINK_STYLE',
    'card_attributes',
    'decode_card_value',
    'resolve_card_type',
    'parse_card',
    'format_file_size',
]
