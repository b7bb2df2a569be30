"""Word (.docx) renderer built on python-docx."""

import base64
import binascii
import io
import re
from typing import Optional, Set, Tuple

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.image.exceptions import UnrecognizedImageError
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Emu, Pt, RGBColor

from ..document_model import (
    Block,
    CodeBlock,
    DocumentModel,
    Heading,
    Image,
    ListBlock,
    Paragraph,
    Table,
    TextRun,
)
from ..errors import RenderError
from ..models import ExportFormat
from .base_renderer import Renderer, RenderOptions

ALIGNMENT_MAP = {
    'left': WD_ALIGN_PARAGRAPH.LEFT,
    'center': WD_ALIGN_PARAGRAPH.CENTER,
    'right': WD_ALIGN_PARAGRAPH.RIGHT,
    'justify': WD_ALIGN_PARAGRAPH.JUSTIFY,
}

NAMED_COLORS = {
    'black': '000000',
    'white': 'FFFFFF',
    'red': 'FF0000',
    'green': '008000',
    'blue': '0000FF',
    'yellow': 'FFFF00',
    'gray': '808080',
    'grey': '808080',
    'orange': 'FFA500',
    'purple': '800080',
}

HEX_COLOR_PATTERN = re.compile(r'^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$')
RGB_COLOR_PATTERN = re.compile(r'^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*[\d.]+\s*)?\)$', re.IGNORECASE)
DATA_URI_PATTERN = re.compile(r'^data:[^;,]*(;[^,]*)?,(.*)$', re.DOTALL)
# Characters outside the XML 1.0 Char production
XML_ILLEGAL_PATTERN = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")

EMU_PER_PIXEL = 9525  # 914400 EMU per inch at 96 DPI
DEFAULT_IMAGE_SIZE = (600, 400)
PLACEHOLDER_COLOR = 'FF0000'
CODE_SHADING = 'F5F5F5'
CODE_FONT = 'Courier New'
CELL_BORDER_SIZE = '8'  # eighths of a point

# OOXML property children are order-sensitive; these follow w:shd / w:tcBorders
RPR_AFTER_SHD = (
    'w:fitText', 'w:vertAlign', 'w:rtl', 'w:cs', 'w:em', 'w:lang',
    'w:eastAsianLayout', 'w:specVanish', 'w:oMath',
)
PPR_AFTER_SHD = (
    'w:tabs', 'w:suppressAutoHyphens', 'w:kinsoku', 'w:wordWrap', 'w:overflowPunct',
    'w:topLinePunct', 'w:autoSpaceDE', 'w:autoSpaceDN', 'w:bidi', 'w:adjustRightInd',
    'w:snapToGrid', 'w:spacing', 'w:ind', 'w:contextualSpacing', 'w:mirrorIndents',
    'w:suppressOverlap', 'w:jc', 'w:textDirection', 'w:textAlignment', 'w:textboxTightWrap',
    'w:outlineLvl', 'w:divId', 'w:cnfStyle', 'w:rPr', 'w:sectPr', 'w:pPrChange',
)
TCPR_AFTER_BORDERS = (
    'w:shd', 'w:noWrap', 'w:tcMar', 'w:textDirection', 'w:tcFitText', 'w:vAlign', 'w:hideMark',
)


def normalize_color(value: Optional[str]) -> str:
    """
    Normalize a CSS color to a 6-digit uppercase hex string without ``#``.

    Accepts ``#rgb``, ``#rrggbb``, ``rgb()``/``rgba()`` and a few named
    colors; anything else becomes ``000000``.
    """
    if not value:
        return '000000'
    value = value.strip()

    match = HEX_COLOR_PATTERN.match(value)
    if match:
        digits = match.group(1)
        if len(digits) == 3:
            digits = ''.join(ch * 2 for ch in digits)
        return digits.upper()

    match = RGB_COLOR_PATTERN.match(value)
    if match:
        return ''.join(f'{min(int(part), 255):02X}' for part in match.groups())

    return NAMED_COLORS.get(value.lower(), '000000')


def xml_safe(text: Optional[str]) -> str:
    """Drop characters that Word XML cannot hold."""
    return XML_ILLEGAL_PATTERN.sub('', text or '')


def decode_data_uri(src: str) -> bytes:
    """
    Raises:
        ValueError: If ``src`` is not a base64 data URI
    """
    match = DATA_URI_PATTERN.match(src)
    if not match or 'base64' not in (match.group(1) or ''):
        raise ValueError("not a base64 data URI")
    try:
        return base64.b64decode(match.group(2), validate=False)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 payload: {e}") from e


class DocxRenderer(Renderer):
    """Renders a DocumentModel into a Word document."""

    format = ExportFormat.DOCX

    def render(self, model: DocumentModel, options: RenderOptions) -> bytes:
        document = Document()

        properties = document.core_properties
        properties.title = xml_safe(options.resolved_title(model))
        properties.author = xml_safe(options.resolved_author(model))
        properties.comments = xml_safe(options.resolved_description(model))

        if options.include_header:
            document.add_heading(xml_safe(options.resolved_title(model)), level=0)

        for block in model.blocks:
            self._add_block(document, block, None)

        buffer = io.BytesIO()
        try:
            document.save(buffer)
        except (OSError, ValueError) as e:
            raise RenderError(f"DOCX serialization failed: {e}") from e
        return buffer.getvalue()

    def _add_block(self, document, block: Block, inherited_alignment: Optional[str]) -> None:
        if isinstance(block, Heading):
            paragraph = document.add_heading(xml_safe(block.text), level=block.level)
            self._align(paragraph, block.alignment or inherited_alignment)

        elif isinstance(block, Paragraph):
            alignment = block.alignment or inherited_alignment
            if block.is_container:
                for child in block.children:
                    self._add_block(document, child, alignment)
                return
            paragraph = document.add_paragraph()
            self._align(paragraph, alignment)
            for run in block.runs:
                self._add_run(paragraph, run)

        elif isinstance(block, ListBlock):
            style = 'List Number' if block.kind == 'numbered' else 'List Bullet'
            for item in block.items:
                document.add_paragraph(xml_safe(item), style=style)

        elif isinstance(block, Table):
            self._add_table(document, block)

        elif isinstance(block, Image):
            self._add_image(document, block)

        elif isinstance(block, CodeBlock):
            paragraph = document.add_paragraph()
            _shade(paragraph._p.get_or_add_pPr(), CODE_SHADING, PPR_AFTER_SHD)
            run = paragraph.add_run(xml_safe(block.text))
            run.font.name = CODE_FONT
            run.font.size = Pt(10)

        else:
            raise RenderError(f"Unsupported block type: {type(block).__name__}")

    @staticmethod
    def _align(paragraph, alignment: Optional[str]) -> None:
        if alignment in ALIGNMENT_MAP:
            paragraph.alignment = ALIGNMENT_MAP[alignment]

    @staticmethod
    def _add_run(paragraph, text_run: TextRun):
        style = text_run.style
        run = paragraph.add_run(xml_safe(text_run.text))
        run.bold = style.bold or None
        run.italic = style.italic or None
        run.underline = style.underline or None
        if style.strikethrough:
            run.font.strike = True
        if style.color:
            run.font.color.rgb = RGBColor.from_string(normalize_color(style.color))
        if style.font_size:
            run.font.size = Pt(style.font_size)
        if style.font_family:
            run.font.name = xml_safe(style.font_family)
            run._element.get_or_add_rPr().get_or_add_rFonts().set(qn('w:eastAsia'), xml_safe(style.font_family))
        if style.background_color:
            _shade(run._element.get_or_add_rPr(), normalize_color(style.background_color), RPR_AFTER_SHD)
        return run

    def _add_table(self, document, table: Table) -> None:
        row_count = len(table.rows)
        column_count = table.column_count
        if not row_count or not column_count:
            return

        docx_table = document.add_table(rows=row_count, cols=column_count)
        occupied: Set[Tuple[int, int]] = set()

        for row_index, row in enumerate(table.rows):
            column = 0
            for cell in row:
                while (row_index, column) in occupied:
                    column += 1
                if column >= column_count:
                    break

                end_row = min(row_index + cell.rowspan - 1, row_count - 1)
                end_column = min(column + cell.colspan - 1, column_count - 1)
                target = docx_table.cell(row_index, column)
                if (end_row, end_column) != (row_index, column):
                    target = target.merge(docx_table.cell(end_row, end_column))

                for r in range(row_index, end_row + 1):
                    for c in range(column, end_column + 1):
                        occupied.add((r, c))

                target.text = ''
                run = target.paragraphs[0].add_run(xml_safe(cell.text))
                if cell.header:
                    run.bold = True
                column = end_column + 1

        if any(cell.header for cell in table.rows[0]):
            tr_pr = docx_table.rows[0]._tr.get_or_add_trPr()
            tr_pr.append(OxmlElement('w:tblHeader'))

        for docx_row in docx_table.rows:
            for docx_cell in docx_row.cells:
                _set_cell_border(docx_cell)

    def _add_image(self, document, image: Image) -> None:
        paragraph = document.add_paragraph()
        paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER

        if image.failed or not image.is_inline:
            self._add_placeholder(paragraph, image)
            return

        try:
            data = decode_data_uri(image.src)
            width, height = self._image_size(document, image)
            paragraph.add_run().add_picture(io.BytesIO(data), width=width, height=height)
        except (UnrecognizedImageError, ValueError, OSError, ZeroDivisionError) as e:
            self.logger.warning(f"Could not place image '{image.alt or 'image'}' in DOCX: {e}")
            for run in list(paragraph.runs):
                run._element.getparent().remove(run._element)
            self._add_placeholder(paragraph, image)

    @staticmethod
    def _add_placeholder(paragraph, image: Image) -> None:
        label = image.alt or 'image'
        run = paragraph.add_run(xml_safe(f"[Image failed to load: {label}]"))
        run.italic = True
        run.font.color.rgb = RGBColor.from_string(PLACEHOLDER_COLOR)

    @staticmethod
    def _image_size(document, image: Image) -> Tuple[Emu, Optional[Emu]]:
        """Pixel size converted to EMU and scaled down to fit the text width."""
        section = document.sections[-1]
        available = section.page_width - section.left_margin - section.right_margin

        if image.width:
            width_px, height_px = image.width, image.height
        else:
            width_px, height_px = DEFAULT_IMAGE_SIZE[0], None

        width = width_px * EMU_PER_PIXEL
        height = height_px * EMU_PER_PIXEL if height_px else None
        if width > available:
            if height:
                height = int(height * available / width)
            width = available
        return Emu(int(width)), Emu(int(height)) if height else None


def _shade(properties, fill: str, successors: Tuple[str, ...]) -> None:
    """Attach a solid ``w:shd`` fill to a run or paragraph property element."""
    for existing in properties.findall(qn('w:shd')):
        properties.remove(existing)
    shading = OxmlElement('w:shd')
    shading.set(qn('w:val'), 'clear')
    shading.set(qn('w:color'), 'auto')
    shading.set(qn('w:fill'), fill)
    properties.insert_element_before(shading, *successors)


def _set_cell_border(cell) -> None:
    tc_pr = cell._tc.get_or_add_tcPr()
    borders = tc_pr.find(qn('w:tcBorders'))
    if borders is None:
        borders = OxmlElement('w:tcBorders')
        tc_pr.insert_element_before(borders, *TCPR_AFTER_BORDERS)
    for edge in ('top', 'left', 'bottom', 'right'):
        element = borders.find(qn(f'w:{edge}'))
        if element is None:
            element = OxmlElement(f'w:{edge}')
            borders.append(element)
        element.set(qn('w:val'), 'single')
        element.set(qn('w:sz'), CELL_BORDER_SIZE)
        element.set(qn('w:space'), '0')
        element.set(qn('w:color'), 'auto')


__all__ = ['DocxRenderer', 'normalize_color', 'decode_data_uri']
