"""
Format renderers for the document model.

Every renderer implements ``Renderer.render(model, options) -> bytes`` and is
looked up by ExportFormat through ``get_renderer``. JSON is not rendered here:
the JSON record is the persisted document itself.
"""

from typing import Dict, Type

from ..models import ExportFormat
from .base_renderer import Renderer, RenderOptions, render_with_timeout
from .docx_renderer import DocxRenderer, normalize_color
from .html_renderer import HtmlRenderer
from .pdf_renderer import PdfRenderer

RENDERERS: Dict[ExportFormat, Type[Renderer]] = {
    ExportFormat.HTML: HtmlRenderer,
    ExportFormat.DOCX: DocxRenderer,
    ExportFormat.PDF: PdfRenderer,
}


def get_renderer(export_format: ExportFormat) -> Renderer:
    """
    Instantiate the renderer registered for ``export_format``.

    Raises:
        ValueError: If no renderer handles the format
    """
    renderer_class = RENDERERS.get(export_format)
    if renderer_class is None:
        raise ValueError(f"No renderer registered for format: {export_format.value}")
    return renderer_class()


__all__ = [
    'Renderer',
    'RenderOptions',
    'render_with_timeout',
    'get_renderer',
    'RENDERERS',
    'HtmlRenderer',
    'DocxRenderer',
    'PdfRenderer',
    'normalize_color'
]
