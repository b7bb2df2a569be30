"""Renderer interface, options and the timeout wrapper shared by all formats."""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..document_model import DocumentModel
from ..errors import ExportError, GenerationTimeoutError, RenderError
from ..models import ExportFormat

logger = logging.getLogger('yuque_exporter.renderers')


@dataclass
class RenderOptions:
    """Per-document settings passed to every renderer."""

    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    lang: str = 'zh-CN'
    include_header: bool = True
    metadata: Dict[str, str] = field(default_factory=dict)
    timeout: float = 120
    browser_path: Optional[str] = None
    wkhtmltopdf_path: Optional[str] = None
    # Prefix for stored asset addresses; documents/<id>.html sits one level below the root
    asset_base: str = '../'

    def resolved_title(self, model: DocumentModel) -> str:
        return self.title or model.title or 'Untitled'

    def resolved_author(self, model: DocumentModel) -> Optional[str]:
        return self.author or model.author

    def resolved_description(self, model: DocumentModel) -> Optional[str]:
        return self.description or model.description

    @classmethod
    def from_config(cls, config: Dict[str, Any], **overrides: Any) -> 'RenderOptions':
        """Build options from the ``export`` config section plus per-document values."""
        export_config = config.get('export', {})
        pdf_config = export_config.get('pdf') or {}
        values: Dict[str, Any] = {
            'timeout': export_config.get('render_timeout', 120),
            'browser_path': pdf_config.get('browser_path'),
            'wkhtmltopdf_path': pdf_config.get('wkhtmltopdf_path'),
        }
        values.update(overrides)
        return cls(**values)


class Renderer(ABC):
    """Turns a DocumentModel into the bytes of one output format."""

    format: ExportFormat

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f'yuque_exporter.renderers.{self.format.value}')

    @abstractmethod
    def render(self, model: DocumentModel, options: RenderOptions) -> bytes:
        """
        Render ``model``.

        Raises:
            RenderError: If the output cannot be produced
        """


def render_with_timeout(
    renderer: Renderer,
    model: DocumentModel,
    options: RenderOptions,
    timeout: Optional[float] = None
) -> bytes:
    """
    Run ``renderer.render`` with a time budget.

    The render runs on a worker thread; when the budget is exceeded the
    worker is abandoned and GenerationTimeoutError is raised.

    Args:
        renderer: Renderer to run
        model: Document model
        options: Render options
        timeout: Seconds allowed, defaults to ``options.timeout``

    Returns:
        Rendered bytes

    Raises:
        GenerationTimeoutError: If rendering exceeded the budget
        RenderError: If the renderer failed
    """
    budget = options.timeout if timeout is None else timeout
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f'render-{renderer.format.value}')
    future = executor.submit(renderer.render, model, options)
    try:
        return future.result(timeout=budget)
    except FuturesTimeoutError:
        future.cancel()
        logger.error(f"{renderer.format.value.upper()} rendering exceeded {budget:g}s")
        raise GenerationTimeoutError(renderer.format.value, budget)
    except ExportError:
        raise
    except Exception as e:
        logger.error(f"{renderer.format.value.upper()} renderer crashed: {e}")
        raise RenderError(f"{renderer.format.value.upper()} rendering failed: {e}") from e
    finally:
        executor.shutdown(wait=False)


__all__ = ['Renderer', 'RenderOptions', 'render_with_timeout']
