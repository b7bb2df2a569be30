"""PDF renderer: HTML page printed by a headless browser or wkhtmltopdf."""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

from ..document_model import DocumentModel
from ..errors import GenerationTimeoutError, PdfToolNotFoundError, RenderError
from ..models import ExportFormat
from .base_renderer import Renderer, RenderOptions
from .html_renderer import HtmlRenderer

BROWSER_CANDIDATES = (
    '/Applications/Google Chrome.app/Contents/MacOS/Google Chrome',
    '/Applications/Chromium.app/Contents/MacOS/Chromium',
    '/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge',
    '/usr/bin/google-chrome',
    '/usr/bin/chromium',
    '/usr/bin/chromium-browser',
    '/usr/bin/microsoft-edge',
    r'C:\Program Files\Google\Chrome\Application\chrome.exe',
    r'C:\Program Files (x86)\Google\Chrome\Application\chrome.exe',
)
BROWSER_COMMANDS = (
    'google-chrome',
    'google-chrome-stable',
    'chromium',
    'chromium-browser',
    'microsoft-edge',
)
WKHTMLTOPDF_CANDIDATES = (
    '/usr/local/bin/wkhtmltopdf',
    '/usr/bin/wkhtmltopdf',
    r'C:\Program Files\wkhtmltopdf\bin\wkhtmltopdf.exe',
)


class PdfRenderer(Renderer):
    """
    Renders the HTML page for a document and converts it to PDF with an
    external tool. A Chromium-family browser is preferred; wkhtmltopdf is the
    fallback.
    """

    format = ExportFormat.PDF

    def __init__(self, html_renderer: Optional[HtmlRenderer] = None, logger=None):
        super().__init__(logger=logger)
        self.html_renderer = html_renderer or HtmlRenderer()
        self.searched: List[str] = []

    def render(self, model: DocumentModel, options: RenderOptions) -> bytes:
        tool, kind = self.find_tool(options)
        page = self.html_renderer.render_page(model, options)

        with tempfile.TemporaryDirectory(prefix='yuque-pdf-') as workdir:
            html_path = Path(workdir) / 'document.html'
            pdf_path = Path(workdir) / 'document.pdf'
            html_path.write_text(page, encoding='utf-8')

            if kind == 'browser':
                command = [
                    tool,
                    '--headless',
                    '--disable-gpu',
                    '--no-sandbox',
                    f'--print-to-pdf={pdf_path}',
                    html_path.resolve().as_uri(),
                ]
            else:
                command = [tool, '--quiet', '--enable-local-file-access', '--page-size', 'A4', str(html_path), str(pdf_path)]

            self.logger.debug(f"Running PDF tool: {' '.join(command[:2])} ...")
            self._run(command, options.timeout)

            if not pdf_path.exists() or pdf_path.stat().st_size == 0:
                raise RenderError(f"{Path(tool).name} produced no PDF output")
            return pdf_path.read_bytes()

    def find_tool(self, options: RenderOptions) -> Tuple[str, str]:
        """
        Locate a PDF tool.

        Returns:
            Tuple of (executable path, "browser" or "wkhtmltopdf")

        Raises:
            PdfToolNotFoundError: If neither a browser nor wkhtmltopdf exists
        """
        self.searched = []

        browser = self._find(options.browser_path, BROWSER_CANDIDATES, BROWSER_COMMANDS)
        if browser:
            self.logger.debug(f"Using headless browser for PDF: {browser}")
            return browser, 'browser'

        wkhtmltopdf = self._find(options.wkhtmltopdf_path, WKHTMLTOPDF_CANDIDATES, ('wkhtmltopdf',))
        if wkhtmltopdf:
            self.logger.debug(f"Using wkhtmltopdf for PDF: {wkhtmltopdf}")
            return wkhtmltopdf, 'wkhtmltopdf'

        raise PdfToolNotFoundError(
            "No HTML-to-PDF tool found (Chrome/Chromium/Edge or wkhtmltopdf). "
            f"Searched: {', '.join(self.searched)}"
        )

    def _find(self, configured: Optional[str], candidates, commands) -> Optional[str]:
        if configured:
            self.searched.append(configured)
            if os.path.isfile(configured):
                return configured
            self.logger.warning(f"Configured PDF tool not found: {configured}")

        for candidate in candidates:
            self.searched.append(candidate)
            if os.path.isfile(candidate):
                return candidate

        for command in commands:
            self.searched.append(f"PATH:{command}")
            found = shutil.which(command)
            if found:
                return found
        return None

    def _run(self, command: List[str], timeout: float) -> None:
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise GenerationTimeoutError(self.format.value, timeout) from e
        except OSError as e:
            raise RenderError(f"Could not start {command[0]}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or b'').decode('utf-8', errors='replace').strip()
            raise RenderError(
                f"{Path(command[0]).name} exited with code {result.returncode}"
                + (f": {stderr[:300]}" if stderr else '')
            )


__all__ = ['PdfRenderer', 'BROWSER_CANDIDATES', 'BROWSER_COMMANDS', 'WKHTMLTOPDF_CANDIDATES']
