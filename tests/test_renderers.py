"""Tests for the HTML, DOCX and PDF renderers."""

import base64
import io
import subprocess
import time

import docx
import pytest

from conftest import PNG_BYTES
from yuque_exporter.document_model import (
    CodeBlock,
    DocumentModel,
    Heading,
    Image,
    ListBlock,
    Paragraph,
    RunStyle,
    Table,
    TableCell,
    TextRun,
)
from yuque_exporter.errors import GenerationTimeoutError, PdfToolNotFoundError, RenderError
from yuque_exporter.models import ExportFormat
from yuque_exporter.renderers import (
    DocxRenderer,
    HtmlRenderer,
    PdfRenderer,
    Renderer,
    RenderOptions,
    get_renderer,
    normalize_color,
    render_with_timeout,
)
from yuque_exporter.renderers import pdf_renderer as pdf_module
from yuque_exporter.renderers.docx_renderer import xml_safe

PNG_URI = 'data:image/png;base64,' + base64.b64encode(PNG_BYTES).decode('ascii')


@pytest.fixture
def model():
    return DocumentModel(
        title='Doc & Co',
        author='Ann',
        blocks=[
            Heading(level=2, text='Section'),
            Paragraph(runs=[
                TextRun('plain '),
                TextRun('bold', RunStyle(bold=True)),
                TextRun(' red', RunStyle(color='#f00', background_color='yellow')),
            ], alignment='center'),
            ListBlock(kind='bullet', items=['one', 'two']),
            Table(rows=[
                [TableCell('H1', header=True), TableCell('H2', header=True)],
                [TableCell('wide', colspan=2)],
            ]),
            CodeBlock(text='<script>x</script>', language='html'),
            Image(src=PNG_URI, alt='pixel'),
            Image(src='https://cdn.example.com/a.png', alt='broken', failed=True, error='HTTP 404'),
        ],
    )


class TestHtmlRenderer:

    def test_page_structure(self, model):
        page = HtmlRenderer().render(model, RenderOptions(metadata={'Source': 'Handbook'})).decode('utf-8')

        assert page.startswith('<!DOCTYPE html>')
        assert '<html lang="zh-CN">' in page
        assert '<title>Doc &amp; Co</title>' in page
        assert '<meta name="author" content="Ann">' in page
        assert 'Source: Handbook' in page
        assert '@media (max-width: 768px)' in page

    def test_blocks(self, model):
        page = HtmlRenderer().render_page(model, RenderOptions(include_header=False))

        assert '<h2>Section</h2>' in page
        assert '<p style="text-align: center">plain <strong>bold</strong>' in page
        assert 'color: #f00' in page
        assert '<ul><li>one</li><li>two</li></ul>' in page
        assert '<thead><tr><th>H1</th><th>H2</th></tr></thead>' in page
        assert '<td colspan="2">wide</td>' in page
        assert '&lt;script&gt;x&lt;/script&gt;' in page
        assert f'src="{PNG_URI}"' in page
        assert '[Image failed to load: broken]' in page
        assert 'document-header' not in page

    def test_stored_asset_links_resolve_from_documents_dir(self):
        model = DocumentModel(blocks=[
            Image(src='assets/kb/1/a.png', alt='local'),
            Paragraph(children=[Image(src='https://cdn.example.com/b.png')]),
        ])

        page = HtmlRenderer().render_page(model, RenderOptions())
        assert 'src="../assets/kb/1/a.png"' in page
        assert 'src="https://cdn.example.com/b.png"' in page

        page = HtmlRenderer().render_page(model, RenderOptions(asset_base='file:///data/'))
        assert 'src="file:///data/assets/kb/1/a.png"' in page

    def test_title_override(self, model):
        page = HtmlRenderer().render_page(model, RenderOptions(title='Custom'))
        assert '<title>Custom</title>' in page


class TestDocxRenderer:

    def test_document_contents(self, model):
        data = DocxRenderer().render(model, RenderOptions())
        document = docx.Document(io.BytesIO(data))

        texts = [paragraph.text for paragraph in document.paragraphs]
        assert texts[0] == 'Doc & Co'
        assert 'Section' in texts
        assert 'plain bold red' in texts
        assert '[Image failed to load: broken]' in texts
        assert document.core_properties.author == 'Ann'
        assert len(document.inline_shapes) == 1
        assert document.tables[0].cell(0, 0).text == 'H1'
        assert document.tables[0].cell(1, 0).text == 'wide'

    def test_image_scaled_to_text_width(self, model):
        data = DocxRenderer().render(model, RenderOptions())
        document = docx.Document(io.BytesIO(data))

        section = document.sections[-1]
        available = section.page_width - section.left_margin - section.right_margin
        assert document.inline_shapes[0].width <= available

    def test_remote_image_becomes_placeholder(self):
        model = DocumentModel(blocks=[Image(src='https://cdn.example.com/x.png', alt='remote')])
        document = docx.Document(io.BytesIO(DocxRenderer().render(model, RenderOptions(include_header=False))))

        assert [p.text for p in document.paragraphs] == ['[Image failed to load: remote]']
        assert len(document.inline_shapes) == 0

    def test_control_characters_are_stripped(self):
        model = DocumentModel(title='Ti\x0ctle', blocks=[
            Heading(level=1, text='Head\x01'),
            Paragraph(runs=[TextRun('bell\x08char')]),
            ListBlock(kind='bullet', items=['it\x1bem']),
            Table(rows=[[TableCell('ce\x00ll')]]),
            CodeBlock(text='co\x07de'),
        ])

        document = docx.Document(io.BytesIO(DocxRenderer().render(model, RenderOptions())))

        texts = [paragraph.text for paragraph in document.paragraphs]
        assert texts[:5] == ['Title', 'Head', 'bellchar', 'item', 'code']
        assert document.tables[0].cell(0, 0).text == 'cell'
        assert document.core_properties.title == 'Title'

    def test_xml_safe_keeps_tabs_and_newlines(self):
        assert xml_safe('a\tb\nc\rd\x0be\ufffe') == 'a\tb\nc\rde'
        assert xml_safe(None) == ''

    @pytest.mark.parametrize('value, expected', [
        ('#abc', 'AABBCC'),
        ('#1a2B3c', '1A2B3C'),
        ('rgb(255, 0, 0)', 'FF0000'),
        ('rgba(0,128,255,0.5)', '0080FF'),
        ('Red', 'FF0000'),
        ('hsl(0, 0%, 0%)', '000000'),
        (None, '000000'),
    ])
    def test_normalize_color(self, value, expected):
        assert normalize_color(value) == expected


class TestPdfRenderer:

    @pytest.fixture
    def calls(self):
        return []

    def _fake_run(self, calls, returncode=0, stderr=b'', write=True):
        def run(command, **kwargs):
            calls.append((command, kwargs))
            if write:
                target = next((arg.split('=', 1)[1] for arg in command if arg.startswith('--print-to-pdf=')), None)
                with open(target or command[-1], 'wb') as f:
                    f.write(b'%PDF-1.4 fake')
            return subprocess.CompletedProcess(command, returncode, b'', stderr)
        return run

    def test_uses_configured_browser(self, monkeypatch, calls, model):
        monkeypatch.setattr(pdf_module.os.path, 'isfile', lambda path: path == '/opt/chrome')
        monkeypatch.setattr(pdf_module.shutil, 'which', lambda command: None)
        monkeypatch.setattr(pdf_module.subprocess, 'run', self._fake_run(calls))

        data = PdfRenderer().render(model, RenderOptions(browser_path='/opt/chrome', timeout=7))

        assert data == b'%PDF-1.4 fake'
        command, kwargs = calls[0]
        assert command[0] == '/opt/chrome'
        assert '--headless' in command
        assert kwargs['timeout'] == 7

    def test_falls_back_to_wkhtmltopdf(self, monkeypatch, calls, model):
        monkeypatch.setattr(pdf_module.os.path, 'isfile', lambda path: False)
        monkeypatch.setattr(
            pdf_module.shutil, 'which',
            lambda command: '/usr/bin/wkhtmltopdf' if command == 'wkhtmltopdf' else None
        )
        monkeypatch.setattr(pdf_module.subprocess, 'run', self._fake_run(calls))

        assert PdfRenderer().render(model, RenderOptions()) == b'%PDF-1.4 fake'
        assert calls[0][0][0] == '/usr/bin/wkhtmltopdf'
        assert '--enable-local-file-access' in calls[0][0]

    def test_no_tool_found(self, monkeypatch, model):
        monkeypatch.setattr(pdf_module.os.path, 'isfile', lambda path: False)
        monkeypatch.setattr(pdf_module.shutil, 'which', lambda command: None)

        renderer = PdfRenderer()
        with pytest.raises(PdfToolNotFoundError):
            renderer.render(model, RenderOptions())
        assert 'PATH:wkhtmltopdf' in renderer.searched

    def test_tool_timeout(self, monkeypatch, model):
        def slow(command, **kwargs):
            raise subprocess.TimeoutExpired(command, kwargs['timeout'])

        monkeypatch.setattr(pdf_module.shutil, 'which', lambda command: '/usr/bin/chromium')
        monkeypatch.setattr(pdf_module.os.path, 'isfile', lambda path: False)
        monkeypatch.setattr(pdf_module.subprocess, 'run', slow)

        with pytest.raises(GenerationTimeoutError):
            PdfRenderer().render(model, RenderOptions(timeout=1))

    def test_tool_failure(self, monkeypatch, calls, model):
        monkeypatch.setattr(pdf_module.shutil, 'which', lambda command: '/usr/bin/chromium')
        monkeypatch.setattr(pdf_module.os.path, 'isfile', lambda path: False)
        monkeypatch.setattr(pdf_module.subprocess, 'run', self._fake_run(calls, returncode=1, stderr=b'boom', write=False))

        with pytest.raises(RenderError, match='boom'):
            PdfRenderer().render(model, RenderOptions())

    def test_missing_output(self, monkeypatch, calls, model):
        monkeypatch.setattr(pdf_module.shutil, 'which', lambda command: '/usr/bin/chromium')
        monkeypatch.setattr(pdf_module.os.path, 'isfile', lambda path: False)
        monkeypatch.setattr(pdf_module.subprocess, 'run', self._fake_run(calls, write=False))

        with pytest.raises(RenderError, match='no PDF output'):
            PdfRenderer().render(model, RenderOptions())


class SlowRenderer(Renderer):
    format = ExportFormat.HTML

    def render(self, model, options):
        time.sleep(1.0)
        return b'late'


class CrashingRenderer(Renderer):
    format = ExportFormat.DOCX

    def render(self, model, options):
        raise ValueError('All strings must be XML compatible')


class FailingRenderer(Renderer):
    format = ExportFormat.PDF

    def render(self, model, options):
        raise RenderError('tool exploded')


class TestRenderSupport:

    def test_render_with_timeout_expires(self):
        with pytest.raises(GenerationTimeoutError) as excinfo:
            render_with_timeout(SlowRenderer(), DocumentModel(), RenderOptions(), timeout=0.1)
        assert excinfo.value.format == 'html'

    def test_render_with_timeout_returns_bytes(self):
        data = render_with_timeout(HtmlRenderer(), DocumentModel(title='T'), RenderOptions(timeout=10))
        assert b'<title>T</title>' in data

    def test_render_with_timeout_wraps_unexpected_errors(self):
        with pytest.raises(RenderError, match='DOCX rendering failed'):
            render_with_timeout(CrashingRenderer(), DocumentModel(), RenderOptions(timeout=10))

    def test_render_with_timeout_keeps_render_errors(self):
        with pytest.raises(RenderError, match='tool exploded'):
            render_with_timeout(FailingRenderer(), DocumentModel(), RenderOptions(timeout=10))

    def test_options_from_config(self):
        config = {'export': {'render_timeout': 30, 'pdf': {'browser_path': '/opt/chrome'}}}
        options = RenderOptions.from_config(config, title='Doc')

        assert options.timeout == 30
        assert options.browser_path == '/opt/chrome'
        assert options.wkhtmltopdf_path is None
        assert options.title == 'Doc'

    def test_get_renderer(self):
        assert isinstance(get_renderer(ExportFormat.DOCX), DocxRenderer)
        with pytest.raises(ValueError):
            get_renderer(ExportFormat.JSON)
