"""Standalone responsive HTML page renderer."""

import html
from typing import List, Optional

from ..document_model import (
    Block,
    CodeBlock,
    DocumentModel,
    Heading,
    Image,
    ListBlock,
    Paragraph,
    RunStyle,
    Table,
    TextRun,
)
from ..errors import RenderError
from ..models import ExportFormat
from ..storage import StorageEngine
from .base_renderer import Renderer, RenderOptions

PAGE_STYLES = """
    * {
      box-sizing: border-box;
    }

    body {
      max-width: 1200px;
      margin: 0 auto;
      padding: 20px;
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', 'Roboto', 'Helvetica Neue', Arial, sans-serif;
      line-height: 1.6;
      color: #333;
      background-color: #fff;
    }

    img {
      max-width: 100%;
      height: auto;
      display: block;
      margin: 1em 0;
    }

    table {
      max-width: 100%;
      width: 100%;
      border-collapse: collapse;
      margin: 1em 0;
      overflow-x: auto;
      display: block;
    }

    table thead {
      background-color: #f5f5f5;
    }

    table th,
    table td {
      border: 1px solid #ddd;
      padding: 8px 12px;
      text-align: left;
    }

    table th {
      font-weight: 600;
    }

    pre {
      background-color: #f5f5f5;
      border: 1px solid #ddd;
      border-radius: 4px;
      padding: 12px;
      overflow-x: auto;
      white-space: pre-wrap;
      word-wrap: break-word;
      margin: 1em 0;
    }

    code {
      font-family: 'Courier New', Courier, monospace;
      font-size: 0.9em;
      background-color: #f5f5f5;
      padding: 2px 6px;
      border-radius: 3px;
    }

    pre code {
      background-color: transparent;
      padding: 0;
    }

    h1, h2, h3, h4, h5, h6 {
      margin-top: 1.5em;
      margin-bottom: 0.5em;
      font-weight: 600;
      line-height: 1.3;
    }

    h1 {
      font-size: 2em;
      border-bottom: 2px solid #eee;
      padding-bottom: 0.3em;
    }

    h2 {
      font-size: 1.5em;
      border-bottom: 1px solid #eee;
      padding-bottom: 0.3em;
    }

    h3 {
      font-size: 1.25em;
    }

    p {
      margin: 1em 0;
    }

    ul, ol {
      margin: 1em 0;
      padding-left: 2em;
    }

    li {
      margin: 0.5em 0;
    }

    a {
      color: #0066cc;
      text-decoration: none;
    }

    hr {
      border: none;
      border-top: 1px solid #ddd;
      margin: 2em 0;
    }

    .document-header {
      border-bottom: 1px solid #eee;
      margin-bottom: 2em;
    }

    .document-meta {
      color: #888;
      font-size: 0.9em;
    }

    .image-placeholder {
      border: 1px dashed #d9534f;
      color: #d9534f;
      font-style: italic;
      padding: 1em;
      margin: 1em 0;
      text-align: center;
    }

    @media (max-width: 768px) {
      body {
        padding: 10px;
        font-size: 14px;
      }

      h1 {
        font-size: 1.5em;
      }

      h2 {
        font-size: 1.25em;
      }

      h3 {
        font-size: 1.1em;
      }

      table {
        font-size: 0.9em;
      }

      pre {
        font-size: 0.85em;
      }
    }

    @media (max-width: 480px) {
      body {
        padding: 8px;
        font-size: 13px;
      }

      table th,
      table td {
        padding: 6px 8px;
      }
    }
"""


def _escape(text: Optional[str]) -> str:
    return html.escape(text or '', quote=True)


def _align_attr(alignment: Optional[str]) -> str:
    return f' style="text-align: {alignment}"' if alignment else ''


class HtmlRenderer(Renderer):
    """Renders a DocumentModel as a self-contained HTML page."""

    format = ExportFormat.HTML

    def render(self, model: DocumentModel, options: RenderOptions) -> bytes:
        try:
            page = self.render_page(model, options)
        except (TypeError, ValueError) as e:
            raise RenderError(f"HTML rendering failed: {e}") from e
        return page.encode('utf-8')

    def render_page(self, model: DocumentModel, options: RenderOptions) -> str:
        """Full page markup as text."""
        title = options.resolved_title(model)
        author = options.resolved_author(model)
        description = options.resolved_description(model)

        head = [
            '<meta charset="UTF-8">',
            '<meta name="viewport" content="width=device-width, initial-scale=1.0">',
        ]
        if author:
            head.append(f'<meta name="author" content="{_escape(author)}">')
        if description:
            head.append(f'<meta name="description" content="{_escape(description)}">')
        head.append(f'<title>{_escape(title)}</title>')
        head.append(f'<style>{PAGE_STYLES}  </style>')

        body: List[str] = []
        if options.include_header:
            body.append(self._header(title, author, options))
        body.append('<main class="document-content">')
        body.extend(self.render_blocks(model.blocks, options.asset_base))
        body.append('</main>')

        return (
            '<!DOCTYPE html>\n'
            f'<html lang="{_escape(options.lang)}">\n'
            '<head>\n  ' + '\n  '.join(head) + '\n</head>\n'
            '<body>\n' + '\n'.join(body) + '\n</body>\n'
            '</html>\n'
        )

    def _header(self, title: str, author: Optional[str], options: RenderOptions) -> str:
        meta = []
        if author:
            meta.append(f'Author: {_escape(author)}')
        for key, value in options.metadata.items():
            if value:
                meta.append(f'{_escape(key)}: {_escape(str(value))}')

        parts = ['<header class="document-header">', f'<h1 class="document-title">{_escape(title)}</h1>']
        if meta:
            parts.append(f'<p class="document-meta">{" · ".join(meta)}</p>')
        parts.append('</header>')
        return '\n'.join(parts)

    def render_blocks(self, blocks: List[Block], asset_base: str = '') -> List[str]:
        return [self.render_block(block, asset_base) for block in blocks]

    def render_block(self, block: Block, asset_base: str = '') -> str:
        if isinstance(block, Heading):
            return f'<h{block.level}{_align_attr(block.alignment)}>{_escape(block.text)}</h{block.level}>'

        if isinstance(block, Paragraph):
            if block.is_container:
                inner = '\n'.join(self.render_blocks(block.children, asset_base))
                return f'<div class="block-group"{_align_attr(block.alignment)}>\n{inner}\n</div>'
            return f'<p{_align_attr(block.alignment)}>{self.render_runs(block.runs)}</p>'

        if isinstance(block, ListBlock):
            tag = 'ol' if block.kind == 'numbered' else 'ul'
            items = ''.join(f'<li>{_escape(item)}</li>' for item in block.items)
            return f'<{tag}>{items}</{tag}>'

        if isinstance(block, Table):
            return self._table(block)

        if isinstance(block, Image):
            return self._image(block, asset_base)

        if isinstance(block, CodeBlock):
            language = f' class="language-{_escape(block.language)}"' if block.language else ''
            return f'<pre><code{language}>{_escape(block.text)}</code></pre>'

        raise RenderError(f"Unsupported block type: {type(block).__name__}")

    def render_runs(self, runs: List[TextRun]) -> str:
        return ''.join(self._run(run) for run in runs)

    def _run(self, run: TextRun) -> str:
        text = _escape(run.text).replace('\n', '<br>')
        style = run.style

        if style.bold:
            text = f'<strong>{text}</strong>'
        if style.italic:
            text = f'<em>{text}</em>'
        if style.underline:
            text = f'<u>{text}</u>'
        if style.strikethrough:
            text = f'<s>{text}</s>'

        css = self._run_css(style)
        if css:
            text = f'<span style="{_escape(css)}">{text}</span>'
        return text

    @staticmethod
    def _run_css(style: RunStyle) -> str:
        declarations = []
        if style.color:
            declarations.append(f'color: {style.color}')
        if style.background_color:
            declarations.append(f'background-color: {style.background_color}')
        if style.font_size:
            declarations.append(f'font-size: {style.font_size}px')
        if style.font_family:
            declarations.append(f"font-family: '{style.font_family}'")
        return '; '.join(declarations)

    def _table(self, table: Table) -> str:
        rows = []
        for row in table.rows:
            cells = []
            for cell in row:
                tag = 'th' if cell.header else 'td'
                attrs = ''
                if cell.colspan > 1:
                    attrs += f' colspan="{cell.colspan}"'
                if cell.rowspan > 1:
                    attrs += f' rowspan="{cell.rowspan}"'
                cells.append(f'<{tag}{attrs}>{_escape(cell.text)}</{tag}>')
            rows.append(f'<tr>{"".join(cells)}</tr>')

        if table.rows and all(cell.header for cell in table.rows[0]):
            head, body = rows[:1], rows[1:]
            return (f'<table>\n<thead>{"".join(head)}</thead>\n'
                    f'<tbody>{"".join(body)}</tbody>\n</table>')
        return f'<table>\n<tbody>{"".join(rows)}</tbody>\n</table>'

    @staticmethod
    def _image(image: Image, asset_base: str = '') -> str:
        if image.failed:
            label = image.alt or image.src
            return f'<div class="image-placeholder">[Image failed to load: {_escape(label)}]</div>'

        src = image.src
        if StorageEngine.is_asset_address(src):
            src = asset_base + src
        attrs = f' src="{_escape(src)}" alt="{_escape(image.alt)}"'
        if image.width:
            attrs += f' width="{image.width}"'
        if image.height:
            attrs += f' height="{image.height}"'
        return f'<img{attrs}>'


__all__ = ['HtmlRenderer', 'PAGE_STYLES']
