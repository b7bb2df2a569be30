"""Tests for markdown, html and lake parsing into the document model."""

import pytest

from yuque_exporter.converters import MarkupParser, parse_document
from yuque_exporter.converters.html_parser import HtmlParser
from yuque_exporter.converters.markdown_parser import HORIZONTAL_RULE, MarkdownParser
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
from yuque_exporter.models import ContentFormat, RawDocument

IMAGE_CARD = (
    '<card type="inline" name="image" '
    'value="data:%7B%22src%22%3A%22https%3A%2F%2Fcdn.example.com%2Fa.png%22%2C%22width%22%3A300%7D"></card>'
)

MARKDOWN_SAMPLE = """# Title

Some **bold** text

- a
- b

1. one

```py
x=1
```

| A | B |
|---|---|
| 1 | 2 |

---

![alt](https://x/a.png)
"""


class TestMarkdownParser:

    @pytest.fixture
    def blocks(self):
        return MarkdownParser().parse(MARKDOWN_SAMPLE)

    def test_block_sequence(self, blocks):
        kinds = [block.type for block in blocks]
        assert kinds == ['heading', 'paragraph', 'list', 'list', 'code', 'table', 'paragraph', 'image']

    def test_heading_and_inline_styles(self, blocks):
        assert blocks[0] == Heading(level=1, text='Title')
        assert blocks[1].runs == [
            TextRun('Some '),
            TextRun('bold', RunStyle(bold=True)),
            TextRun(' text'),
        ]

    def test_lists_and_code(self, blocks):
        assert blocks[2] == ListBlock(kind='bullet', items=['a', 'b'])
        assert blocks[3] == ListBlock(kind='numbered', items=['one'])
        assert blocks[4] == CodeBlock(text='x=1', language='py')

    def test_table_header_row(self, blocks):
        table = blocks[5]
        assert [[cell.text for cell in row] for row in table.rows] == [['A', 'B'], ['1', '2']]
        assert all(cell.header for cell in table.rows[0])
        assert not any(cell.header for cell in table.rows[1])

    def test_rule_and_image(self, blocks):
        assert blocks[6] == Paragraph.plain(HORIZONTAL_RULE)
        assert blocks[7] == Image(src='https://x/a.png', alt='alt')

    def test_link_rendered_with_url(self):
        runs = MarkdownParser().parse_inline('see [docs](https://x/d)')
        assert runs[1].text == 'docs (https://x/d)'
        assert runs[1].style.underline

    def test_text_with_image_becomes_container(self):
        blocks = MarkdownParser().parse('before ![i](https://x/i.png) after')

        assert len(blocks) == 1
        assert blocks[0].is_container
        assert [child.type for child in blocks[0].children] == ['paragraph', 'image', 'paragraph']

    def test_empty_input(self):
        assert MarkdownParser().parse('') == []


class TestHtmlParser:

    def test_inline_styles(self):
        blocks = HtmlParser().parse('<p>Hello <strong>world</strong></p>')
        assert blocks == [Paragraph(runs=[TextRun('Hello '), TextRun('world', RunStyle(bold=True))])]

    def test_nested_containers_collapse(self):
        assert HtmlParser().parse('<div><div><p>x</p></div></div>') == [Paragraph.plain('x')]

    def test_empty_container_vanishes(self):
        assert HtmlParser().parse('<div>  </div><p>y</p>') == [Paragraph.plain('y')]

    def test_link_appends_href(self):
        blocks = HtmlParser().parse('<p><a href="https://x">Site</a></p>')
        assert blocks[0].text == 'Site (https://x)'

    def test_alignment_and_css_color(self):
        blocks = HtmlParser().parse('<p style="text-align: center"><span style="color: #ff0000">red</span></p>')

        assert blocks[0].alignment == 'center'
        assert blocks[0].runs[0].style.color == '#ff0000'

    def test_skips_scripts(self):
        assert HtmlParser().parse('<script>alert(1)</script><p>ok</p>') == [Paragraph.plain('ok')]

    def test_table_and_lists(self):
        html = (
            '<table><tr><th>H</th></tr><tr><td colspan="2">c</td></tr></table>'
            '<ol><li>one</li><li>two</li></ol>'
        )
        table, items = HtmlParser().parse(html)

        assert table.rows[0][0].header
        assert table.rows[1][0].colspan == 2
        assert items == ListBlock(kind='numbered', items=['one', 'two'])

    def test_image_size_from_style(self):
        blocks = HtmlParser().parse('<img src="https://x/a.png" style="width: 120px" alt="a">')
        assert blocks == [Image(src='https://x/a.png', width=120, alt='a')]

    def test_pre_language(self):
        blocks = HtmlParser().parse('<pre><code class="language-go">fmt.Println()</code></pre>')
        assert blocks == [CodeBlock(text='fmt.Println()', language='go')]


class TestMarkupParser:

    def test_lake_cards_are_placed_in_order(self):
        model = MarkupParser().parse(f'<p>Intro</p>{IMAGE_CARD}<p>End</p>', ContentFormat.LAKE, title='Doc')

        assert isinstance(model, DocumentModel)
        assert model.title == 'Doc'
        assert model.blocks == [
            Paragraph.plain('Intro'),
            Image(src='https://cdn.example.com/a.png', width=300),
            Paragraph.plain('End'),
        ]

    def test_card_inside_paragraph(self):
        model = MarkupParser().parse(f'<p>See {IMAGE_CARD} here</p>', ContentFormat.LAKE)

        assert model.blocks[0].is_container
        assert len(list(model.iter_images())) == 1

    def test_cards_in_list_items_and_cells_are_kept(self):
        content = (
            f'<ul><li>step one {IMAGE_CARD}</li><li>step two</li></ul>'
            f'<table><tr><td>{IMAGE_CARD}</td><td><img src="https://x/b.png"></td></tr></table>'
        )
        model = MarkupParser().parse(content, ContentFormat.LAKE)

        card_image = Image(src='https://cdn.example.com/a.png', width=300)
        assert model.blocks == [
            ListBlock(kind='bullet', items=['step one', 'step two']),
            card_image,
            Table(rows=[[TableCell(text=''), TableCell(text='')]]),
            card_image,
            Image(src='https://x/b.png'),
        ]
        assert len(list(model.iter_images())) == 3

    def test_broken_card_is_dropped(self):
        model = MarkupParser().parse('<p>a</p><card name="image" value="data:%7Bbroken"></card>', ContentFormat.LAKE)
        assert model.blocks == [Paragraph.plain('a')]

    def test_extract_cards_placeholders(self):
        html, cards = MarkupParser.extract_cards(f'{IMAGE_CARD}{IMAGE_CARD}')

        assert html.count('data-card-ref') == 2
        assert 'data-card-ref="1"' in html
        assert len(cards) == 2

    def test_parse_document_uses_override(self):
        raw = RawDocument('1', 'intro', 'Intro', ContentFormat.MARKDOWN, body='# Old')
        model = parse_document(raw, content='# New')

        assert model.blocks == [Heading(level=1, text='New')]
        assert model.author == 'Unknown'

    def test_model_serialization(self):
        model = MarkupParser().parse('# T\n\ntext', ContentFormat.MARKDOWN, title='T')
        assert DocumentModel.from_dict(model.to_dict()) == model
