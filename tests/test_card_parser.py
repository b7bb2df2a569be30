"""Tests for lake card decoding."""

import json
from urllib.parse import quote

import pytest

from yuque_exporter.converters.card_parser import (
    LINK_STYLE,
    decode_card_value,
    format_file_size,
    parse_card,
)
from yuque_exporter.document_model import CodeBlock, Image, Paragraph, Table
from yuque_exporter.errors import CardParseError


def make_card(name, payload, encode=True):
    body = json.dumps(payload)
    value = 'data:' + (quote(body) if encode else body.replace('"', '&quot;'))
    return f'<card type="inline" name="{name}" value="{value}"></card>'


class TestImageCards:

    def test_image_with_dimensions(self):
        tag = make_card('image', {'src': 'https://cdn.example.com/a.png', 'width': 300, 'height': 200})

        blocks = parse_card(tag)
        assert blocks == [Image(src='https://cdn.example.com/a.png', width=300, height=200, alt='')]

    def test_image_without_src_is_dropped(self):
        assert parse_card(make_card('image', {'width': 10})) == []

    def test_img_alias(self):
        blocks = parse_card(make_card('img', {'url': 'https://x/y.png', 'name': 'diagram'}))
        assert blocks[0].alt == 'diagram'

    def test_html_entity_value(self):
        blocks = parse_card(make_card('image', {'src': 'https://x/y.png'}, encode=False))
        assert blocks[0].src == 'https://x/y.png'

    def test_invalid_dimensions_are_ignored(self):
        blocks = parse_card(make_card('image', {'src': 'https://x/y.png', 'width': -5, 'height': 'tall'}))
        assert blocks[0].width is None
        assert blocks[0].height is None


class TestOtherCards:

    def test_code_card(self):
        blocks = parse_card(make_card('codeblock', {'code': 'print(1)', 'mode': 'python'}))
        assert blocks == [CodeBlock(text='print(1)', language='python')]

    def test_table_card_first_row_is_header(self):
        blocks = parse_card(make_card('table', {'rows': [['Name', 'Age'], ['Ann', {'value': 30}]]}))

        table = blocks[0]
        assert isinstance(table, Table)
        assert [cell.header for cell in table.rows[0]] == [True, True]
        assert table.rows[1][1].text == '30'

    def test_file_card_shows_size(self):
        blocks = parse_card(make_card('file', {
            'name': 'report.pdf', 'src': 'https://x/report.pdf', 'size': 1572864,
        }))
        text = blocks[0].text

        assert 'report.pdf (https://x/report.pdf)' in text
        assert text.endswith('(1.50 MB)')

    def test_video_card_with_poster(self):
        blocks = parse_card(make_card('video', {'url': 'https://x/v.mp4', 'title': 'Demo', 'poster': 'https://x/p.jpg'}))

        assert isinstance(blocks[0], Paragraph)
        assert 'Demo (https://x/v.mp4)' in blocks[0].text
        assert blocks[1] == Image(src='https://x/p.jpg', alt='Demo')

    def test_link_card(self):
        blocks = parse_card(make_card('bookmark', {'url': 'https://x', 'title': 'Site', 'description': 'About'}))

        assert blocks[0].runs[0].text == 'Site (https://x)'
        assert blocks[0].runs[0].style == LINK_STYLE
        assert blocks[1].text == 'About'

    def test_type_from_payload_when_tag_is_placement_only(self):
        tag = '<card type="block" value="data:%7B%22type%22%3A%22image%22%2C%22src%22%3A%22https%3A%2F%2Fx%2Fa.png%22%7D"></card>'
        assert parse_card(tag)[0].src == 'https://x/a.png'

    @pytest.mark.parametrize('tag', [
        '<card name="image"></card>',
        '<card name="image" value="data:not-json"></card>',
        '<card name="mindmap" value="data:%7B%7D"></card>',
    ])
    def test_unusable_cards_are_dropped(self, tag):
        assert parse_card(tag) == []


class TestDecoding:

    def test_quoted_payload(self):
        assert decode_card_value("data:'{\"a\": 1}'") == {'a': 1}

    def test_non_object_raises(self):
        with pytest.raises(CardParseError):
            decode_card_value('data:[1, 2]')


class TestFormatFileSize:

    @pytest.mark.parametrize('size, expected', [
        (0, '0.00 B'),
        (512, '512.00 B'),
        (1536, '1.50 KB'),
        ('1048576', '1.00 MB'),
    ])
    def test_sizes(self, size, expected):
        assert format_file_size(size) == expected

    @pytest.mark.parametrize('size', [None, -1, 'big', True, float('nan')])
    def test_bad_input(self, size):
        assert format_file_size(size) == ''
