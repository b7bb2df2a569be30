"""Tests for the export data models."""

import unittest

from yuque_exporter.models import (
    CatalogEntry,
    ContentFormat,
    ExportFormat,
    NodeKind,
    RawDocument,
    SourceConfig,
    TocNode,
    assign_depths,
)


class TestEnums(unittest.TestCase):

    def test_content_format_parse(self):
        self.assertEqual(ContentFormat.parse('lake'), ContentFormat.LAKE)
        self.assertEqual(ContentFormat.parse('HTML'), ContentFormat.HTML)
        self.assertEqual(ContentFormat.parse('md'), ContentFormat.MARKDOWN)
        self.assertEqual(ContentFormat.parse(None), ContentFormat.MARKDOWN)
        self.assertEqual(ContentFormat.parse('board'), ContentFormat.MARKDOWN)

    def test_node_kind_parse(self):
        self.assertEqual(NodeKind.parse('TITLE'), NodeKind.CONTAINER)
        self.assertEqual(NodeKind.parse('doc'), NodeKind.DOCUMENT)
        self.assertEqual(NodeKind.parse('LINK'), NodeKind.EXTERNAL_LINK)
        self.assertEqual(NodeKind.parse(None), NodeKind.EXTERNAL_LINK)

    def test_export_format_extension(self):
        self.assertEqual(ExportFormat.DOCX.extension, '.docx')


class TestTocNodes(unittest.TestCase):
    """Test TOC parsing and depth assignment."""

    def test_from_api_keeps_slug_only_for_documents(self):
        doc = TocNode.from_api({'uuid': 'd1', 'type': 'DOC', 'title': 'Intro', 'url': 'intro', 'doc_id': 7})
        folder = TocNode.from_api({'uuid': 'c1', 'type': 'TITLE', 'title': 'Guide', 'url': 'ignored'})

        self.assertEqual(doc.slug, 'intro')
        self.assertEqual(doc.doc_id, 7)
        self.assertIsNone(folder.slug)
        self.assertTrue(folder.is_container)

    def test_empty_parent_is_root(self):
        node = TocNode.from_api({'uuid': 'd1', 'type': 'DOC', 'parent_uuid': ''})
        self.assertIsNone(node.parent_uuid)

    def test_depths_follow_parent_chain(self):
        nodes = assign_depths([
            TocNode('a', NodeKind.CONTAINER, 'A'),
            TocNode('b', NodeKind.CONTAINER, 'B', parent_uuid='a'),
            TocNode('c', NodeKind.DOCUMENT, 'C', slug='c', parent_uuid='b'),
        ])
        self.assertEqual([n.depth for n in nodes], [0, 1, 2])

    def test_orphan_becomes_root(self):
        nodes = assign_depths([TocNode('x', NodeKind.DOCUMENT, 'X', slug='x', parent_uuid='missing')])

        self.assertEqual(nodes[0].depth, 0)
        self.assertIsNone(nodes[0].parent_uuid)

    def test_cycle_is_broken(self):
        a = TocNode('a', NodeKind.CONTAINER, 'A', parent_uuid='b')
        b = TocNode('b', NodeKind.CONTAINER, 'B', parent_uuid='a')
        assign_depths([a, b])

        self.assertIsNone(a.parent_uuid)
        self.assertEqual(a.depth, 0)
        self.assertEqual(b.depth, 1)

    def test_node_below_cycle_keeps_parent(self):
        c = TocNode('c', NodeKind.DOCUMENT, 'C', slug='c', parent_uuid='a')
        a = TocNode('a', NodeKind.CONTAINER, 'A', parent_uuid='b')
        b = TocNode('b', NodeKind.CONTAINER, 'B', parent_uuid='a')
        assign_depths([c, a, b])

        self.assertEqual(c.parent_uuid, 'a')
        self.assertIsNone(a.parent_uuid)
        self.assertEqual(b.parent_uuid, 'a')
        self.assertEqual([c.depth, a.depth, b.depth], [1, 0, 1])

    def test_self_parent_is_root(self):
        node = TocNode('s', NodeKind.CONTAINER, 'S', parent_uuid='s')
        assign_depths([node])

        self.assertIsNone(node.parent_uuid)
        self.assertEqual(node.depth, 0)


class TestRawDocument(unittest.TestCase):
    """Test body selection."""

    def test_lake_prefers_lake_body(self):
        doc = RawDocument('1', 's', 'T', ContentFormat.LAKE, body='b', body_html='<p>h</p>', body_lake='<p>l</p>')
        self.assertEqual(doc.select_body(), ('<p>l</p>', ContentFormat.LAKE))

    def test_lake_falls_back_to_html(self):
        doc = RawDocument('1', 's', 'T', ContentFormat.LAKE, body_html='<p>h</p>')
        self.assertEqual(doc.select_body(), ('<p>h</p>', ContentFormat.HTML))

    def test_markdown_prefers_body(self):
        doc = RawDocument('1', 's', 'T', ContentFormat.MARKDOWN, body='# x', body_html='<h1>x</h1>')
        self.assertEqual(doc.select_body(), ('# x', ContentFormat.MARKDOWN))

    def test_empty_document(self):
        doc = RawDocument('1', 's', 'T', ContentFormat.HTML)
        self.assertEqual(doc.select_body(), ('', ContentFormat.HTML))

    def test_from_api(self):
        doc = RawDocument.from_api({
            'id': 42, 'slug': 'intro', 'title': 'Intro', 'format': 'lake',
            'body_lake': '<p/>', 'user': {'name': 'Ann', 'login': 'ann'},
        })
        self.assertEqual(doc.id, '42')
        self.assertEqual(doc.format, ContentFormat.LAKE)
        self.assertEqual(doc.author.login, 'ann')
        self.assertEqual(doc.to_dict()['user'], {'name': 'Ann', 'login': 'ann'})


class TestRecords(unittest.TestCase):

    def test_source_config_hides_token(self):
        source = SourceConfig('kb', 'team', 'handbook', 'secret', base_url='https://example.com/')

        self.assertEqual(source.name, 'kb')
        self.assertEqual(source.base_url, 'https://example.com')
        self.assertNotIn('token', source.to_dict())
        self.assertEqual(source.to_dict(include_token=True)['token'], 'secret')

    def test_catalog_entry_round_trip(self):
        entry = CatalogEntry('yuque_kb_1', 'Intro.md', 'document', tags=['yuque:kb'])
        self.assertEqual(CatalogEntry.from_dict(entry.to_dict()), entry)


if __name__ == '__main__':
    unittest.main()
