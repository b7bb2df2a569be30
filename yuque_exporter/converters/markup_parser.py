"""Entry point that dispatches a body to the parser for its syntax."""

import logging
from typing import List, Optional, Tuple

from ..document_model import Block, DocumentModel
from ..models import ContentFormat
from .card_parser import CARD_TAG_PATTERN, parse_card
from .html_parser import CARD_REF_ATTR, HtmlParser
from .markdown_parser import MarkdownParser


class MarkupParser:
    """
    Converts markdown, html and lake bodies into a DocumentModel.

    Lake is html with ``<card>`` elements; cards are parsed first and swapped
    for placeholder spans so the html walker can drop their blocks in place.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('yuque_exporter.converters.markup_parser')
        self.markdown_parser = MarkdownParser()
        self.html_parser = HtmlParser()

    def parse(
        self,
        content: str,
        content_format: ContentFormat,
        title: str = '',
        author: Optional[str] = None,
        description: Optional[str] = None
    ) -> DocumentModel:
        """
        Parse ``content`` written in ``content_format``.

        Args:
            content: Body text
            content_format: Syntax of the body
            title: Document title carried on the model
            author: Author display name
            description: Optional summary

        Returns:
            DocumentModel
        """
        if content_format == ContentFormat.MARKDOWN:
            blocks = self.markdown_parser.parse(content)
        else:
            html, card_blocks = self.extract_cards(content)
            blocks = self.html_parser.parse(html, card_blocks)

        self.logger.debug(f"Parsed {content_format.value} body of '{title}' into {len(blocks)} blocks")
        return DocumentModel(blocks=blocks, title=title, author=author, description=description)

    @staticmethod
    def extract_cards(content: str) -> Tuple[str, List[List[Block]]]:
        """
        Replace every ``<card>`` tag with a placeholder span.

        Returns:
            Tuple of (html with placeholders, blocks per placeholder index)
        """
        card_blocks: List[List[Block]] = []

        def replace(match) -> str:
            card_blocks.append(parse_card(match.group(0)))
            return f'<span {CARD_REF_ATTR}="{len(card_blocks) - 1}"></span>'

        html = CARD_TAG_PATTERN.sub(replace, content or '')
        return html, card_blocks


__all__ = ['MarkupParser']
