"""
Converters package: markup bodies to the format-neutral document model.

Package Structure:
- markup_parser: dispatch by body syntax (markdown, html, lake)
- markdown_parser: line-oriented markdown parser
- html_parser: BeautifulSoup walker for html and lake bodies
- card_parser: decoder for lake ``<card>`` payloads
"""

import logging
from typing import Optional

from ..document_model import DocumentModel
from ..models import RawDocument
from .card_parser import decode_card_value, format_file_size, parse_card
from .html_parser import HtmlParser
from .markdown_parser import MarkdownParser
from .markup_parser import MarkupParser


def parse_document(
    document: RawDocument,
    content: Optional[str] = None,
    logger: Optional[logging.Logger] = None
) -> DocumentModel:
    """
    Convenience function to parse a remote document into a DocumentModel.

    Args:
        document: Remote record; its preferred body is used unless ``content``
            is given
        content: Replacement body text in the same syntax (e.g. after asset
            links were rewritten)
        logger: Optional logger instance

    Returns:
        DocumentModel titled and attributed from ``document``
    """
    body, syntax = document.select_body()
    parser = MarkupParser(logger=logger)
    return parser.parse(
        body if content is None else content,
        syntax,
        title=document.title,
        author=document.author.name,
    )


__all__ = [
    'parse_document',
    'MarkupParser',
    'MarkdownParser',
    'HtmlParser',
    'parse_card',
    'decode_card_value',
    'format_file_size'
]
