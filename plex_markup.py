"""
Pulls named values out of Plex XML elements.

Plex returns a `MediaContainer` root whose children are the records (`Video`, `Directory`, `Track`).
Scalar fields are attributes on the record; list fields (genres, actors...) are child elements
  like `<Genre tag="Drama"/>`; technical fields live on the first `Media` child and its `Part`.
"""

import xml.etree.ElementTree as ET

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError, fromstring

CONTAINER_TAG: str = 'MediaContainer'
LIST_SEPARATOR: str = ','


class MarkupFieldExtractor:
    """
    Reads values from one record element at a time.
    - Absent attributes come back as empty strings, never as errors.
    - List fields are read from structurally-identified child elements, so a tag value that
      itself contains a comma stays whole.
    """

    @staticmethod
    def attribute(element: ET.Element, name: str) -> str:
        return element.get(name) or ''

    @staticmethod
    def tags(element: ET.Element, child_tag: str) -> list[str]:
        """
        Returns the `tag` attribute of each `child_tag` element, in source order.
        """
        values: list[str] = []
        for child in element.findall(child_tag):
            value: str = child.get('tag') or ''
            if value:
                values.append(value)
        return values

    @staticmethod
    def tag_list(element: ET.Element, child_tag: str) -> str:
        """
        Comma-joined `tags()`, no trailing separator.
        """
        return LIST_SEPARATOR.join(MarkupFieldExtractor.tags(element, child_tag))

    @staticmethod
    def media_attribute(element: ET.Element, name: str) -> str:
        media: ET.Element | None = element.find('Media')
        if media is None:
            return ''
        return media.get(name) or ''

    @staticmethod
    def part_attribute(element: ET.Element, name: str) -> str:
        part: ET.Element | None = element.find('Media/Part')
        if part is None:
            return ''
        return part.get(name) or ''


def parse_container(payload: bytes | str) -> ET.Element:
    """
    Parses a response body and checks that the root is a `MediaContainer`.
    Raises ParseError for malformed markup, forbidden DTD/entity declarations, or an unexpected root.
    """
    try:
        root: ET.Element = fromstring(payload)
    except DefusedXmlException as exc:
        raise ParseError(f'refused markup: {exc!r}') from exc
    if root.tag != CONTAINER_TAG:
        raise ParseError(f'expected <{CONTAINER_TAG}> root, got <{root.tag}>')
    return root


def count_elements(document: ET.Element, record_tag: str) -> int:
    """
    Counts the record elements directly under the container.
    """
    return len(document.findall(record_tag))
