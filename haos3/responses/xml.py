"""XML helpers for S3 documents.

S3 answers in the `http://s3.amazonaws.com/doc/2006-03-01/` namespace, but
S3-compatible services do not always declare it, so lookups match element
names in any namespace.
"""

from collections.abc import Iterable
from xml.etree import ElementTree as ET

from haos3.clients.abstract import S3ProtocolClientException

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


def parse_document(content: bytes) -> ET.Element:
    """Parse an XML response body.

    Raises:
        S3ProtocolClientException: If the body is not well-formed XML.

    """
    try:
        return ET.fromstring(content)  # noqa: S314
    except ET.ParseError as error:
        msg = f"Response body is not valid XML: {error}"
        raise S3ProtocolClientException(msg) from error


def local_name(tag: str) -> str:
    """Strip the namespace from an element tag."""
    return tag.rpartition("}")[2]


def _any_namespace(path: str) -> str:
    return "/".join(f"{{*}}{step}" for step in path.split("/"))


def find_all(element: ET.Element, path: str) -> list[ET.Element]:
    """Find child elements by a `/` separated path of local names."""
    return element.findall(_any_namespace(path))


def find_text(element: ET.Element, path: str) -> str | None:
    """Return the text of the first element at `path`, or None if it is absent."""
    found = element.find(_any_namespace(path))
    if found is None:
        return None
    return found.text or ""


def require_text(root: ET.Element, document: str, path: str) -> str:
    """Return the text at `path` of a `document` root element.

    Args:
        root: The parsed root element.
        document: The expected local name of the root element.
        path: Path of the wanted element below the root.

    Raises:
        S3ProtocolClientException: If the root or the element is not what the service promised.

    """
    if local_name(root.tag) != document:
        msg = f"Expected a {document} document, got {local_name(root.tag)}"
        raise S3ProtocolClientException(msg)

    value = find_text(root, path)
    if not value:
        msg = f"{document} document has no {path}"
        raise S3ProtocolClientException(msg)
    return value


def build_document(root: str, children: Iterable[ET.Element]) -> bytes:
    """Serialize a root element holding `children`, without an XML declaration."""
    element = ET.Element(root)
    element.extend(children)
    return ET.tostring(element)


def text_element(tag: str, text: str) -> ET.Element:
    """Create an element that only holds text."""
    element = ET.Element(tag)
    element.text = text
    return element
