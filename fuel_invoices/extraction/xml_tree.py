"""
XML document tree helpers.

Documents are parsed with xmltodict: elements become mappings keyed by
their qualified tag (namespace prefixes kept, e.g. ``p:FatturaElettronica``),
attributes live under ``@name`` keys, mixed text under ``#text`` and
repeated siblings become lists. Every leaf value stays a string.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from xml.parsers.expat import ExpatError

import xmltodict

from fuel_invoices.models import ExtractionError

import logging
logger = logging.getLogger(__name__)

XmlTree = Dict[str, Any]

ATTRIBUTE_PREFIX = "@"
TEXT_KEY = "#text"

_SEGMENT = re.compile(r"^(?P<name>.+?)\[(?P<index>\d+)\]$")


def parse_xml(content: Union[str, bytes]) -> XmlTree:
    """
    Parse XML text into a dot-navigable tree.

    Entity declarations are rejected.

    Raises:
        ExtractionError: If the document is not well-formed XML or declares entities
    """
    if isinstance(content, bytes):
        # xmltodict handles the encoding declaration for bytes input
        source: Union[str, bytes] = content
    else:
        source = content.strip()
    try:
        return xmltodict.parse(source)
    except ExpatError as e:
        logger.warning(f"Malformed XML document: {e}")
        raise ExtractionError(f"XML parsing error: {e}") from e
    except ValueError as e:
        # xmltodict refuses <!ENTITY> declarations
        logger.warning(f"Rejected XML document: {e}")
        raise ExtractionError(f"XML parsing error: {e}") from e


def _split_path(path: str) -> List[Tuple[str, Optional[int]]]:
    segments = []
    for part in path.split("."):
        if not part:
            continue
        match = _SEGMENT.match(part)
        if match:
            segments.append((match.group("name"), int(match.group("index"))))
        else:
            segments.append((part, None))
    return segments


def navigate(tree: Any, path: Optional[str]) -> Any:
    """
    Follow a dot-path such as ``Body.DettaglioLinee[2].Descrizione``.

    A step landing on a list without an index continues into its first
    element. The final target is returned as-is (it may be a list).
    Returns None when any step is missing.
    """
    if not path:
        return tree

    current = tree
    for name, index in _split_path(path):
        if isinstance(current, list):
            current = current[0] if current else None
        if not isinstance(current, dict):
            return None
        current = current.get(name)
        if index is not None:
            if isinstance(current, list):
                current = current[index] if index < len(current) else None
            elif index != 0:
                current = None
        if current is None:
            return None
    return current


def locate_lines(tree: XmlTree, line_path: str) -> List[Any]:
    """
    Resolve the repeating line-item path to an ordered list of nodes.

    Empty elements (``<Line/>``) are kept as empty nodes so that every
    sibling is counted and numbered.
    """
    parent_path, _, last = line_path.rpartition(".")
    segments = _split_path(last)
    if not segments:
        return []
    name, index = segments[0]

    parent = navigate(tree, parent_path) if parent_path else tree
    if isinstance(parent, list):
        parent = parent[0] if parent else None
    if not isinstance(parent, dict) or name not in parent:
        return []

    target = parent[name]
    items = target if isinstance(target, list) else [target]
    if index is not None:
        items = items[index:index + 1]
    return [{} if item is None else item for item in items]


def node_text(node: Any) -> Optional[str]:
    """
    Text value of a resolved node.

    Lists resolve to their first element; mappings to their ``#text`` or
    their single string child. Empty text is treated as absent.
    """
    if isinstance(node, list):
        node = node[0] if node else None
    if node is None:
        return None
    if isinstance(node, dict):
        text = node.get(TEXT_KEY)
        if text is None:
            children = [v for k, v in node.items() if not k.startswith(ATTRIBUTE_PREFIX)]
            if len(children) == 1 and isinstance(children[0], str):
                text = children[0]
        return text or None
    text = str(node)
    return text or None


def resolve_text(tree: Any, path: Optional[str]) -> Optional[str]:
    """Navigate ``path`` and return its text value, or None."""
    return node_text(navigate(tree, path))


def iter_text(node: Any) -> Iterator[str]:
    """Yield every text value of a subtree in document order, attributes excluded."""
    if node is None:
        return
    if isinstance(node, list):
        for item in node:
            yield from iter_text(item)
    elif isinstance(node, dict):
        for key, value in node.items():
            if key.startswith(ATTRIBUTE_PREFIX):
                continue
            yield from iter_text(value)
    else:
        text = str(node)
        if text:
            yield text


def flatten_text(node: Any) -> str:
    """Whitespace-joined text of a subtree."""
    return " ".join(iter_text(node))


def render_node(node: Any, tag: str) -> str:
    """Serialize one node back to XML under ``tag``."""
    return xmltodict.unparse({tag: node}, full_document=False)


@dataclass
class XmlTreeNode:
    """One element of the template-editor tree view."""
    name: str
    path: str
    text: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    children: List["XmlTreeNode"] = field(default_factory=list)
    count: Optional[int] = None  # number of siblings when the element repeats

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'path': self.path,
            'text': self.text,
            'attributes': dict(self.attributes),
            'children': [child.to_dict() for child in self.children]
        }
        if self.count is not None:
            data['count'] = self.count
        return data


def _attributes(node: Dict[str, Any]) -> Dict[str, str]:
    return {k[len(ATTRIBUTE_PREFIX):]: str(v) for k, v in node.items() if k.startswith(ATTRIBUTE_PREFIX)}


def _build_tree(node: Any, parent_path: str) -> List[XmlTreeNode]:
    if not isinstance(node, dict):
        return []

    nodes = []
    for key, value in node.items():
        if key.startswith(ATTRIBUTE_PREFIX) or key == TEXT_KEY or key.startswith("?"):
            continue
        path = f"{parent_path}.{key}" if parent_path else key

        count = None
        if isinstance(value, list):
            count = len(value)
            path = f"{path}[0]"
            value = value[0] if value else None

        tree_node = XmlTreeNode(name=key, path=path, count=count)
        if isinstance(value, dict):
            tree_node.attributes = _attributes(value)
            tree_node.text = value.get(TEXT_KEY)
            tree_node.children = _build_tree(value, path)
        elif value is not None:
            tree_node.text = str(value)
        nodes.append(tree_node)
    return nodes


def get_xml_tree_structure(content: Union[str, bytes]) -> List[XmlTreeNode]:
    """
    Describe a document as a tree of named paths for template authoring.

    Repeated elements are shown once, through their first item, with an
    ``[0]`` path index and the sibling count.
    """
    return _build_tree(parse_xml(content), "")
