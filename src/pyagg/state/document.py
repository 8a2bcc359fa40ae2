"""XML projection of merge store contents.

Layout::

    <result_set>
      <resultset_exception clusterId="north">timeout</resultset_exception>
      <cluster id="south">
        <data_atom>
          <id name="siteId">B</id>
          <value name="load">1</value>
        </data_atom>
      </cluster>
    </result_set>

Sources, keys and exceptions are emitted in sorted order so the same
state always produces the same text.  Unkeyed (derived) tables keep
their stored order.  ElementTree escapes reserved
markup characters in text and attribute values.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from collections.abc import Mapping

from pyagg._constants import (
    CLUSTER_TAG,
    DATA_ATOM_TAG,
    ID_TAG,
    RESULT_SET_EXCEPTION_TAG,
    RESULT_SET_TAG,
    VALUE_TAG,
    XML_INVALID_CHARS,
)
from pyagg.exceptions import DocumentError
from pyagg.models.atom import CompoundKey, DataAtom

_INVALID_CHAR = re.compile(f"[{XML_INVALID_CHARS}]")


def parse_document(text: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as exc:
        raise DocumentError(f"malformed XML document: {exc}") from exc


def to_text(element: ET.Element) -> str:
    """Serialize *element*, keeping carriage returns across a parse.

    Raises :class:`DocumentError` for characters XML cannot represent.
    """
    text = ET.tostring(element, encoding="unicode")
    match = _INVALID_CHAR.search(text)
    if match is not None:
        raise DocumentError(f"character {match.group()!r} cannot be represented in an XML document")
    # A literal CR would be read back as LF.
    return text.replace("\r", "&#13;")


def element_text(element: ET.Element) -> str:
    """Concatenated text content of *element* and its descendants."""
    return "".join(element.itertext())


def require_child(element: ET.Element, tag: str) -> ET.Element:
    child = element.find(tag)
    if child is None:
        raise DocumentError(f"<{element.tag}> is missing a <{tag}> element")
    return child


def atom_element(atom: DataAtom) -> ET.Element:
    element = ET.Element(DATA_ATOM_TAG)
    for name, value in atom.identifiers.items():
        ET.SubElement(element, ID_TAG, name=name).text = value
    for name, value in atom.values.items():
        ET.SubElement(element, VALUE_TAG, name=name).text = value
    return element


def parse_atom(element: ET.Element) -> DataAtom:
    identifiers: dict[str, str] = {}
    values: dict[str, str] = {}
    for child in element:
        name = child.get("name")
        if name is None:
            raise DocumentError(f"<{child.tag}> inside <{DATA_ATOM_TAG}> has no name attribute")
        if child.tag == ID_TAG:
            identifiers[name] = element_text(child)
        elif child.tag == VALUE_TAG:
            values[name] = element_text(child)
    return DataAtom(identifiers=identifiers, values=values)


def result_set_element(
    tables: Mapping[str, Mapping[CompoundKey, DataAtom]],
    exceptions: Mapping[str, str],
    *,
    keyed: bool = True,
) -> ET.Element:
    root = ET.Element(RESULT_SET_TAG)
    for source_id in sorted(exceptions):
        ET.SubElement(root, RESULT_SET_EXCEPTION_TAG, clusterId=source_id).text = exceptions[source_id]
    for source_id in sorted(tables):
        cluster = ET.SubElement(root, CLUSTER_TAG, id=source_id)
        table = tables[source_id]
        for key in sorted(table) if keyed else table:
            cluster.append(atom_element(table[key]))
    return root


def parse_result_set(root: ET.Element) -> tuple[dict[str, str], dict[str, list[DataAtom]]]:
    """Decode a ``result_set`` element into exceptions and per-source atoms."""
    if root.tag != RESULT_SET_TAG:
        raise DocumentError(f"expected <{RESULT_SET_TAG}>, got <{root.tag}>")

    exceptions: dict[str, str] = {}
    for element in root.iter(RESULT_SET_EXCEPTION_TAG):
        source_id = element.get("clusterId")
        if not source_id:
            raise DocumentError(f"<{RESULT_SET_EXCEPTION_TAG}> has no clusterId attribute")
        exceptions[source_id] = element_text(element)

    atoms: dict[str, list[DataAtom]] = {}
    for cluster in root.iter(CLUSTER_TAG):
        source_id = cluster.get("id")
        if not source_id:
            raise DocumentError(f"<{CLUSTER_TAG}> has no id attribute")
        atoms.setdefault(source_id, []).extend(parse_atom(element) for element in cluster.iter(DATA_ATOM_TAG))
    return exceptions, atoms
