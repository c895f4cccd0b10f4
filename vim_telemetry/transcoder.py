"""
SOAP Document Transcoder
========================

Converts an XML document into plain Python values (dicts, lists, strings)
that serialize straight to JSON:

- an element without child elements becomes its text
- an element with child elements becomes a dict keyed by local child tag
- attributes live under the reserved "@" key; a leaf that carries
  attributes becomes {"@": {...}, "#text": "..."}
- tags declared as arrays in the CardinalitySchema are always lists

Sibling elements that share a tag cannot be told apart from a single
optional element without a schema. Undeclared repeats collapse to the last
sibling seen unless the schema is strict, in which case they are rejected.
"""

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union

from vim_telemetry.errors import ProtocolError
from vim_telemetry.models import TEXT_KEY, ObjectRef, text_of

logger = logging.getLogger(__name__)

ATTRIBUTES_KEY = "@"


def local_name(tag: str) -> str:
    """Strip the {namespace} and prefix parts of a tag or attribute name."""
    if tag.startswith("{"):
        tag = tag.split("}", 1)[1]
    return tag.split(":")[-1]


@dataclass(frozen=True)
class CardinalitySchema:
    """
    Declared cardinality of response fields.

    Every array field is declared under the parent tag that holds it, so a
    parent with zero occurrences still yields []. An array tag with no
    parent entry is rejected.

    Attributes:
        force_array: Local tag names always represented as lists
        empty_arrays: Parent tag -> array fields that must be present as []
            even when the parent holds no occurrence
        strict: Reject undeclared repeated siblings instead of collapsing
    """
    force_array: FrozenSet[str] = frozenset()
    empty_arrays: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    strict: bool = False

    def __post_init__(self):
        declared = frozenset(f for fields in self.empty_arrays.values() for f in fields)
        orphans = self.force_array - declared
        if orphans:
            raise ValueError(f"Array fields without a parent container: {', '.join(sorted(orphans))}")

    @classmethod
    def of(cls, containers: Optional[Mapping[str, Iterable[str]]] = None,
           strict: bool = False) -> "CardinalitySchema":
        """Schema from parent tag -> array fields; every listed field is an array."""
        containers = containers or {}
        force_array = frozenset(f for fields in containers.values() for f in fields)
        return cls(
            force_array=force_array,
            empty_arrays={parent: frozenset(fields) for parent, fields in containers.items()},
            strict=strict,
        )

    def is_array(self, tag: str) -> bool:
        return tag in self.force_array

    def required_arrays(self, tag: str) -> FrozenSet[str]:
        return self.empty_arrays.get(tag, frozenset())


EMPTY_SCHEMA = CardinalitySchema()


class DocumentTranscoder:
    """Pure XML -> structured value conversion for one cardinality schema."""

    def __init__(self, schema: CardinalitySchema = EMPTY_SCHEMA):
        self.schema = schema

    def parse(self, document: Union[bytes, str]) -> ET.Element:
        if isinstance(document, str):
            document = document.encode("utf-8")
        try:
            return ET.fromstring(document)
        except ET.ParseError as e:
            raise ProtocolError(f"Response is not well-formed XML: {e}")

    def transcode(self, document: Union[bytes, str]) -> Dict[str, Any]:
        """Whole document as {root_tag: value}."""
        root = self.parse(document)
        return {local_name(root.tag): self.element_value(root)}

    def body(self, document: Union[bytes, str]) -> Any:
        """
        Value of the SOAP Body element.

        Documents that are not SOAP envelopes are returned whole.
        """
        root = self.parse(document)
        if local_name(root.tag) == "Envelope":
            for child in root:
                if local_name(child.tag) == "Body":
                    return self._children_value(child)
        return {local_name(root.tag): self.element_value(root)}

    def element_value(self, element: ET.Element) -> Any:
        tag = local_name(element.tag)
        attributes = {local_name(name): value for name, value in element.attrib.items()}

        if len(element) == 0 and not self.schema.required_arrays(tag):
            text = element.text or ""
            if attributes:
                return {ATTRIBUTES_KEY: attributes, TEXT_KEY: text}
            return text

        value: Dict[str, Any] = {}
        if attributes:
            value[ATTRIBUTES_KEY] = attributes
        value.update(self._children_value(element))
        return value

    def _children_value(self, element: ET.Element) -> Dict[str, Any]:
        value: Dict[str, Any] = {}
        for child in element:
            tag = local_name(child.tag)
            child_value = self.element_value(child)

            if self.schema.is_array(tag):
                value.setdefault(tag, []).append(child_value)
            elif tag in value:
                if self.schema.strict:
                    raise ProtocolError(
                        f"Repeated <{tag}> under <{local_name(element.tag)}> is not declared as an array"
                    )
                logger.debug(f"Collapsing repeated <{tag}> under <{local_name(element.tag)}> to last sibling")
                value[tag] = child_value
            else:
                value[tag] = child_value

        for array_field in sorted(self.schema.required_arrays(local_name(element.tag))):
            value.setdefault(array_field, [])
        return value


def to_json(value: Any) -> str:
    """JSON text for a transcoded value (control chars, backslash and quotes escaped)."""
    return json.dumps(value, ensure_ascii=False)


def unwrap_response(body: Any, operation: str) -> Any:
    """Return <operation>Response from a SOAP body, or the body unchanged."""
    key = f"{operation}Response"
    if isinstance(body, dict) and key in body:
        return body[key]
    return body


def ref_of(value: Any, default_kind: str = "") -> Optional[ObjectRef]:
    """ObjectRef from a <tag type="Kind">id</tag> leaf, or None when empty."""
    identifier = text_of(value)
    if not identifier:
        return None
    kind = default_kind
    if isinstance(value, dict):
        kind = value.get(ATTRIBUTES_KEY, {}).get("type", default_kind)
    return ObjectRef(kind=kind, id=identifier)
