"""SOAP request detection and XML response parsing.

A request body selects the SOAP branch when its query-params mapping carries
both `soapPath` and `soapBody`. The envelope is sent verbatim; it is never
validated or re-serialized here.

Responses with an XML content type are parsed into plain dicts so that SOAP
results can be inspected the same way as JSON bodies.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Mapping

SOAP_12_CONTENT_TYPE = "application/soap+xml"
SOAP_11_CONTENT_TYPE = "text/xml; charset=utf-8"

# Body keys that hold query parameters (or the SOAP call description).
QUERY_PARAMS_KEYS = ("queryParams", "query_params")


@dataclass(frozen=True)
class SoapCall:
    """The SOAP parts of a request body."""

    path: str
    envelope: str
    action: str | None = None


def query_params_key(body: Mapping[str, Any]) -> str | None:
    """Return which query-params key the body uses, if any."""
    for key in QUERY_PARAMS_KEYS:
        if key in body:
            return key
    return None


def soap_call_from_body(body: Any) -> SoapCall | None:
    """Return the SOAP call described by body, or None for any other shape.

    Both soapPath and soapBody must be present and non-empty.
    """
    if not isinstance(body, Mapping):
        return None
    key = query_params_key(body)
    if key is None:
        return None
    query = body[key]
    if not isinstance(query, Mapping):
        return None

    path = query.get("soapPath")
    envelope = query.get("soapBody")
    if not path or not envelope:
        return None
    return SoapCall(
        path=str(path).strip("/"),
        envelope=str(envelope),
        action=query.get("soapAction") or None,
    )


def is_soap_body(body: Any) -> bool:
    """True iff body selects the SOAP branch."""
    return soap_call_from_body(body) is not None


# ---------------------------------------------------------------------------
# XML bytes -> Python dict  (response parsing)
# ---------------------------------------------------------------------------


def xml_to_dict(xml_bytes: bytes | str) -> dict[str, Any]:
    """Parse an XML document into a dict keyed by the root tag.

    Namespace URIs are dropped from tag names, so
    ``{http://schemas.xmlsoap.org/soap/envelope/}Envelope`` becomes
    ``Envelope``. Attributes become ``@name`` keys, repeated children become
    lists, text-only elements become strings and empty elements None.

    Raises:
        ET.ParseError: If the document is not well-formed.
    """
    root = ET.fromstring(xml_bytes)
    return {_local_name(root.tag): _convert_element(root)}


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def _convert_element(element: ET.Element) -> dict[str, Any] | str | None:
    converted: dict[str, Any] = {}

    for name, value in element.attrib.items():
        # Namespace declarations carry no data.
        if name.startswith("xmlns") or name.startswith("{"):
            continue
        converted[f"@{name}"] = value

    for child in element:
        tag = _local_name(child.tag)
        value = _convert_element(child)
        if tag not in converted:
            converted[tag] = value
        elif isinstance(converted[tag], list):
            converted[tag].append(value)
        else:
            converted[tag] = [converted[tag], value]

    text = (element.text or "").strip()
    if text and not converted:
        return text
    if text:
        converted["#text"] = text
    return converted or None


def soap_body_content(parsed: Mapping[str, Any]) -> Any:
    """Return the contents of Envelope/Body from a parsed SOAP response.

    Returns None if the document is not a SOAP envelope.
    """
    envelope = parsed.get("Envelope")
    if not isinstance(envelope, Mapping):
        return None
    return envelope.get("Body")


def soap_fault(parsed: Mapping[str, Any]) -> Any:
    """Return the Fault element of a parsed SOAP response, or None."""
    body = soap_body_content(parsed)
    if not isinstance(body, Mapping):
        return None
    return body.get("Fault")
