"""
Schema canonicalization.

canonicalize() turns raw schema text and an optional format tag into a
SchemaContent whose canonical text is used for registry-wide equality:

- AVRO: Avro Parsing Canonical Form from the avro library (see avro.py)
- JSON: the JSON document re-emitted with sorted keys, no whitespace
- PROTOBUF: comments stripped, whitespace collapsed and removed around
  punctuation

Invariants:
    - canonicalize() is pure and deterministic
    - Inputs that cannot be parsed raise MalformedSchemaError
    - Semantically equal inputs in one format yield equal SchemaContent

Example:
    >>> canonicalize('[ "string" ]').canonical
    '["string"]'
    >>> canonicalize('{"b": 1, "a": 2}', "JSON").canonical
    '{"a":2,"b":1}'
"""

from __future__ import annotations

import json
import re
from typing import Callable, Optional, Union

from ..errors import MalformedSchemaError
from .avro import parsing_canonical_form
from .types import SchemaContent, SchemaFormat

_PROTO_TOKEN_RE = re.compile(
    r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')|(//[^\n]*|/\*.*?\*/)""",
    re.DOTALL,
)
_PROTO_PUNCT_RE = re.compile(r"\s*([{}\[\]();=,<>])\s*")
_PROTO_DECL_RE = re.compile(r"\b(syntax|message|enum|service)\b")


def canonicalize(
    raw: Union[str, bytes],
    declared_format: Union[SchemaFormat, str, None] = None,
) -> SchemaContent:
    """Canonicalize raw schema text.

    Args:
        raw: Schema text (str, or UTF-8 bytes)
        declared_format: Format tag; None means AVRO

    Returns:
        SchemaContent with canonical text and format

    Raises:
        MalformedSchemaError: If the format is unknown or the text does
            not parse as that format
    """
    schema_format = SchemaFormat.from_str(declared_format)
    text = _decode(raw, schema_format)
    if not text.strip():
        raise MalformedSchemaError("Schema is empty", schema_format=schema_format.value)
    canonical = _CANONICALIZERS[schema_format](text)
    return SchemaContent(canonical=canonical, format=schema_format)


def _decode(raw: Union[str, bytes], schema_format: SchemaFormat) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            return bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSchemaError(
                f"Schema is not valid UTF-8: {e}",
                schema_format=schema_format.value,
            ) from e
    raise MalformedSchemaError(
        f"Schema must be text, got {type(raw).__name__}",
        schema_format=schema_format.value,
    )


def _canonical_json(text: str) -> str:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedSchemaError(f"JSON schema is not valid JSON: {e}", schema_format="JSON") from e
    # JSON Schema documents are objects, or the boolean schemas true/false
    if not isinstance(document, (dict, bool)):
        raise MalformedSchemaError(
            f"JSON schema must be an object or boolean, got {type(document).__name__}",
            schema_format="JSON",
        )
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _canonical_protobuf(text: str) -> str:
    parts: list[str] = []
    pending: list[str] = []
    depth = 0
    position = 0

    def flush() -> None:
        nonlocal depth
        segment = "".join(pending)
        pending.clear()
        depth += segment.count("{") - segment.count("}")
        if depth < 0:
            raise MalformedSchemaError("Unbalanced '}' in protobuf schema", schema_format="PROTOBUF")
        parts.append(_PROTO_PUNCT_RE.sub(r"\1", re.sub(r"\s+", " ", segment)))

    # String literals are kept verbatim; comments count as whitespace
    for match in _PROTO_TOKEN_RE.finditer(text):
        pending.append(text[position:match.start()])
        literal, _comment = match.groups()
        if literal is not None:
            flush()
            parts.append(literal)
        else:
            pending.append(" ")
        position = match.end()
    pending.append(text[position:])
    flush()

    if depth != 0:
        raise MalformedSchemaError("Unbalanced '{' in protobuf schema", schema_format="PROTOBUF")

    canonical = "".join(parts).strip()
    if not _PROTO_DECL_RE.search(canonical):
        raise MalformedSchemaError(
            "Protobuf schema has no syntax, message, enum or service declaration",
            schema_format="PROTOBUF",
        )
    return canonical


_CANONICALIZERS: dict[SchemaFormat, Callable[[str], str]] = {
    SchemaFormat.AVRO: parsing_canonical_form,
    SchemaFormat.JSON: _canonical_json,
    SchemaFormat.PROTOBUF: _canonical_protobuf,
}


def fingerprint_of(raw: Union[str, bytes], declared_format: Optional[str] = None) -> str:
    """Fingerprint of raw schema text after canonicalization."""
    return canonicalize(raw, declared_format).fingerprint
