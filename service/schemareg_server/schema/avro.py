"""
Avro Parsing Canonical Form.

Two Avro schemas that describe the same wire format reduce to the same
text under the Parsing Canonical Form transformation. The schema is
parsed and validated by the avro library, which also produces the
canonical text:

- {"type": "int"} becomes "int"
- names are replaced by their namespace-qualified fullnames
- only name, type, fields, symbols, items, values, size are kept,
  written in that order
- no whitespace outside string literals

Invariants:
    - Output is a pure function of the parsed schema
    - Any schema the avro library rejects raises MalformedSchemaError
      instead of being passed through
"""

from __future__ import annotations

from avro.errors import AvroException
from avro.schema import parse as parse_avro

from ..errors import MalformedSchemaError


def parsing_canonical_form(schema_text: str) -> str:
    """Parse Avro schema text and return its Parsing Canonical Form.

    Raises:
        MalformedSchemaError: If the text is not JSON or not a valid Avro schema
    """
    try:
        schema = parse_avro(schema_text)
    except AvroException as e:
        raise MalformedSchemaError(f"Invalid Avro schema: {e}", schema_format="AVRO") from e
    return schema.canonical_form
