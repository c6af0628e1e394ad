"""
Typed Value Conversion

Values arrive from the logic system as strings tagged with a type name
(int, float, string, data). Numeric conversion is lenient: the longest
numeric prefix is used and anything without one converts to zero.
"""

import re
from typing import Union

from .errors import UnsupportedTypeError
from .kvp import unescape

Value = Union[int, float, str]

INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?))")


def to_int(text: str) -> int:
    """Parse the leading integer of text, or return 0 if there is none."""
    match = INT_PREFIX.match(text or "")
    return int(match.group(1)) if match else 0


def to_float(text: str) -> float:
    """Parse the leading floating point number of text, or return 0.0."""
    match = FLOAT_PREFIX.match(text or "")
    return float(match.group(1)) if match else 0.0


def string_to_type(text: str, type_name: str) -> Value:
    """
    Convert a raw string value to the given logic system type.

    Args:
        text: Raw value as received from the server
        type_name: One of 'int', 'float', 'string', 'data'

    Returns:
        The converted value.

    Raises:
        UnsupportedTypeError: For 'data' values and unknown type names
    """
    if type_name == "int":
        return to_int(text)
    if type_name == "float":
        return to_float(text)
    if type_name == "string":
        return unescape(text or "")
    if type_name == "data":
        raise UnsupportedTypeError("Data type not yet supported.")
    raise UnsupportedTypeError(f"Unsupported data type: {type_name}.")
