"""
Key-Value Line Codec

Structured response lines from the logic system are written as
whitespace-separated key=value tokens:

    objid=1 index=0 type="int" obj_name="osc \"A\"" value=5

Keys and values may each be double-quoted, and quoted text may contain
C-style escapes. Keys and values are quoted independently ("a"="b", never
"a=b"). Parsing is permissive: tokens that do not look like key=value pairs
are skipped rather than reported.
"""

import logging
import re
from typing import Dict

logger = logging.getLogger(__name__)

KVP_PATTERN = re.compile(
    r'(?:^|\s)'
    r'("(?:\\.|[^"])*"|[^" \t\r\n=][^ \t\r\n=]*)'
    r'='
    r'("(?:\\.|[^"])*(?:"|$)|[^ \t\r\n]+)'
)

ESCAPE_CHAR = "\\"

# Escape letter -> character it stands for
UNESCAPES: Dict[str, str] = {
    "t": "\t",
    "n": "\n",
    "r": "\r",
    "v": "\v",
    "f": "\f",
    "a": "\a",
    '"': '"',
}

# Character -> escape letter
ESCAPES: Dict[str, str] = {value: key for key, value in UNESCAPES.items()}


def unescape(text: str, dequote: bool = True) -> str:
    """
    Remove surrounding quotes from text and expand C-style escapes.

    The input is never modified; a new string is returned. Unrecognized
    escapes are passed through unchanged, a lone trailing backslash is
    dropped, and a trailing unescaped quote is removed only when the
    text started with one.

    Args:
        text: Raw token, possibly quoted
        dequote: Whether to strip the surrounding double quotes

    Returns:
        The unescaped text.
    """
    if not text:
        return text

    out = []
    i = 0
    length = len(text)
    quoted = False
    if dequote and text[0] == '"':
        quoted = True
        i = 1

    while i < length:
        c = text[i]
        if c == ESCAPE_CHAR:
            if i == length - 1:
                break

            i += 1
            c = text[i]
            if c == "x":
                # Hexadecimal escapes are not decoded; the digits that follow
                # are kept as ordinary characters.
                logger.warning(f"Hexadecimal escape not supported in {text!r}")
            elif c == ESCAPE_CHAR:
                out.append(ESCAPE_CHAR)
            elif c in UNESCAPES:
                out.append(UNESCAPES[c])
            else:
                out.append(ESCAPE_CHAR)
                out.append(c)
        elif not (quoted and i == length - 1 and c == '"'):
            out.append(c)
        i += 1

    return "".join(out)


def escape(text: str) -> str:
    """Escape backslashes, quotes and control characters in text."""
    out = []
    for c in text:
        if c == ESCAPE_CHAR:
            out.append(ESCAPE_CHAR * 2)
        elif c in ESCAPES:
            out.append(ESCAPE_CHAR + ESCAPES[c])
        else:
            out.append(c)
    return "".join(out)


def quote(text: str) -> str:
    """Escape text and wrap it in double quotes."""
    return f'"{escape(text)}"'


def parse_line(line: str) -> Dict[str, str]:
    """
    Parse a key-value line into an ordered dictionary.

    Args:
        line: One line of key=value tokens

    Returns:
        Dict of unescaped keys to unescaped values, in the order they
        appeared. When a key repeats, the last occurrence wins.

    Examples:
        >>> parse_line('a=1 "b c"="d e" junk')
        {'a': '1', 'b c': 'd e'}
    """
    pairs: Dict[str, str] = {}
    for match in KVP_PATTERN.finditer(line):
        key, value = match.group(1), match.group(2)
        pairs[unescape(key)] = unescape(value)
    return pairs
