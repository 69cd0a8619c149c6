"""Model-facing function names for provider tools.

A function name encodes ``(provider, tool)`` as::

    mcp__<provider>__<tool>

Completion APIs only accept ``[A-Za-z0-9_-]`` in function names, so each
segment is escaped reversibly:

* ASCII letters and digits pass through.
* ``_`` passes through unless it is the first or last character of the
  segment or directly follows another literal ``_``. This keeps the ``__``
  separator unambiguous.
* Anything else (including escaped ``_`` and ``-`` itself) becomes ``-xx``
  per UTF-8 byte, in lower-case hex.

Encoded names are capped at MAX_FUNCTION_NAME_LENGTH characters. A name that
had to be truncated cannot be decoded; the broker routes those through its
exact-name index instead, and two tools truncating to the same name collide
(the first one registered wins).
"""

from ..errors import ToolRoutingError

PREFIX = "mcp"
SEPARATOR = "__"
MAX_FUNCTION_NAME_LENGTH = 64

_HEX_DIGITS = "0123456789abcdef"


def _is_plain(char: str) -> bool:
    return char.isascii() and char.isalnum()


def _escape(char: str) -> str:
    return "".join(f"-{byte:02x}" for byte in char.encode("utf-8"))


def encode_segment(segment: str) -> str:
    """Escape one name segment."""
    if not segment:
        raise ValueError("Name segment cannot be empty")

    out: list[str] = []
    last_index = len(segment) - 1
    previous_literal_underscore = False
    for index, char in enumerate(segment):
        if _is_plain(char):
            out.append(char)
            previous_literal_underscore = False
        elif (
            char == "_"
            and 0 < index < last_index
            and not previous_literal_underscore
        ):
            out.append(char)
            previous_literal_underscore = True
        else:
            out.append(_escape(char))
            previous_literal_underscore = False
    return "".join(out)


def decode_segment(segment: str, full_name: str) -> str:
    """Invert encode_segment."""
    if not segment:
        raise ToolRoutingError(f"Malformed tool function name: {full_name}")

    raw = bytearray()
    index = 0
    while index < len(segment):
        char = segment[index]
        if char == "-":
            pair = segment[index + 1 : index + 3]
            if len(pair) != 2 or any(c not in _HEX_DIGITS for c in pair):
                raise ToolRoutingError(f"Malformed escape in tool function name: {full_name}")
            raw.append(int(pair, 16))
            index += 3
        elif _is_plain(char) or char == "_":
            raw.extend(char.encode("ascii"))
            index += 1
        else:
            raise ToolRoutingError(f"Invalid character in tool function name: {full_name}")

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ToolRoutingError(f"Malformed escape in tool function name: {full_name}", e) from e


def encode_function_name(provider: str, tool: str) -> str:
    """Build the model-facing function name for a provider tool."""
    name = SEPARATOR.join((PREFIX, encode_segment(provider), encode_segment(tool)))
    return name[:MAX_FUNCTION_NAME_LENGTH]


def is_truncated(provider: str, tool: str) -> bool:
    """Whether the encoded name for this pair exceeds the cap."""
    full = SEPARATOR.join((PREFIX, encode_segment(provider), encode_segment(tool)))
    return len(full) > MAX_FUNCTION_NAME_LENGTH


def decode_function_name(name: str) -> tuple[str, str]:
    """Split a function name back into ``(provider, tool)``.

    Raises:
        ToolRoutingError: If the name lacks the prefix or is malformed
    """
    prefix = PREFIX + SEPARATOR
    if not name.startswith(prefix):
        raise ToolRoutingError(f"Not a provider tool function: {name}")

    parts = name[len(prefix):].split(SEPARATOR)
    if len(parts) != 2:
        raise ToolRoutingError(f"Malformed tool function name: {name}")

    provider, tool = parts
    return decode_segment(provider, name), decode_segment(tool, name)
