"""
Structural validation for addresses and remote paths.

Rejects values that would be unsafe to interpolate into a remote command
line or into a known_hosts entry: control characters, whitespace and shell
metacharacters. Quoting is the caller's job; this module only checks
structure.
"""
from typing import Final

# Characters that must never appear in a user or host name
FORBIDDEN_CHARS: Final[frozenset[str]] = frozenset(
    "\x00"  # null byte
    "\n\r\t "  # whitespace
    "`$(){}[]|;&<>\\'\",@"  # shell metacharacters and separators
)

_CHAR_NAMES: Final[dict[str, str]] = {
    "\x00": "null byte",
    "\n": "newline",
    "\r": "carriage return",
    "\t": "tab",
    " ": "space",
}


def describe_char(char: str) -> str:
    """Readable name for a single character."""
    return _CHAR_NAMES.get(char, repr(char))


def check_forbidden_chars(value: str, field_name: str) -> None:
    """
    Check a user or host name for forbidden characters.

    Args:
        value: The value to check
        field_name: Name of the field for error messages

    Raises:
        ValueError: If a forbidden character is found
    """
    assert isinstance(field_name, str) and field_name, \
        f"Precondition: field_name must be non-empty str, got {field_name!r}"

    for char in value:
        if char in FORBIDDEN_CHARS or ord(char) < 0x20 or ord(char) == 0x7f:
            raise ValueError(
                f"{field_name} contains forbidden character: {describe_char(char)}"
            )


def validate_port(port: int) -> int:
    """
    Validate a port number per RFC 793.

    Returns:
        The port number unchanged

    Raises:
        ValueError: If the port is not an integer in 1-65535
    """
    # bool is a subclass of int
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")
    if port < 1:
        raise ValueError(f"port must be at least 1, got {port}")
    if port > 65535:
        raise ValueError(f"port must be at most 65535, got {port}")
    return port


def parse_port(text: str) -> int:
    """
    Parse the decimal port of a host:port string.

    Raises:
        ValueError: If the text is not a valid port number
    """
    if not text.isdigit():
        raise ValueError(f"port must be numeric, got {text!r}")
    return validate_port(int(text))


def is_valid_remote_dir(directory: str) -> bool:
    """
    Check that a remote working directory is a well-formed path.

    Accepts relative paths, absolute paths and paths starting with ``~``.
    A lone ``.`` is allowed; otherwise no element may be empty, ``.`` or
    ``..``, and a single trailing slash is tolerated.
    """
    if not isinstance(directory, str) or not directory:
        return False
    if any(ord(c) < 0x20 or ord(c) == 0x7f for c in directory):
        return False
    if directory in (".", "/", "~"):
        return True

    path = directory
    if path.startswith("~/"):
        path = path[2:]
    elif path.startswith("/"):
        path = path[1:]
    if path.endswith("/"):
        path = path[:-1]

    for element in path.split("/"):
        if element in ("", ".", ".."):
            return False
    return True
