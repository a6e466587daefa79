"""JSON Pointer (RFC 6901) helpers shared by the patch engine and validation paths."""

from __future__ import annotations

from typing import Any, Sequence

from patchloop.exceptions import PatchApplyError, PatchErrorKind


def escape_token(token: str | int) -> str:
    return str(token).replace("~", "~0").replace("/", "~1")


def unescape_token(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def format_pointer(path: Sequence[str | int]) -> str:
    """Render a path tuple as a JSON Pointer (``()`` is the root, ``""``)."""
    return "".join("/" + escape_token(p) for p in path)


def parse_pointer(pointer: str) -> list[str]:
    """Split a JSON Pointer into unescaped reference tokens.

    Raises:
        PatchApplyError: If the pointer is non-empty and lacks a leading slash.
    """
    if pointer == "":
        return []
    if not pointer.startswith("/"):
        raise PatchApplyError(
            PatchErrorKind.UNRESOLVED_PATH,
            pointer,
            "JSON Pointer must be empty or start with '/'",
        )
    return [unescape_token(t) for t in pointer[1:].split("/")]


def array_index(token: str, length: int, *, allow_end: bool = False) -> int:
    """Resolve an array reference token to an index.

    ``-`` means one past the end and is accepted only when *allow_end*
    (add operations). Leading zeros and negative numbers are rejected
    per RFC 6901.
    """
    if token == "-" and allow_end:
        return length
    if not token.isdigit() or (len(token) > 1 and token.startswith("0")):
        raise IndexError(f"invalid array index {token!r}")
    idx = int(token)
    limit = length if allow_end else length - 1
    if idx > limit:
        raise IndexError(f"index {idx} out of range for array of length {length}")
    return idx


def resolve(doc: Any, tokens: Sequence[str]) -> Any:
    """Return the value at *tokens* or raise KeyError/IndexError/TypeError."""
    current = doc
    for token in tokens:
        if isinstance(current, dict):
            if token not in current:
                raise KeyError(token)
            current = current[token]
        elif isinstance(current, list):
            current = current[array_index(token, len(current))]
        else:
            raise TypeError(f"cannot descend into {type(current).__name__} with {token!r}")
    return current


def path_from_pointer(pointer: str, doc: Any = None) -> tuple[str | int, ...]:
    """Convert a pointer to a path tuple, turning list positions into ints when *doc* shows a list."""
    tokens = parse_pointer(pointer)
    path: list[str | int] = []
    current = doc
    for token in tokens:
        if isinstance(current, list) and token.isdigit():
            idx = int(token)
            path.append(idx)
            current = current[idx] if idx < len(current) else None
        else:
            path.append(token)
            current = current.get(token) if isinstance(current, dict) else None
    return tuple(path)
