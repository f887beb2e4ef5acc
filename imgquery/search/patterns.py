"""Wildcard token → SQL LIKE pattern translation.

Users search with shell-style wildcards: ``*`` matches any run of
characters, ``?`` exactly one.  SQLite's LIKE uses ``%`` and ``_`` for the
same purposes, so literal ``%``/``_`` in the token (and the escape character
itself) are escaped with ``\\`` first; every pattern is rendered with
``ESCAPE '\\'``.

A token without wildcards is an exact match, which the compiler renders as
``=`` and which is always the cheapest comparison.  A pattern that starts
with ``%`` cannot use an index range scan on its column and is flagged as
not prefix-optimizable.
"""
from __future__ import annotations

import re
from typing import NamedTuple
from urllib.parse import unquote, urlparse

ESCAPE_CHAR = "\\"
_WILDCARDS = ("*", "?")


class TranslatedPattern(NamedTuple):
    pattern: str
    prefix_optimizable: bool
    exact: bool


def has_wildcards(token: str) -> bool:
    return any(w in token for w in _WILDCARDS)


def escape_like(text: str) -> str:
    """Escape LIKE metacharacters so *text* matches literally."""
    return (
        text.replace(ESCAPE_CHAR, ESCAPE_CHAR * 2)
        .replace("%", ESCAPE_CHAR + "%")
        .replace("_", ESCAPE_CHAR + "_")
    )


def translate(token: str, force_wildcards: bool = False) -> TranslatedPattern:
    """Translate a user search *token* into a LIKE pattern.

    With *force_wildcards* a bare token (no ``*``/``?``) is wrapped as
    ``*token*`` so it behaves as a substring search.
    """
    if force_wildcards and not has_wildcards(token):
        token = f"*{token}*"

    if not has_wildcards(token):
        return TranslatedPattern(token, True, True)

    pattern = escape_like(token).replace("*", "%").replace("?", "_")
    return TranslatedPattern(pattern, not pattern.startswith("%"), False)


def wildcard_match(token: str, value: str | None) -> bool:
    """Python-side equivalent of the compiled comparison (case-insensitive)."""
    if value is None:
        return False
    if not has_wildcards(token):
        return token.casefold() == value.casefold()
    regex = "".join(
        ".*" if ch == "*" else "." if ch == "?" else re.escape(ch)
        for ch in token
    )
    return re.fullmatch(regex, value, re.IGNORECASE | re.DOTALL) is not None


def normalize_path_token(token: str) -> str:
    """Turn a ``file:`` URI into a plain path; other tokens pass through.

    ``file:///C:/Photos/a%20b.jpg`` → ``C:/Photos/a b.jpg``,
    ``file:///home/me/x.jpg`` → ``/home/me/x.jpg``.
    """
    token = token.strip()
    if not token.lower().startswith("file:"):
        return token
    parsed = urlparse(token)
    path = unquote(parsed.path)
    if parsed.netloc and parsed.netloc.lower() != "localhost":
        # UNC share: file://server/share/x → //server/share/x
        return f"//{parsed.netloc}{path}"
    # Windows drive letter: /C:/x → C:/x
    if re.match(r"^/[A-Za-z]:", path):
        path = path[1:]
    return path
