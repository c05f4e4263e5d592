#!/usr/bin/env python3
"""
Lexical scanner that extracts module specifiers from JavaScript source text.

Comments are blanked by a single pass that knows about string and template
literals, so "/*" inside a route string or "//" inside a URL is left alone.
The specifier patterns then run over the comment-free text. Callers only
depend on `extract_specifiers(source) -> list[str]`.

Recognized forms:
    require('x')                CommonJS
    import ... from 'x'         ES import with bindings
    import 'x'                  ES side-effect import
    export ... from 'x'         ES re-export

Relative ("./", "../") and absolute ("/") specifiers are local files and
are not reported. Order of first appearance is preserved, duplicates removed.
"""

from __future__ import annotations

import re

# File extensions scanned for dependency edges
SCANNED_EXTENSIONS = (".js", ".mjs", ".cjs")

REQUIRE_PATTERN = re.compile(r"""\brequire\s*\(\s*(['"])([^'"\n]+)\1\s*\)""")
FROM_PATTERN = re.compile(r"""\b(?:import|export)\b[^;'"]*?\bfrom\s*(['"])([^'"\n]+)\1""")
BARE_IMPORT_PATTERN = re.compile(r"""\bimport\s*(['"])([^'"\n]+)\1""")

SPECIFIER_PATTERNS = (REQUIRE_PATTERN, FROM_PATTERN, BARE_IMPORT_PATTERN)

QUOTES = ("'", '"', "`")


def _blank(text: str) -> str:
    """Same length, comment text replaced by spaces, newlines kept."""
    return "".join("\n" if ch == "\n" else " " for ch in text)


def strip_comments(source: str) -> str:
    """Blank out // and /* */ comments that are not inside string literals.

    A '...' or "..." literal ends at its closing quote or at the end of the
    line; a `...` template may span lines. Backslash escapes are honoured.
    An unterminated block comment runs to the end of the source.
    """
    out: list[str] = []
    quote = ""
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        if quote:
            if ch == "\\":
                out.append(source[i : i + 2])
                i += 2
                continue
            if ch == quote or (ch == "\n" and quote != "`"):
                quote = ""
            out.append(ch)
            i += 1
            continue

        if ch in QUOTES:
            quote = ch
            out.append(ch)
            i += 1
            continue

        if source.startswith("//", i):
            end = source.find("\n", i)
            end = n if end == -1 else end
        elif source.startswith("/*", i):
            end = source.find("*/", i + 2)
            end = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
            continue
        out.append(_blank(source[i:end]))
        i = end
    return "".join(out)


def is_local_specifier(specifier: str) -> bool:
    return specifier.startswith((".", "/"))


def extract_specifiers(source: str) -> list[str]:
    """Extract non-local module specifiers from JavaScript source.

    Args:
        source: JavaScript source text

    Returns:
        Specifiers in order of first appearance, without duplicates
    """
    if not isinstance(source, str) or not source:
        return []

    text = strip_comments(source)
    found: list[tuple[int, str]] = []
    for pattern in SPECIFIER_PATTERNS:
        found.extend((match.start(), match.group(2).strip()) for match in pattern.finditer(text))
    found.sort(key=lambda item: item[0])

    specifiers: list[str] = []
    seen: set[str] = set()
    for _, specifier in found:
        if not specifier or is_local_specifier(specifier) or specifier in seen:
            continue
        seen.add(specifier)
        specifiers.append(specifier)
    return specifiers


def package_root(specifier: str) -> str:
    """Top-level package of a specifier.

    "@modelcontextprotocol/sdk/server/stdio" -> "@modelcontextprotocol/sdk"
    "lodash/fp" -> "lodash"
    """
    parts = specifier.split("/")
    if specifier.startswith("@"):
        return "/".join(parts[:2])
    return parts[0]
