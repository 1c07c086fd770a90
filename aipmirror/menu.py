"""Catalog menu tree and safe parsing of the published datasource script."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import yaml

DATASOURCE_PATTERN = re.compile(r"\bDATASOURCE\s*=\s*")
QUOTES = "\"'`"
OPENERS = {"{": "}", "[": "]"}


class DatasourceError(ValueError):
    """Raised when datasource.js holds no usable menu."""


@dataclass(frozen=True, slots=True)
class MenuNode:
    """One entry of the remote catalog hierarchy."""

    title: str | None = None
    document_ref: str | None = None
    children: tuple[MenuNode, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MenuNode:
        """Build a node from one parsed menu entry (``title``, ``href``, ``children``)."""
        title = data.get("title")
        href = data.get("href")
        raw_children = data.get("children")
        children: tuple[MenuNode, ...] = ()
        if isinstance(raw_children, list):
            children = tuple(cls.from_dict(child) for child in raw_children if isinstance(child, dict))
        return cls(
            title=title if isinstance(title, str) else None,
            document_ref=href if isinstance(href, str) and href else None,
            children=children,
        )


def extract_literal(text: str, start: int) -> str:
    """Return the bracketed literal starting at ``text[start]``.

    Brackets inside quoted strings are ignored.
    """
    if text[start] not in OPENERS:
        raise DatasourceError(f"expected '{{' or '[' at offset {start}")
    stack: list[str] = []
    quote: str | None = None
    i = start
    while i < len(text):
        ch = text[i]
        if quote is not None:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in QUOTES:
            quote = ch
        elif ch in OPENERS:
            stack.append(OPENERS[ch])
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                raise DatasourceError(f"unbalanced '{ch}' at offset {i}")
            if not stack:
                return text[start : i + 1]
        i += 1
    raise DatasourceError("unterminated DATASOURCE literal")


def requote_strings(literal: str) -> str:
    """Rewrite JS single-quoted strings as double-quoted ones.

    YAML single-quoted scalars know no backslash escapes, so ``'Pilot\\'s'``
    would not parse; as a double-quoted scalar it does.
    """
    out: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(literal):
        ch = literal[i]
        if quote is None:
            if ch in QUOTES:
                quote = ch
                ch = '"' if ch == "'" else ch
            out.append(ch)
        elif ch == "\\" and i + 1 < len(literal):
            nxt = literal[i + 1]
            out.append("'" if nxt == "'" else ch + nxt)
            i += 2
            continue
        elif ch == quote:
            quote = None
            out.append('"' if ch == "'" else ch)
        elif ch == '"' and quote == "'":
            out.append('\\"')
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def parse_datasource(text: str) -> dict[str, Any]:
    """Parse the ``DATASOURCE`` object literal as plain data.

    The literal is read as JSON first; JS-style literals (unquoted keys,
    single quotes) fall back to YAML flow syntax. Nothing is executed.
    """
    match = DATASOURCE_PATTERN.search(text)
    if match is None:
        raise DatasourceError("DATASOURCE assignment not found")
    literal = extract_literal(text, match.end())

    try:
        data = json.loads(literal)
    except json.JSONDecodeError as exc:
        logging.debug("DATASOURCE is not strict JSON (%s); trying YAML flow syntax", exc)
        try:
            data = yaml.safe_load(requote_strings(literal))
        except yaml.YAMLError as yaml_exc:
            raise DatasourceError(f"cannot parse DATASOURCE literal: {yaml_exc}") from yaml_exc

    if not isinstance(data, dict):
        raise DatasourceError("DATASOURCE is not an object")
    return data


def select_menu(datasource: dict[str, Any], language: str) -> list[MenuNode]:
    """Return the menu of the first tab for ``language``."""
    tabs = datasource.get("tabs")
    if not isinstance(tabs, list) or not tabs:
        raise DatasourceError("'tabs' not found or empty in datasource")
    first = tabs[0]
    contents = first.get("contents") if isinstance(first, dict) else None
    lang_content = contents.get(language) if isinstance(contents, dict) else None
    menu = lang_content.get("menu") if isinstance(lang_content, dict) else None
    if not isinstance(menu, list):
        raise DatasourceError(f"'menu' or content for language {language!r} not found in the first tab")
    return [MenuNode.from_dict(item) for item in menu if isinstance(item, dict)]
