"""Filesystem labels, document paths and catalog URL derivation."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any
from urllib.parse import quote, urljoin

PLACEHOLDER_LABEL = "untitled"
UNTITLED_FOLDER = "Untitled_Folder"

FORBIDDEN_CHARS = re.compile(r'[<>:"/\\|?*]')
# Base name before an optional locale suffix such as "-pl-PL" and the .html extension.
DOCUMENT_REF_PATTERN = re.compile(r"^(.*?)(?:-[a-z]{2}-[A-Z]{2})?\.html")
AMENDMENT_DATE_PATTERN = re.compile(r"(\d{4})_(\d{2})_(\d{2})")

# Characters encodeURIComponent leaves alone besides the ones quote() keeps.
_URI_COMPONENT_SAFE = "!*'()"


class AmendmentFolderError(ValueError):
    """Raised when an amendment folder name carries no YYYY_MM_DD date."""


def sanitize_label(name: Any) -> str:
    """Turn a menu title into a filesystem-safe path component.

    Each of ``< > : " / \\ | ? *`` becomes ``_``, surrounding whitespace is
    stripped and double spaces are collapsed once (four spaces end up as two).
    """
    if not name or not isinstance(name, str):
        return PLACEHOLDER_LABEL
    label = FORBIDDEN_CHARS.sub("_", name).strip()
    label = label.replace("  ", " ")
    return label or PLACEHOLDER_LABEL


def document_base_name(document_ref: str | None) -> str | None:
    """Return the PDF base name for an href like ``GEN-1.1-pl-PL.html``."""
    if not document_ref:
        return None
    match = DOCUMENT_REF_PATTERN.match(document_ref)
    if match is None or not match.group(1):
        return None
    return match.group(1)


def build_document_url(base_name: str, document_base_url: str) -> str:
    """Resolve ``<base_name>.pdf`` against the catalog's PDF folder."""
    return urljoin(document_base_url, f"{quote(base_name, safe=_URI_COMPONENT_SAFE)}.pdf")


def document_path(item_path: Path, label: str, has_children: bool) -> Path:
    """Branch documents live inside their folder, leaf documents beside it."""
    if has_children:
        return item_path / f"{label}.pdf"
    return item_path.parent / f"{item_path.name}.pdf"


def amendment_folder_name(relative_link: str) -> str:
    """First path segment of the amendment link from the HISTORY table."""
    return relative_link.replace("\\", "/").split("/")[0]


def amendment_date(folder_name: str) -> str:
    """Extract ``YYYY-MM-DD`` from a folder name like ``2025_05_15_AIRAC``."""
    match = AMENDMENT_DATE_PATTERN.search(folder_name)
    if match is None:
        raise AmendmentFolderError(f"no date in amendment folder name: {folder_name!r}")
    year, month, day = match.groups()
    return f"{year}-{month}-{day}"


def amendment_base_url(type_base_url: str, folder_name: str) -> str:
    """Root URL of one published amendment, e.g. ``.../eAIPVFR/2025-05-15/<folder>/``."""
    date = amendment_date(folder_name)
    encoded = quote(folder_name, safe=_URI_COMPONENT_SAFE)
    return f"{type_base_url.rstrip('/')}/{date}/{encoded}/"


def derive_document_base_url(type_base_url: str, folder_name: str) -> str:
    """Base URL under which every ``<name>.pdf`` of one amendment is published."""
    return urljoin(amendment_base_url(type_base_url, folder_name), "documents/PDF/")


def datasource_url(type_base_url: str, folder_name: str) -> str:
    """URL of the script that publishes the amendment's menu."""
    return urljoin(amendment_base_url(type_base_url, folder_name), "v2/js/datasource.js")
