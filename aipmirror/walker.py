"""Recursive mirror of a catalog menu tree onto directories and PDF files."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from aipmirror.menu import MenuNode
from aipmirror.paths import (
    UNTITLED_FOLDER,
    build_document_url,
    document_base_name,
    document_path,
    sanitize_label,
)

DEFAULT_MAX_DEPTH = 64


class Fetcher(Protocol):
    async def fetch_if_absent(self, url: str, destination: Path) -> bool: ...


@dataclass(frozen=True, slots=True)
class MirrorTarget:
    """Filesystem and URL artifacts derived from one MenuNode."""

    directory_path: Path
    document_path: Path | None = None
    source_url: str | None = None
    deduplicated: bool = False


@dataclass(slots=True)
class WalkStats:
    """Counters for one walk."""

    nodes: int = 0
    directories_created: int = 0
    directory_failures: int = 0
    documents: int = 0
    deduplicated: int = 0
    unparsed_refs: int = 0
    depth_limited: int = 0


def has_duplicate_child(node: MenuNode) -> bool:
    """True when a direct child links to the same page as ``node``.

    Only one level is inspected; grandchildren are not considered.
    """
    return any(child.document_ref and child.document_ref == node.document_ref for child in node.children)


def plan_target(node: MenuNode, current_path: Path, document_base_url: str) -> MirrorTarget:
    """Derive the folder, PDF path and source URL for ``node`` under ``current_path``."""
    label = sanitize_label(node.title or UNTITLED_FOLDER)
    item_path = current_path / label
    base_name = document_base_name(node.document_ref)
    if base_name is None:
        return MirrorTarget(directory_path=item_path)
    return MirrorTarget(
        directory_path=item_path,
        document_path=document_path(item_path, label, bool(node.children)),
        source_url=build_document_url(base_name, document_base_url),
        deduplicated=has_duplicate_child(node),
    )


class TreeMirrorWalker:
    """Depth-first, pre-order walk creating folders and fetching documents.

    With ``concurrent=False`` every download is awaited before the walk moves
    on. Otherwise downloads are scheduled as tasks and collected by
    :meth:`mirror`; the engine bounds how many run at once.
    """

    def __init__(self, engine: Fetcher, max_depth: int = DEFAULT_MAX_DEPTH, concurrent: bool = False) -> None:
        self.engine = engine
        self.max_depth = max_depth
        self.concurrent = concurrent
        self.stats = WalkStats()
        self._pending: list[asyncio.Task[bool]] = []

    async def mirror(self, nodes: Sequence[MenuNode], root: Path, document_base_url: str) -> WalkStats:
        """Walk a whole menu under ``root`` and wait for every download."""
        await self.walk(nodes, Path(root), document_base_url)
        if self._pending:
            pending, self._pending = self._pending, []
            await asyncio.gather(*pending)
        return self.stats

    async def walk(self, nodes: Sequence[MenuNode], current_path: Path, document_base_url: str, depth: int = 0) -> None:
        """Mirror ``nodes`` into ``current_path``, recursing into children."""
        for node in nodes:
            self.stats.nodes += 1
            target = plan_target(node, current_path, document_base_url)

            if not self._ensure_directory(current_path):
                continue

            if node.document_ref:
                await self._handle_document(node, target)

            if node.children:
                if depth + 1 > self.max_depth:
                    logging.warning("  Depth limit %s reached at %s; skipping its children", self.max_depth, target.directory_path)
                    self.stats.depth_limited += 1
                    continue
                await self.walk(node.children, target.directory_path, document_base_url, depth + 1)

    def _ensure_directory(self, path: Path) -> bool:
        try:
            existed = path.is_dir()
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logging.error("  Error creating directory %s: %s", path, exc)
            self.stats.directory_failures += 1
            return False
        if not existed:
            logging.info("  Created directory: %s", path)
            self.stats.directories_created += 1
        return True

    async def _handle_document(self, node: MenuNode, target: MirrorTarget) -> None:
        if target.source_url is None or target.document_path is None:
            logging.debug("  No PDF name in href %r; treating %r as a folder", node.document_ref, node.title)
            self.stats.unparsed_refs += 1
            return
        if target.deduplicated:
            logging.info("  %s is also linked by a child; leaving the download to the child", target.source_url)
            self.stats.deduplicated += 1
            return

        self.stats.documents += 1
        if self.concurrent:
            self._pending.append(asyncio.create_task(self.engine.fetch_if_absent(target.source_url, target.document_path)))
        else:
            await self.engine.fetch_if_absent(target.source_url, target.document_path)
