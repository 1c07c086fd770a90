"""Idempotent fetch-and-persist of catalog documents."""

from __future__ import annotations

import asyncio
import contextlib
import csv
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator

import aiohttp

from aipmirror.config import Config

CHUNK_SIZE = 64 * 1024
PART_SUFFIX = ".part"


class RequestScheduler:
    """Ensure a minimum delay between request starts."""

    def __init__(self, delay_sec: float) -> None:
        self.delay_sec = max(0.0, delay_sec)
        self._lock = asyncio.Lock()
        self._next_allowed = 0.0

    async def wait_turn(self) -> None:
        """Sleep as needed so requests are spaced by configured delay."""
        if self.delay_sec <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            wait_for = self._next_allowed - now
            if wait_for > 0:
                await asyncio.sleep(wait_for)
                now = time.monotonic()
            self._next_allowed = now + self.delay_sec


@dataclass(slots=True)
class DownloadStats:
    """Counters and per-URL result rows for one run."""

    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    planned: int = 0
    rows: list[tuple[str, str, str]] = field(default_factory=list)

    def record(self, url: str, status: str, path: Path) -> None:
        self.rows.append((url, status, str(path)))


class DownloadEngine:
    """Fetch a URL to a path unless the path already exists.

    ``fetch_if_absent`` never raises for HTTP or transport problems; it logs
    them and returns False so one bad document never stops the mirror.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: Config,
        scheduler: RequestScheduler | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self.scheduler = scheduler or RequestScheduler(config.delay_sec)
        self.stats = DownloadStats()
        self._sem = asyncio.Semaphore(max(1, config.concurrency))
        self._locks: dict[Path, tuple[asyncio.Lock, int]] = {}

    async def fetch_if_absent(self, url: str, destination: Path) -> bool:
        """Return True when ``destination`` exists afterwards."""
        destination = Path(destination)
        async with self._destination_lock(destination):
            try:
                exists = destination.exists()
            except OSError as exc:
                logging.error("    Cannot inspect %s: %s", destination, exc)
                self.stats.failed += 1
                self.stats.record(url, "ERROR", destination)
                return False
            if exists:
                logging.info("    Skipping %s because %s already exists", url, destination)
                self.stats.skipped += 1
                self.stats.record(url, "SKIP", destination)
                return True
            if self.config.dry_run:
                logging.info("    [dry-run] %s -> %s", url, destination)
                self.stats.planned += 1
                self.stats.record(url, "DRY-RUN", destination)
                return False
            async with self._sem:
                return await self._fetch(url, destination)

    @contextlib.asynccontextmanager
    async def _destination_lock(self, destination: Path) -> AsyncIterator[None]:
        """Serialize work on one path; the lock is dropped once nobody waits for it."""
        lock, users = self._locks.get(destination, (asyncio.Lock(), 0))
        self._locks[destination] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[destination]
            if users == 1:
                del self._locks[destination]
            else:
                self._locks[destination] = (lock, users - 1)

    async def _fetch(self, url: str, destination: Path) -> bool:
        part = destination.with_name(destination.name + PART_SUFFIX)
        logging.info("    Downloading: %s", url)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            await self.scheduler.wait_turn()
            async with self.session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    logging.error("    Failed to download %s: HTTP %s %s", url, resp.status, resp.reason)
                    self.stats.failed += 1
                    self.stats.record(url, str(resp.status), destination)
                    return False
                with part.open("wb") as fh:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        fh.write(chunk)
            part.replace(destination)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logging.error("    Error downloading %s: %s", url, str(exc) or type(exc).__name__)
            part.unlink(missing_ok=True)
            self.stats.failed += 1
            self.stats.record(url, "ERROR", destination)
            return False

        logging.info("    Saved to: %s", destination)
        self.stats.downloaded += 1
        self.stats.record(url, "OK", destination)
        return True


def open_session(config: Config) -> aiohttp.ClientSession:
    """Client session carrying the browser identification header."""
    connector = aiohttp.TCPConnector(limit=max(8, config.concurrency * 2))
    return aiohttp.ClientSession(
        connector=connector,
        headers={"User-Agent": config.user_agent},
        timeout=aiohttp.ClientTimeout(total=config.timeout_sec),
    )


def write_download_log(log_path: Path, rows: list[tuple[str, str, str]]) -> None:
    """Write per-URL results as TSV."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh, delimiter="\t")
        writer.writerow(["url", "status", "path"])
        writer.writerows(rows)
    logging.info("Wrote %s download log rows to %s", len(rows), log_path)
