"""Locate the current eAIP amendments and mirror each catalog.

Steps per catalog:
A) Find the catalog entry page on the AIP landing page.
B) Read the current amendment from the entry page's HISTORY table.
C) Derive the datasource and PDF URLs from the amendment folder.
D) Parse the datasource menu and walk it into ``<output>/<TYPE>_<date>``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from urllib.parse import urljoin

import aiohttp
from bs4 import BeautifulSoup, Tag

from aipmirror.config import Config
from aipmirror.download import DownloadEngine, RequestScheduler, open_session, write_download_log
from aipmirror.menu import DatasourceError, parse_datasource, select_menu
from aipmirror.paths import (
    AmendmentFolderError,
    amendment_date,
    amendment_folder_name,
    datasource_url,
    derive_document_base_url,
)
from aipmirror.walker import TreeMirrorWalker, WalkStats


@dataclass(slots=True)
class Amendment:
    effective_date: str
    publication_date: str
    relative_link: str

    @property
    def folder_name(self) -> str:
        return amendment_folder_name(self.relative_link)


ConfirmFn = Callable[[str, Amendment], bool]


def always_confirm(type_key: str, amendment: Amendment) -> bool:
    """Confirm function for unattended runs."""
    return True


async def fetch_text(session: aiohttp.ClientSession, scheduler: RequestScheduler, url: str) -> str | None:
    """GET a page as text. Return None (logged) on any failure."""
    try:
        await scheduler.wait_turn()
        async with session.get(url) as resp:
            if not 200 <= resp.status < 300:
                logging.error("HTTP %s for %s", resp.status, url)
                return None
            return await resp.text()
    except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as exc:
        logging.error("Request failed: %s (%s)", url, str(exc) or type(exc).__name__)
        return None


def find_catalog_links(html: str, page_url: str, prefixes: dict[str, str]) -> dict[str, str]:
    """Return ``{type_key: absolute entry URL}`` for each prefix found."""
    soup = BeautifulSoup(html, "html.parser")
    links: dict[str, str] = {}
    for type_key, prefix in prefixes.items():
        tag = next((a for a in soup.find_all("a", href=True) if a["href"].startswith(prefix)), None)
        if tag is None:
            logging.info("Could not find %s eAIP link starting with %s", type_key, prefix)
            continue
        links[type_key] = urljoin(page_url, tag["href"])
        logging.info("Found %s eAIP entry page link: %s", type_key, links[type_key])
    return links


def _pick_data_row(table: Tag) -> Tag | None:
    rows = table.find_all("tr")
    data_row = None
    for tr in rows:
        if not tr.find("td"):
            continue
        if tr.select("td[style*='background-color']"):
            return tr
        if data_row is None:
            data_row = tr
    if data_row is not None:
        return data_row
    return next((tr for tr in rows if tr.select("td a[href]")), None)


def parse_amendment(html: str) -> Amendment | None:
    """Read the current amendment from the first ``table.HISTORY``.

    A highlighted row (inline background colour) marks the current edition;
    without one the first data row is used.
    """
    soup = BeautifulSoup(html, "html.parser")
    table = soup.find("table", class_="HISTORY")
    if table is None:
        logging.info("Could not find the first 'HISTORY' table")
        return None

    row = _pick_data_row(table)
    if row is None:
        logging.info("Could not find the data row in the first 'HISTORY' table")
        return None

    cells = row.find_all("td")
    if len(cells) < 3:
        logging.info("Data row does not have enough columns")
        return None

    link = cells[0].find("a")
    if link is None:
        logging.info("Could not find effective date link")
        return None
    href = link.get("href")
    if not href:
        logging.info("Effective date link has no href")
        return None

    return Amendment(
        effective_date=link.get_text().strip(),
        publication_date=cells[1].get_text().strip(),
        relative_link=href,
    )


async def mirror_catalog(
    session: aiohttp.ClientSession,
    engine: DownloadEngine,
    config: Config,
    type_key: str,
    entry_url: str,
    confirm: ConfirmFn,
) -> WalkStats | None:
    """Mirror one catalog. Any failure is logged and skips only this catalog."""
    logging.info("--- Processing %s from %s ---", type_key, entry_url)
    html = await fetch_text(session, engine.scheduler, entry_url)
    if html is None:
        return None

    amendment = parse_amendment(html)
    if amendment is None:
        logging.warning("No amendment found for %s; skipping", type_key)
        return None
    logging.info("Found %s amendment", type_key)
    logging.info("  Effective date: %s", amendment.effective_date)
    logging.info("  Publication date: %s", amendment.publication_date)
    logging.info("  Relative link part: %s", amendment.relative_link)

    if not confirm(type_key, amendment):
        logging.info("Skipping %s data.", type_key)
        return None

    type_base_url = config.catalogs[type_key]
    folder = amendment.folder_name
    try:
        date = amendment_date(folder)
        source_url = datasource_url(type_base_url, folder)
        pdf_base_url = derive_document_base_url(type_base_url, folder)
    except AmendmentFolderError as exc:
        logging.error("Skipping %s: %s", type_key, exc)
        return None
    logging.info("  Constructed datasource.js URL: %s", source_url)
    logging.info("  Constructed PDF base URL: %s", pdf_base_url)

    script = await fetch_text(session, engine.scheduler, source_url)
    if script is None:
        return None
    try:
        menu = select_menu(parse_datasource(script), config.language)
    except DatasourceError as exc:
        logging.error("Error processing datasource.js for %s: %s", type_key, exc)
        return None
    logging.info("Successfully parsed datasource.js for %s (%s top-level entries)", type_key, len(menu))

    root = Path(config.output_dir) / f"{type_key}_{date}"
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logging.error("Cannot create %s: %s", root, exc)
        return None
    logging.info("Root directory for this download: %s", root)

    walker = TreeMirrorWalker(engine, max_depth=config.max_depth, concurrent=config.concurrency > 1)
    stats = await walker.mirror(menu, root, pdf_base_url)
    logging.info("--- Finished processing %s ---", type_key)
    return stats


async def run(config: Config, confirm: ConfirmFn = always_confirm) -> int:
    """Mirror every configured catalog. Return process exit code."""
    output_dir = Path(config.output_dir)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logging.error("Could not create output directory %s: %s", output_dir, exc)
        return 1
    logging.info("Output directory will be: %s", output_dir)

    scheduler = RequestScheduler(config.delay_sec)
    async with open_session(config) as session:
        logging.info("Fetching main AIP page: %s", config.base_url)
        html = await fetch_text(session, scheduler, config.base_url)
        if html is None:
            return 1
        links = find_catalog_links(html, config.base_url, config.catalogs)
        if not links:
            logging.info("No eAIP links found. Exiting.")
            return 0

        engine = DownloadEngine(session, config, scheduler)
        mirrored = 0
        for type_key, entry_url in links.items():
            stats = await mirror_catalog(session, engine, config, type_key, entry_url, confirm)
            if stats is None:
                continue
            mirrored += 1
            logging.info(
                "%s: nodes=%s dirs_created=%s dir_failures=%s documents=%s deduplicated=%s",
                type_key,
                stats.nodes,
                stats.directories_created,
                stats.directory_failures,
                stats.documents,
                stats.deduplicated,
            )

    dl = engine.stats
    logging.info(
        "Summary: catalogs=%s downloaded=%s skipped=%s failed=%s planned=%s",
        mirrored,
        dl.downloaded,
        dl.skipped,
        dl.failed,
        dl.planned,
    )
    if config.download_log:
        write_download_log(Path(config.download_log), dl.rows)
    return 0
