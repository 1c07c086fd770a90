import asyncio
import csv
from pathlib import Path

from aiohttp import web
from aiohttp import test_utils

from aipmirror.config import Config
from aipmirror.download import DownloadEngine, open_session, write_download_log

PDF = b"%PDF-1.4 test body"


def make_app(seen):
    async def pdf(request):
        seen.append((request.path, request.headers.get("User-Agent")))
        return web.Response(body=PDF, content_type="application/pdf")

    async def missing(request):
        seen.append((request.path, request.headers.get("User-Agent")))
        return web.Response(status=404, text="not here")

    app = web.Application()
    app.router.add_get("/docs/GEN.pdf", pdf)
    app.router.add_get("/docs/missing.pdf", missing)
    return app


def with_engine(scenario, config=None):
    """Run ``scenario(engine, base_url, seen)`` against a local server."""
    config = config or Config()
    seen = []

    async def main():
        server = test_utils.TestServer(make_app(seen))
        await server.start_server()
        try:
            async with open_session(config) as session:
                engine = DownloadEngine(session, config)
                return await scenario(engine, str(server.make_url("/docs/")), seen)
        finally:
            await server.close()

    return asyncio.run(main()), seen


def test_downloads_with_browser_user_agent(tmp_path):
    dest = tmp_path / "GEN" / "GEN.pdf"

    async def scenario(engine, base, seen):
        ok = await engine.fetch_if_absent(base + "GEN.pdf", dest)
        return ok, engine.stats

    (ok, stats), seen = with_engine(scenario)
    assert ok is True
    assert dest.read_bytes() == PDF
    assert not (tmp_path / "GEN" / "GEN.pdf.part").exists()
    assert seen == [("/docs/GEN.pdf", Config().user_agent)]
    assert stats.downloaded == 1


def test_existing_file_skips_network(tmp_path):
    dest = tmp_path / "GEN.pdf"
    dest.write_bytes(b"")

    async def scenario(engine, base, seen):
        return await engine.fetch_if_absent(base + "GEN.pdf", dest), engine.stats

    (ok, stats), seen = with_engine(scenario)
    assert ok is True
    assert seen == []
    assert dest.read_bytes() == b""
    assert stats.skipped == 1


def test_http_error_leaves_no_file(tmp_path):
    dest = tmp_path / "missing.pdf"

    async def scenario(engine, base, seen):
        return await engine.fetch_if_absent(base + "missing.pdf", dest), engine.stats

    (ok, stats), _ = with_engine(scenario)
    assert ok is False
    assert not dest.exists()
    assert stats.failed == 1
    assert stats.rows == [(stats.rows[0][0], "404", str(dest))]


def test_transport_error_is_reported_not_raised(tmp_path):
    dest = tmp_path / "GEN.pdf"

    async def scenario(engine, base, seen):
        return await engine.fetch_if_absent("http://127.0.0.1:1/GEN.pdf", dest)

    ok, _ = with_engine(scenario)
    assert ok is False
    assert not dest.exists()


def test_failure_does_not_cancel_other_downloads(tmp_path):
    config = Config(concurrency=4)

    async def scenario(engine, base, seen):
        return await asyncio.gather(
            engine.fetch_if_absent(base + "missing.pdf", tmp_path / "a.pdf"),
            engine.fetch_if_absent(base + "GEN.pdf", tmp_path / "b.pdf"),
        )

    results, _ = with_engine(scenario, config)
    assert results == [False, True]
    assert (tmp_path / "b.pdf").read_bytes() == PDF


def test_same_destination_fetched_once(tmp_path):
    config = Config(concurrency=4)
    dest = tmp_path / "GEN.pdf"

    async def scenario(engine, base, seen):
        return await asyncio.gather(*(engine.fetch_if_absent(base + "GEN.pdf", dest) for _ in range(3)))

    results, seen = with_engine(scenario, config)
    assert results == [True, True, True]
    assert len(seen) == 1


def test_dry_run_does_not_fetch(tmp_path):
    dest = tmp_path / "GEN.pdf"

    async def scenario(engine, base, seen):
        return await engine.fetch_if_absent(base + "GEN.pdf", dest), engine.stats

    (ok, stats), seen = with_engine(scenario, Config(dry_run=True))
    assert ok is False
    assert seen == []
    assert stats.planned == 1


def test_write_download_log(tmp_path):
    log = tmp_path / "logs" / "download_log.tsv"
    write_download_log(log, [("http://x/a.pdf", "OK", "AIP/a.pdf")])
    with log.open(encoding="utf-8", newline="") as fh:
        rows = list(csv.reader(fh, delimiter="\t"))
    assert rows == [["url", "status", "path"], ["http://x/a.pdf", "OK", "AIP/a.pdf"]]


def test_unreadable_destination_is_reported_not_raised(tmp_path, monkeypatch):
    dest = tmp_path / "locked" / "GEN.pdf"
    real_exists = Path.exists

    def exists(self, *args, **kwargs):
        if self == dest:
            raise PermissionError(13, "Permission denied", str(self))
        return real_exists(self, *args, **kwargs)

    monkeypatch.setattr(Path, "exists", exists)

    async def scenario(engine, base, seen):
        return await engine.fetch_if_absent(base + "GEN.pdf", dest), engine.stats

    (ok, stats), seen = with_engine(scenario)
    assert ok is False
    assert seen == []
    assert stats.failed == 1


def test_destination_locks_are_released(tmp_path):
    config = Config(concurrency=4)

    async def scenario(engine, base, seen):
        await asyncio.gather(
            *(engine.fetch_if_absent(base + "GEN.pdf", tmp_path / "GEN.pdf") for _ in range(3)),
            engine.fetch_if_absent(base + "missing.pdf", tmp_path / "missing.pdf"),
        )
        return engine._locks

    locks, _ = with_engine(scenario, config)
    assert locks == {}
