"""Browser session lifecycle: launch, login, diagnostics, teardown."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional

import aiofiles
from playwright.async_api import (
    async_playwright,
    Page,
    Browser,
    BrowserContext,
    Download,
    TimeoutError as PWTimeout,
    Error as PWError,
)

from .config import Settings
from .errors import AuthError, LaunchError
from .strategies import settle

logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"]
SAVE_GRACE_S = 5


@dataclass
class Session:
    play: Any
    browser: Browser
    context: BrowserContext
    page: Page
    scratch_dir: Path
    saves: List["asyncio.Task"] = field(default_factory=list)
    closed: bool = False


def _route_downloads(session: Session) -> None:
    """Save every download of the context into the scratch directory."""

    async def _save(download: Download) -> None:
        name = Path(download.suggested_filename or "").name or "export.xls"
        target = session.scratch_dir / name
        # artifact pickers skip ".part" files until the rename
        partial = target.with_name(name + ".part")
        try:
            await download.save_as(str(partial))
            partial.replace(target)
            logger.info(f"⬇ Download saved: {target}")
        except (PWError, OSError) as e:
            logger.error(f"❌ Download save failed ({name}): {e}")

    def _on_download(download: Download) -> None:
        session.saves.append(asyncio.ensure_future(_save(download)))

    def _watch(page: Page) -> None:
        page.on("download", _on_download)

    _watch(session.page)
    session.context.on("page", _watch)


async def start(settings: Settings, headless: bool = True) -> Session:
    play = None
    browser = None
    try:
        play = await async_playwright().start()
        browser = await play.chromium.launch(headless=headless, args=LAUNCH_ARGS)
        width, height = settings.viewport
        ctx = await browser.new_context(
            viewport={"width": width, "height": height},
            accept_downloads=True,
        )
        ctx.set_default_timeout(settings.timeout_ms)
        ctx.set_default_navigation_timeout(settings.timeout_ms)
        page = await ctx.new_page()
    except Exception as e:
        if browser is not None:
            await _quietly(browser.close(), "browser")
        if play is not None:
            await _quietly(play.stop(), "playwright")
        raise LaunchError(f"Browser launch failed: {e}") from e

    settings.scratch_dir.mkdir(parents=True, exist_ok=True)
    session = Session(play=play, browser=browser, context=ctx, page=page, scratch_dir=settings.scratch_dir)
    _route_downloads(session)
    logger.info(f"Browser ready (timeout {settings.timeout_s:g}s, downloads → {settings.scratch_dir})")
    return session


async def login(session: Session, settings: Settings) -> None:
    page = session.page
    sel = settings.selectors
    try:
        logger.info("→ goto login page")
        await page.goto(settings.login_url, wait_until="networkidle")
        await page.wait_for_selector(sel.login_user)
        await page.fill(sel.login_user, settings.username)
        await page.fill(sel.login_pass, settings.password)
        logger.info("→ submitting login")
        await page.press(sel.login_pass, "Enter")
        # the form goes away once the session cookie is accepted
        await page.wait_for_selector(sel.login_user, state="hidden")
    except PWTimeout as te:
        raise AuthError(f"Login timeout: {te}") from te
    except PWError as e:
        raise AuthError(f"Login error: {e}") from e
    logger.info("✅ Login successful.")
    await settle(settings.settle.after_login, "dashboard data to load")


async def close(session: Session) -> None:
    if session.closed:
        return
    session.closed = True
    pending = [t for t in session.saves if not t.done()]
    if pending:
        _, unfinished = await asyncio.wait(pending, timeout=SAVE_GRACE_S)
        for t in unfinished:
            t.cancel()
        if unfinished:
            logger.warning(f"⚠️ Cancelled {len(unfinished)} unfinished download save(s)")
            await asyncio.gather(*unfinished, return_exceptions=True)
    await _quietly(session.context.close(), "context")
    await _quietly(session.browser.close(), "browser")
    await _quietly(session.play.stop(), "playwright")
    logger.info("Browser closed.")


async def _quietly(coro, what: str) -> None:
    try:
        await coro
    except Exception as e:
        logger.warning(f"⚠️ Closing {what} failed: {e}")


@asynccontextmanager
async def open_session(settings: Settings, headless: bool = True) -> AsyncIterator[Session]:
    session = await start(settings, headless=headless)
    try:
        yield session
    finally:
        await close(session)


async def capture_failure(session: Session, screenshot_path: Path) -> Optional[Path]:
    """Viewport screenshot at the fixed path plus an HTML dump beside it."""
    png = Path(screenshot_path)
    html = png.with_suffix(".html")
    saved = None
    try:
        png.parent.mkdir(parents=True, exist_ok=True)
        await session.page.screenshot(path=str(png))
        logger.info(f"🖼 Screenshot saved: {png}")
        saved = png
    except Exception as e:
        logger.error(f"❌ Screenshot failed ({png}): {e}")
    try:
        content = await session.page.content()
        async with aiofiles.open(html, "w", encoding="utf-8") as f:
            await f.write(content)
        logger.info(f"📄 HTML dump saved: {html}")
    except Exception as e:
        logger.error(f"❌ HTML dump failed ({html}): {e}")
    return saved
