"""Export trigger and artifact detection in the scratch directory."""

import asyncio
import datetime as dt
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import Settings
from .errors import ExportError
from .session import Session
from .strategies import ChainOutcome, Strategy, run_chain

logger = logging.getLogger(__name__)

PARTIAL_SUFFIXES = (".crdownload", ".part", ".tmp", ".download")


@dataclass(frozen=True)
class ExportArtifact:
    path: Path
    mtime: float

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def modified(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self.mtime)


def clear_scratch(directory: Path) -> None:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    for entry in directory.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    logger.info(f"Cleared scratch dir {directory}")


def most_recent_file(directory: Path) -> Optional[ExportArtifact]:
    directory = Path(directory)
    if not directory.is_dir():
        return None
    best: Optional[ExportArtifact] = None
    for entry in directory.iterdir():
        if entry.name.startswith(".") or entry.suffix.lower() in PARTIAL_SUFFIXES:
            continue
        if not entry.is_file():
            continue
        mtime = entry.stat().st_mtime
        if best is None or mtime > best.mtime:
            best = ExportArtifact(entry, mtime)
    return best


async def wait_for_artifact(directory: Path, timeout: float, poll_interval: float = 0.5) -> Optional[ExportArtifact]:
    deadline = time.monotonic() + timeout
    while True:
        found = most_recent_file(directory)
        if found is not None or time.monotonic() >= deadline:
            return found
        await asyncio.sleep(poll_interval)


async def wait_for_saves(session: Session, deadline: float, poll_interval: float = 0.5) -> None:
    """Block until routed downloads are fully written, or ``deadline`` (monotonic) passes."""
    while time.monotonic() < deadline:
        pending = [t for t in session.saves if not t.done()]
        if pending:
            await asyncio.wait(pending, timeout=max(0.0, deadline - time.monotonic()))
            continue
        if session.saves or most_recent_file(session.scratch_dir) is not None:
            return
        await asyncio.sleep(poll_interval)


def export_strategies(settings: Settings):
    sel = settings.selectors
    probe = settings.settle.probe_ms

    async def click(locator) -> None:
        await locator.wait_for(state="visible", timeout=probe)
        await locator.click(timeout=probe)

    return [
        Strategy("export_id", lambda p: click(p.locator(sel.export_id).first)),
        Strategy("export_title", lambda p: click(p.locator(sel.export_title).first)),
        Strategy("export_accessible_name", lambda p: click(p.get_by_role("button", name=sel.export_name).first)),
    ]


async def trigger_export(session: Session, settings: Settings) -> ExportArtifact:
    logger.info("→ exporting to Excel")
    clear_scratch(settings.scratch_dir)
    outcome: ChainOutcome = await run_chain(session.page, "export", export_strategies(settings), ExportError)

    bound = settings.settle.export_wait
    poll = settings.settle.poll_interval
    deadline = time.monotonic() + bound
    logger.info(f"⏳ waiting up to {bound:g}s for the download ({outcome.strategy})")
    await wait_for_saves(session, deadline, poll)
    artifact = await wait_for_artifact(settings.scratch_dir, max(0.0, deadline - time.monotonic()), poll)
    if artifact is None:
        raise ExportError(f"No file appeared in {settings.scratch_dir} within {bound:g}s")
    logger.info(f"✅ Export artifact: {artifact.path} ({artifact.path.stat().st_size} bytes)")
    return artifact
