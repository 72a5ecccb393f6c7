"""One report run: window → browser → export → spreadsheet → email → cleanup.

The pipeline never exits the process; it returns a ``RunResult`` and the
caller decides what to do with it.
"""

import datetime as dt
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import Settings
from .convert import convert_report
from .delivery import SmtpMailer, cleanup_scratch, compose_message, notify_chat
from .errors import ConfigError, ConversionError, DeliveryError, ReportError
from .export import ExportArtifact, trigger_export
from .navigation import FilterReport, apply_filters, open_report_view
from .session import capture_failure, login, open_session
from .window import ReportWindow, compute_report_window

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


@dataclass
class RunOptions:
    headless: bool = True
    skip_email: bool = False
    skip_chat: bool = False


@dataclass
class RunResult:
    window: Optional[ReportWindow] = None
    stage: Optional[str] = None
    error: Optional[ReportError] = None
    artifact: Optional[Path] = None
    attachment: Optional[Path] = None
    screenshot: Optional[Path] = None
    filters: Optional[FilterReport] = None
    email_sent: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        if self.ok:
            return EXIT_OK
        return EXIT_CONFIG if isinstance(self.error, ConfigError) else EXIT_FAILED


async def harvest(settings: Settings, options: RunOptions, window: ReportWindow, result: RunResult) -> ExportArtifact:
    """Browser part of the run. The session is closed on every path."""
    async with open_session(settings, headless=options.headless) as session:
        try:
            await login(session, settings)
            await open_report_view(session.page, settings)
            result.filters = await apply_filters(session.page, settings, window)
            if result.filters.missed:
                result.warnings.append(f"report types not applied: {', '.join(result.filters.missed)}")
            return await trigger_export(session, settings)
        except ReportError:
            result.screenshot = await capture_failure(session, settings.screenshot_path)
            raise
        except Exception as e:
            logger.error(f"Unexpected browser-stage error: {e}", exc_info=True)
            result.screenshot = await capture_failure(session, settings.screenshot_path)
            raise ReportError(f"Unexpected error: {e}") from e


def _fail(settings: Settings, options: RunOptions, result: RunResult, error: ReportError) -> RunResult:
    result.error = error
    result.stage = error.stage
    logger.error(f"❌ {error.stage} failed: {error}")
    if not options.skip_chat:
        lines = [f"Stage: {error.stage}", str(error)]
        if result.screenshot:
            lines.append(f"Screenshot: {result.screenshot}")
        notify_chat(settings.chat_webhook, "DMS report run FAILED", lines)
    return result


async def run_pipeline(
    settings: Settings,
    options: Optional[RunOptions] = None,
    mailer=None,
    now: Optional[dt.datetime] = None,
) -> RunResult:
    options = options or RunOptions()
    result = RunResult()
    window = result.window = compute_report_window(settings.timezone, now)
    logger.info(f"🚀 DMS report {window.start_text} → {window.end_text} ({settings.timezone})")

    try:
        artifact = await harvest(settings, options, window, result)
    except ReportError as e:
        return _fail(settings, options, result, e)
    result.artifact = artifact.path

    attachment = artifact.path
    try:
        attachment = convert_report(artifact.path)
    except ConversionError as e:
        logger.warning(f"⚠️ {e}; attaching the original export instead")
        result.warnings.append(str(e))
    result.attachment = attachment

    if options.skip_email:
        logger.info("Email skipped; files left in the scratch dir.")
    else:
        mailer = mailer or SmtpMailer.from_settings(settings)
        try:
            mailer.send(compose_message(settings, window, artifact.name, attachment))
        except ReportError as e:
            return _fail(settings, options, result, e)
        except Exception as e:
            logger.error(f"Unexpected delivery error: {e}", exc_info=True)
            return _fail(settings, options, result, DeliveryError(f"Unexpected error: {e}"))
        result.email_sent = True
        try:
            result.warnings.extend(cleanup_scratch(settings.scratch_dir))
        except OSError as e:
            logger.warning(f"⚠️ Cleanup of {settings.scratch_dir} failed: {e}")
            result.warnings.append(f"cleanup failed: {e}")

    if not options.skip_chat:
        lines = [f"File: {artifact.name}", f"Window: {window.start_text} - {window.end_text}"]
        lines += [f"⚠️ {w}" for w in result.warnings]
        notify_chat(settings.chat_webhook, "DMS report sent" if result.email_sent else "DMS report exported", lines)
    logger.info("🎉 Run finished.")
    return result
