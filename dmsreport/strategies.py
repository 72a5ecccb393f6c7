"""Ordered fallback chains over UI strategies.

The dashboard has shipped several incompatible widgets for the same action,
so each action is a list of named strategies tried until one works.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Sequence, Type

from playwright.async_api import Error as PWError

from .errors import ReportError

logger = logging.getLogger(__name__)


class StrategyMiss(LookupError):
    """A strategy found nothing to act on."""


@dataclass(frozen=True)
class Strategy:
    name: str
    run: Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class ChainOutcome:
    action: str
    strategy: str
    value: Any = None


async def run_chain(
    page: Any,
    action: str,
    strategies: Sequence[Strategy],
    error_cls: Type[ReportError],
) -> ChainOutcome:
    attempts: List[str] = []
    for s in strategies:
        try:
            value = await s.run(page)
        except (PWError, StrategyMiss) as e:
            # Playwright's TimeoutError is an Error subclass
            msg = str(e).splitlines()[0] if str(e) else type(e).__name__
            logger.info(f"   {action}: '{s.name}' failed ({msg})")
            attempts.append(f"{s.name}: {msg}")
            continue
        logger.info(f"✅ {action} via '{s.name}'")
        return ChainOutcome(action, s.name, value)

    if not attempts:
        raise error_cls(f"{action}: no strategies available")
    raise error_cls(f"{action}: all strategies failed ({'; '.join(attempts)})")


async def settle(seconds: float, reason: str) -> None:
    if seconds <= 0:
        return
    logger.info(f"⏳ waiting {seconds:g}s for {reason}")
    await asyncio.sleep(seconds)
