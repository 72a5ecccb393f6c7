"""Drive the dashboard to the DMS status report and apply the filters."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from playwright.async_api import Page, Error as PWError

from .config import SelectorSet, Settings
from .errors import FilterError, NavigationError
from .strategies import ChainOutcome, Strategy, StrategyMiss, run_chain, settle
from .window import ReportWindow

logger = logging.getLogger(__name__)


@dataclass
class FilterReport:
    truck_scope: Optional[str] = None
    applied: List[str] = field(default_factory=list)
    missed: List[str] = field(default_factory=list)
    outcomes: List[ChainOutcome] = field(default_factory=list)


# ─── Option matching ───────────────────────────────────────────────────────────
def normalize_label(text: Optional[str]) -> str:
    return " ".join((text or "").split()).lower()


def _is_all_option(text: str, labels: Sequence[str]) -> bool:
    t = normalize_label(text)
    for label in labels:
        n = normalize_label(label)
        if not n:
            continue
        # "All trucks" / "-- all --" match, "Install" / "Tall" do not
        if t == n or re.search(r"(^|[^a-z0-9])" + re.escape(n) + r"([^a-z0-9]|$)", t):
            return True
    return False


def pick_option(options: Sequence[Tuple[str, str]], labels: Sequence[str], wanted: str = "") -> int:
    """Index of the (value, text) option to select, or -1.

    A specific ``wanted`` id matches an option's value or text exactly;
    otherwise the first option reading as one of the "all" ``labels`` wins.
    """
    if wanted:
        w = normalize_label(wanted)
        for i, (value, text) in enumerate(options):
            if normalize_label(value) == w or normalize_label(text) == w:
                return i
        return -1
    for i, (_value, text) in enumerate(options):
        if _is_all_option(text, labels):
            return i
    return -1


# ─── In-page scripts ───────────────────────────────────────────────────────────
OPTIONS_JS = "el => Array.from(el.options || []).map(o => [o.value, o.text])"

SELECT_INDEX_JS = (
    "(el, idx) => {"
    " el.selectedIndex = idx;"
    " el.dispatchEvent(new Event('input', { bubbles: true }));"
    " el.dispatchEvent(new Event('change', { bubbles: true }));"
    " return el.options[idx].text.trim(); }"
)

LABEL_STATE_JS = "el => el.control ? (el.control.checked ? 'checked' : 'unchecked') : 'none'"

TEXT_SCAN_JS = """
(kw) => {
    const norm = s => (s || '').replace(/\\s+/g, ' ').trim();
    const needle = norm(kw).toLowerCase();
    const visible = el => {
        const r = el.getBoundingClientRect();
        const st = getComputedStyle(el);
        return r.width > 0 && r.height > 0 && st.visibility !== 'hidden' && st.display !== 'none';
    };
    const ownText = el => Array.from(el.childNodes)
        .filter(n => n.nodeType === Node.TEXT_NODE)
        .map(n => n.textContent).join(' ');
    const skip = new Set(['SCRIPT', 'STYLE', 'OPTION', 'HEAD', 'TITLE']);
    for (const el of document.querySelectorAll('body *')) {
        if (skip.has(el.tagName)) continue;
        const text = norm(ownText(el));
        if (!text.toLowerCase().includes(needle) || !visible(el)) continue;

        let target = null;
        const label = el.closest('label');
        if (label && label.control) target = label.control;
        let p = el;
        for (let depth = 0; !target && p && depth < 3; depth++, p = p.parentElement) {
            target = p.querySelector('input[type=checkbox]');
        }
        if (!target) {
            target = el.closest('a, button, li, [onclick], [role="option"], [role="checkbox"]');
        }
        if (!target) continue;
        if (target.type === 'checkbox' && target.checked) return text + ' (already checked)';
        target.click();
        return text;
    }
    return null;
}
"""


# ─── Report view ───────────────────────────────────────────────────────────────
async def _goto_report_url(page: Page, settings: Settings) -> str:
    await page.goto(settings.report_url, wait_until="networkidle")
    await page.wait_for_selector(settings.selectors.date_start, timeout=settings.settle.probe_ms)
    return page.url


async def _click_text(page: Page, text: str, timeout_ms: int, scope: str = "") -> None:
    loc = page.locator(scope).filter(has_text=text) if scope else page.get_by_text(text)
    if await loc.count() == 0:
        raise StrategyMiss(f"no element with text '{text}'")
    await loc.first.click(timeout=timeout_ms)


async def _open_dms_report(page: Page, settings: Settings) -> ChainOutcome:
    sel = settings.selectors
    probe = settings.settle.probe_ms
    await settle(settings.settle.short, "report menu to expand")
    try:
        return await run_chain(
            page,
            "open DMS status report",
            [
                Strategy("dms_link_text", lambda p: _click_text(p, sel.dms_report_label, probe)),
                Strategy("dms_link_structural", lambda p: p.locator(sel.dms_report_fallback).first.click(timeout=probe)),
            ],
            NavigationError,
        )
    except NavigationError as e:
        raise StrategyMiss(str(e)) from e


def report_view_strategies(settings: Settings) -> List[Strategy]:
    sel = settings.selectors
    probe = settings.settle.probe_ms

    async def sidebar_text(page: Page):
        await _click_text(page, sel.sidebar_label, probe, scope="#sidebar li")
        return await _open_dms_report(page, settings)

    async def sidebar_position(page: Page):
        await page.locator(sel.sidebar_item).first.click(timeout=probe)
        return await _open_dms_report(page, settings)

    async def sidebar_icon(page: Page):
        await page.wait_for_selector(sel.sidebar_icon, state="visible", timeout=probe)
        await page.eval_on_selector(sel.sidebar_icon, "el => el.click()")
        return await _open_dms_report(page, settings)

    strategies = []
    if settings.report_url:
        strategies.append(Strategy("direct_url", lambda p: _goto_report_url(p, settings)))
    strategies += [
        Strategy("sidebar_text", sidebar_text),
        Strategy("sidebar_position", sidebar_position),
        Strategy("sidebar_icon", sidebar_icon),
    ]
    return strategies


async def open_report_view(page: Page, settings: Settings) -> ChainOutcome:
    logger.info("→ opening DMS status report")
    outcome = await run_chain(page, "open report view", report_view_strategies(settings), NavigationError)
    await settle(settings.settle.after_navigation, "report view to render")
    try:
        await page.wait_for_selector(settings.selectors.date_start)
    except PWError as e:
        raise NavigationError(f"Report view did not render: {e}") from e
    return outcome


# ─── Truck scope ───────────────────────────────────────────────────────────────
async def _select_truck(page: Page, selector: str, settings: Settings) -> str:
    select = page.locator(selector)
    if await select.count() == 0:
        raise StrategyMiss(f"no select '{selector}'")
    scope = settings.filters
    labels = settings.selectors.all_labels
    wanted = "" if scope.all_trucks else scope.truck_scope

    # options arrive by XHR after the page renders
    deadline = time.monotonic() + settings.settle.options_wait
    while True:
        options = await select.first.evaluate(OPTIONS_JS)
        idx = pick_option([tuple(o) for o in options], labels, wanted)
        if idx >= 0:
            break
        if time.monotonic() >= deadline:
            raise StrategyMiss(f"no matching option in '{selector}' ({len(options)} options)")
        await asyncio.sleep(settings.settle.poll_interval)
    return await select.first.evaluate(SELECT_INDEX_JS, idx)


async def select_truck_scope(page: Page, settings: Settings) -> ChainOutcome:
    logger.info(f"→ selecting truck scope '{settings.filters.truck_scope}'")
    strategies = [
        Strategy(f"select {s}", lambda p, s=s: _select_truck(p, s, settings))
        for s in settings.selectors.truck_selects
    ]
    return await run_chain(page, "select truck scope", strategies, FilterError)


# ─── Report types ──────────────────────────────────────────────────────────────
async def _toggle_label(page: Page, keyword: str, probe_ms: int) -> str:
    loc = page.locator("label").filter(has_text=keyword)
    if await loc.count() == 0:
        raise StrategyMiss(f"no label containing '{keyword}'")
    label = loc.first
    if await label.evaluate(LABEL_STATE_JS) == "checked":
        return "already checked"
    await label.click(timeout=probe_ms)
    return "clicked"


async def _search_dropdown(page: Page, keyword: str, sel: SelectorSet, probe_ms: int) -> str:
    for cid in sel.report_type_dropdowns:
        box = page.locator(f"#{cid}")
        if await box.count() == 0:
            continue
        await box.first.click(timeout=probe_ms)
        candidates = [box.locator(s) for s in sel.dropdown_search_inputs]
        # some widgets render their search box at the end of <body>
        candidates += [page.locator(f"{s}:visible") for s in sel.dropdown_page_search_inputs]
        for search in candidates:
            if await search.count() == 0:
                continue
            field = search.first
            await field.fill("", timeout=probe_ms)
            await field.press_sequentially(keyword)
            await field.press("Enter")
            return cid
        raise StrategyMiss(f"dropdown '#{cid}' has no search box")
    raise StrategyMiss("no report-type dropdown on page")


async def _scan_text(page: Page, keyword: str) -> str:
    hit = await page.evaluate(TEXT_SCAN_JS, keyword)
    if not hit:
        raise StrategyMiss(f"no visible text containing '{keyword}'")
    return hit


def report_type_strategies(keyword: str, settings: Settings) -> List[Strategy]:
    sel = settings.selectors
    probe = settings.settle.probe_ms
    return [
        Strategy("checkbox_label", lambda p: _toggle_label(p, keyword, probe)),
        Strategy("dropdown_search", lambda p: _search_dropdown(p, keyword, sel, probe)),
        Strategy("text_scan", lambda p: _scan_text(p, keyword)),
    ]


async def apply_report_types(
    page: Page,
    settings: Settings,
    report: Optional[FilterReport] = None,
    strategies_for: Callable[[str, Settings], Sequence[Strategy]] = report_type_strategies,
) -> FilterReport:
    report = report or FilterReport()
    for kw in settings.filters.report_type_keywords:
        logger.info(f"→ report type '{kw}'")
        try:
            outcome = await run_chain(page, f"report type '{kw}'", strategies_for(kw, settings), FilterError)
        except FilterError as e:
            logger.warning(f"⚠️ {e}; continuing without it")
            report.missed.append(kw)
            continue
        report.applied.append(kw)
        report.outcomes.append(outcome)
    return report


# ─── Dates + search ────────────────────────────────────────────────────────────
async def set_date_range(page: Page, settings: Settings, window: ReportWindow) -> None:
    sel = settings.selectors
    logger.info(f"→ date range {window.start_text} - {window.end_text}")
    for selector, text in ((sel.date_start, window.start_text), (sel.date_end, window.end_text)):
        try:
            await page.wait_for_selector(selector)
            field = page.locator(selector).first
            await field.evaluate("el => { el.value = ''; }")
            await field.press_sequentially(text)
        except PWError as e:
            raise FilterError(f"Could not fill date field {selector}: {e}") from e


async def _click_search(page: Page, xpath: str, probe_ms: int) -> None:
    loc = page.locator(f"xpath={xpath}")
    if await loc.count() == 0:
        raise StrategyMiss("no search label or icon")
    await loc.first.click(timeout=probe_ms)


async def trigger_search(page: Page, settings: Settings) -> ChainOutcome:
    sel = settings.selectors
    probe = settings.settle.probe_ms
    logger.info("→ clicking search")
    outcome = await run_chain(
        page,
        "search",
        [
            Strategy("search_text_or_icon", lambda p: _click_search(p, sel.search_xpath, probe)),
            Strategy("search_cell", lambda p: p.locator(sel.search_fallback).first.click(timeout=probe)),
        ],
        NavigationError,
    )
    # no DOM signal tells us the grid has repainted
    await settle(settings.settle.after_search, "result grid to refresh")
    return outcome


async def apply_filters(page: Page, settings: Settings, window: ReportWindow) -> FilterReport:
    report = FilterReport()
    truck = await select_truck_scope(page, settings)
    report.truck_scope = truck.value
    report.outcomes.append(truck)
    await apply_report_types(page, settings, report)
    await set_date_range(page, settings, window)
    report.outcomes.append(await trigger_search(page, settings))
    if report.missed:
        logger.warning(f"⚠️ Report filtered without: {', '.join(report.missed)}")
    return report
