"""Run configuration: environment, URLs, wait policy and UI variants."""

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .errors import ConfigError

# ─── URLs ──────────────────────────────────────────────────────────────────────
DTC_LOGIN_URL = "https://gps.dtc.co.th/ultimate/index.php"

# ─── Paths ─────────────────────────────────────────────────────────────────────
SCRATCH_DIR = Path("downloads")
OUTPUT_DIR = Path("output")
SCREENSHOT_PATH = Path("error_screenshot.png")
LOG_FILE = OUTPUT_DIR / "dmsreport.log"

# ─── Env ───────────────────────────────────────────────────────────────────────
REQUIRED_ENV = ("DTC_USERNAME", "DTC_PASSWORD", "EMAIL_USER", "EMAIL_PASS", "EMAIL_TO")

TZ_NAME = "Asia/Bangkok"
DEFAULT_TIMEOUT_S = 60
ALL_SCOPE = "ALL"


@dataclass(frozen=True)
class SettlePolicy:
    """Fixed waits (seconds) for steps the dashboard gives no signal for."""

    after_login: float = 30.0
    after_navigation: float = 5.0
    after_search: float = 5.0
    export_wait: float = 15.0
    short: float = 2.0
    probe: float = 10.0
    options_wait: float = 30.0
    poll_interval: float = 0.5

    @property
    def probe_ms(self) -> int:
        return int(self.probe * 1000)


@dataclass(frozen=True)
class FilterSpec:
    truck_scope: str = ALL_SCOPE
    report_type_keywords: Tuple[str, ...] = ()

    def __post_init__(self):
        seen = []
        for kw in self.report_type_keywords:
            kw = kw.strip()
            if kw and kw not in seen:
                seen.append(kw)
        object.__setattr__(self, "report_type_keywords", tuple(seen))
        object.__setattr__(self, "truck_scope", (self.truck_scope or ALL_SCOPE).strip())

    @property
    def all_trucks(self) -> bool:
        return self.truck_scope.upper() == ALL_SCOPE


@dataclass(frozen=True)
class SelectorSet:
    """Selector candidates for every dashboard revision seen so far."""

    login_user: str = "#txtname"
    login_pass: str = "#txtpass"

    sidebar_label: str = "รายงาน"
    sidebar_item: str = "#sidebar li:nth-of-type(5)"
    sidebar_icon: str = "#sidebar li:nth-of-type(5) i"
    dms_report_label: str = "รายงานสถานะ DMS"
    dms_report_fallback: str = "div:nth-of-type(5) > div:nth-of-type(2) li:nth-of-type(1) > a"

    truck_selects: Tuple[str, ...] = ("#ddlTruck", "#ddl_truck", "select[name*='truck' i]", "select[id*='vehicle' i]")
    all_labels: Tuple[str, ...] = ("ทั้งหมด", "all")

    report_type_dropdowns: Tuple[str, ...] = ("ddlReportType", "ddl_dms_type", "dmsType")
    dropdown_search_inputs: Tuple[str, ...] = (
        "input[type='search']",
        "input[type='text']",
        ".select2-search__field",
        ".chosen-search input",
    )
    # searched page-wide when the widget renders its box outside the container
    dropdown_page_search_inputs: Tuple[str, ...] = (
        "input[type='search']",
        ".select2-search__field",
        ".chosen-search input",
    )

    date_start: str = "#date9"
    date_end: str = "#date10"

    search_xpath: str = (
        "//*[contains(text(), 'ค้นหา')] | //span[contains(@class, 'icon-search')]"
        " | //i[contains(@class, 'icon-search')]"
    )
    search_fallback: str = "td:nth-of-type(5) > span"

    export_id: str = "#btnexport"
    export_title: str = 'button[title="Excel"]'
    export_name: str = "Excel"


@dataclass(frozen=True)
class Settings:
    username: str
    password: str
    mail_user: str
    mail_pass: str
    recipients: Tuple[str, ...]
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 465
    chat_webhook: str = ""
    login_url: str = DTC_LOGIN_URL
    report_url: Optional[str] = None
    timezone: str = TZ_NAME
    scratch_dir: Path = SCRATCH_DIR
    screenshot_path: Path = SCREENSHOT_PATH
    log_file: Path = LOG_FILE
    timeout_s: float = DEFAULT_TIMEOUT_S
    viewport: Tuple[int, int] = (1920, 1080)
    settle: SettlePolicy = field(default_factory=SettlePolicy)
    filters: FilterSpec = field(default_factory=FilterSpec)
    selectors: SelectorSet = field(default_factory=SelectorSet)

    @property
    def timeout_ms(self) -> int:
        return int(self.timeout_s * 1000)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {k: (env.get(k) or "").strip() for k in REQUIRED_ENV}
        recipients = split_list(values["EMAIL_TO"])

        missing = [k for k, v in values.items() if not v]
        if not recipients and "EMAIL_TO" not in missing:
            missing.append("EMAIL_TO")
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        kwargs = {}
        if env.get("SMTP_SERVER"):
            kwargs["smtp_server"] = env["SMTP_SERVER"].strip()
        if env.get("SMTP_PORT"):
            kwargs["smtp_port"] = _as_int("SMTP_PORT", env["SMTP_PORT"])
        if env.get("DMS_TIMEOUT"):
            kwargs["timeout_s"] = _as_int("DMS_TIMEOUT", env["DMS_TIMEOUT"])

        return cls(
            username=values["DTC_USERNAME"],
            password=values["DTC_PASSWORD"],
            mail_user=values["EMAIL_USER"],
            mail_pass=values["EMAIL_PASS"],
            recipients=recipients,
            chat_webhook=(env.get("GCHAT_WEBHOOK") or "").strip(),
            report_url=(env.get("DTC_REPORT_URL") or "").strip() or None,
            filters=FilterSpec(
                truck_scope=env.get("DMS_TRUCK_SCOPE") or ALL_SCOPE,
                report_type_keywords=split_list(env.get("DMS_REPORT_TYPES") or ""),
            ),
            **kwargs,
        )

    def with_overrides(
        self,
        timeout_s: Optional[float] = None,
        truck_scope: Optional[str] = None,
        report_types: Optional[Tuple[str, ...]] = None,
        scratch_dir: Optional[Path] = None,
    ) -> "Settings":
        changes = {}
        if timeout_s:
            changes["timeout_s"] = timeout_s
        if scratch_dir:
            changes["scratch_dir"] = Path(scratch_dir)
        if truck_scope or report_types:
            changes["filters"] = FilterSpec(
                truck_scope=truck_scope or self.filters.truck_scope,
                report_type_keywords=tuple(report_types) if report_types else self.filters.report_type_keywords,
            )
        return replace(self, **changes) if changes else self


def split_list(raw: str) -> Tuple[str, ...]:
    out = []
    for part in re.split(r"[,;]", raw or ""):
        part = part.strip()
        if part and part not in out:
            out.append(part)
    return tuple(out)


def _as_int(name: str, raw: str) -> int:
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
