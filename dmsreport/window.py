import datetime as dt
from dataclasses import dataclass
from typing import Optional

from pytz import timezone, utc

START_TIME = "06:00"
END_TIME = "18:00"


@dataclass(frozen=True)
class ReportWindow:
    date_key: str
    start: dt.datetime
    end: dt.datetime

    @property
    def start_text(self) -> str:
        return f"{self.date_key} {START_TIME}"

    @property
    def end_text(self) -> str:
        return f"{self.date_key} {END_TIME}"

    @property
    def label(self) -> str:
        return f"ช่วง{START_TIME.replace(':', '')}ถึง{END_TIME.replace(':', '')}"


def compute_report_window(tz_name: str, now: Optional[dt.datetime] = None) -> ReportWindow:
    """Today's 06:00-18:00 window in ``tz_name``. Naive ``now`` is taken as UTC."""
    tz = timezone(tz_name)
    if now is None:
        now = dt.datetime.now(utc)
    elif now.tzinfo is None:
        now = utc.localize(now)
    day = now.astimezone(tz).date()

    def at(hhmm: str) -> dt.datetime:
        h, m = (int(x) for x in hhmm.split(":"))
        return tz.localize(dt.datetime(day.year, day.month, day.day, h, m))

    return ReportWindow(date_key=day.strftime("%Y-%m-%d"), start=at(START_TIME), end=at(END_TIME))
