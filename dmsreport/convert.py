"""Turn the dashboard's HTML "Excel" export into a real, styled .xlsx."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from bs4 import BeautifulSoup
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .errors import ConversionError, ParseError

logger = logging.getLogger(__name__)

# ─── Styles ────────────────────────────────────────────────────────────────────
SHEET_TITLE = "DMS Report"
COLOR_BORDER = "8A8A8A"
COLOR_HEADER_FILL = "D9E1F2"

BORDER_THIN = Border(
    left=Side(style="thin", color=COLOR_BORDER),
    right=Side(style="thin", color=COLOR_BORDER),
    top=Side(style="thin", color=COLOR_BORDER),
    bottom=Side(style="thin", color=COLOR_BORDER),
)
ALIGN_BODY = Alignment(vertical="center", wrap_text=True)
ALIGN_HEADER = Alignment(horizontal="center", vertical="center", wrap_text=True)
FONT_HEADER = Font(bold=True)
FILL_HEADER = PatternFill(start_color=COLOR_HEADER_FILL, end_color=COLOR_HEADER_FILL, fill_type="solid")

MIN_WIDTH = 10
MAX_WIDTH = 60
WIDTH_PADDING = 2

TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class ReportTable:
    rows: List[List[str]] = field(default_factory=list)
    header_cells: List[List[bool]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def is_header(self, r: int, c: int) -> bool:
        if r == 0:
            return True
        flags = self.header_cells[r] if r < len(self.header_cells) else []
        return c < len(flags) and flags[c]


def normalize_cell_text(text: Optional[str]) -> str:
    """Drop leftover markup, fold whitespace (nbsp included) and trim."""
    if not text:
        return ""
    text = TAG_RE.sub("", text)
    return " ".join(text.replace("\xa0", " ").split())


def parse_report_table(html: Union[str, bytes]) -> ReportTable:
    soup = BeautifulSoup(html, "html.parser")
    table = soup.find("table")
    if table is None:
        raise ParseError("No <table> element in exported document")

    out = ReportTable()
    for tr in table.find_all("tr"):
        if tr.find_parent("table") is not table:
            continue
        cells = tr.find_all(["td", "th"], recursive=False)
        out.rows.append([normalize_cell_text(c.get_text(" ")) for c in cells])
        out.header_cells.append([c.name == "th" for c in cells])
    return out


def compute_column_widths(
    rows: Sequence[Sequence[str]],
    minimum: int = MIN_WIDTH,
    maximum: int = MAX_WIDTH,
    padding: int = WIDTH_PADDING,
) -> Dict[int, int]:
    """1-based column index -> display width."""
    longest: Dict[int, int] = {}
    for row in rows:
        for c, value in enumerate(row, start=1):
            longest[c] = max(longest.get(c, 0), len(value or ""))
    return {c: min(max(n + padding, minimum), maximum) for c, n in longest.items()}


def build_workbook(table: ReportTable, sheet_title: str = SHEET_TITLE) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title

    for r, row in enumerate(table.rows):
        for c, value in enumerate(row):
            cell = ws.cell(row=r + 1, column=c + 1, value=value)
            cell.border = BORDER_THIN
            if table.is_header(r, c):
                cell.font = FONT_HEADER
                cell.alignment = ALIGN_HEADER
                cell.fill = FILL_HEADER
            else:
                cell.alignment = ALIGN_BODY

    for c, width in compute_column_widths(table.rows).items():
        ws.column_dimensions[get_column_letter(c)].width = width
    if table.rows:
        ws.freeze_panes = "A2"
    return wb


def convert_report(artifact_path: Path, output_dir: Optional[Path] = None) -> Path:
    src = Path(artifact_path)
    target = Path(output_dir or src.parent) / f"{src.stem}.xlsx"
    if target == src:
        target = target.with_name(f"{src.stem}_styled.xlsx")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        table = parse_report_table(src.read_bytes())
        wb = build_workbook(table)
        wb.save(target)
    except ConversionError:
        raise
    except Exception as e:
        raise ConversionError(f"Could not convert {src.name}: {e}") from e
    logger.info(f"✅ Converted {src.name} → {target.name} ({len(table)} rows)")
    return target
