from pathlib import Path

import pytest
from openpyxl import load_workbook

from dmsreport.convert import (
    MAX_WIDTH,
    MIN_WIDTH,
    WIDTH_PADDING,
    build_workbook,
    compute_column_widths,
    convert_report,
    normalize_cell_text,
    parse_report_table,
)
from dmsreport.errors import ConversionError, ParseError

EXPORT_HTML = """
<html><head><meta charset="utf-8"></head><body>
<table border="1">
  <tr><th>ทะเบียนรถ</th><th>เวลา</th><th>สถานะ DMS</th></tr>
  <tr><td> 70-1234 </td><td>2026-10-19 06:15</td><td><b>หาว</b></td></tr>
  <tr><td>70-5678</td><td>2026-10-19&nbsp;07:40</td></tr>
  <tr><td>71-0001</td><td>2026-10-19 09:02</td><td>ใช้โทรศัพท์<br>ขณะขับ</td><td>extra</td></tr>
  <tr><th>รวม</th><td>3</td></tr>
</table>
<table><tr><td>second table is ignored</td></tr></table>
</body></html>
"""


def test_parse_keeps_row_order_and_ragged_rows():
    table = parse_report_table(EXPORT_HTML)
    assert len(table) == 5
    assert table.rows[0] == ["ทะเบียนรถ", "เวลา", "สถานะ DMS"]
    assert table.rows[1] == ["70-1234", "2026-10-19 06:15", "หาว"]
    assert table.rows[2] == ["70-5678", "2026-10-19 07:40"]
    assert table.rows[3] == ["71-0001", "2026-10-19 09:02", "ใช้โทรศัพท์ ขณะขับ", "extra"]
    assert [r[0] for r in table.rows] == ["ทะเบียนรถ", "70-1234", "70-5678", "71-0001", "รวม"]


def test_header_flags():
    table = parse_report_table(EXPORT_HTML)
    assert table.is_header(0, 2)
    assert not table.is_header(1, 0)
    assert table.is_header(4, 0)
    assert not table.is_header(4, 1)
    assert not table.is_header(4, 7)


def test_nested_table_rows_are_not_mixed_in():
    html = "<table><tr><td>a<table><tr><td>inner</td></tr></table></td></tr><tr><td>b</td></tr></table>"
    table = parse_report_table(html)
    assert len(table) == 2
    assert table.rows[1] == ["b"]


def test_no_table_is_parse_error():
    with pytest.raises(ParseError):
        parse_report_table("<html><body><p>Session expired</p></body></html>")


@pytest.mark.parametrize(
    "raw",
    ["  plain  ", "<b>bold</b> text", "a\xa0\xa0b", "x < y", "<<b>b>", "multi\n\n line\t", "", "<a<b>>"],
)
def test_normalize_is_idempotent(raw):
    once = normalize_cell_text(raw)
    assert normalize_cell_text(once) == once
    assert once == once.strip()


def test_normalize_strips_markup():
    assert normalize_cell_text(" <span>หาว</span>\xa0 ") == "หาว"
    assert normalize_cell_text(None) == ""


def test_column_widths_clamped():
    widths = compute_column_widths([["a", "x" * 20, "y" * 500]])
    assert widths[1] == MIN_WIDTH
    assert widths[2] == 20 + WIDTH_PADDING
    assert widths[3] == MAX_WIDTH


def test_column_width_never_shrinks_when_longer_value_added():
    rows = [["abc", "defgh"], ["abcdefghijklmnop"]]
    before = compute_column_widths(rows)
    for extra in ("q" * 12, "q" * 40, "q" * 90):
        rows = rows + [[extra, extra]]
        after = compute_column_widths(rows)
        assert all(after[c] >= before[c] for c in before)
        before = after


def test_workbook_styles_and_widths():
    table = parse_report_table(EXPORT_HTML)
    ws = build_workbook(table).active

    assert ws.max_row == 5
    header = ws.cell(row=1, column=1)
    assert header.font.bold
    assert header.alignment.horizontal == "center"
    assert header.fill.fill_type == "solid"

    body = ws.cell(row=2, column=3)
    assert body.value == "หาว"
    assert not body.font.bold
    assert body.alignment.vertical == "center"
    assert body.alignment.wrap_text
    for side in (body.border.left, body.border.right, body.border.top, body.border.bottom):
        assert side.style == "thin"

    assert ws.cell(row=5, column=1).font.bold
    assert not ws.cell(row=5, column=2).font.bold
    assert ws.column_dimensions["D"].width == MIN_WIDTH
    assert ws.freeze_panes == "A2"


def test_convert_report_writes_xlsx(tmp_path):
    src = tmp_path / "DMS_Status_20261019.xls"
    src.write_text(EXPORT_HTML, encoding="utf-8")
    out = convert_report(src)
    assert out == tmp_path / "DMS_Status_20261019.xlsx"
    assert src.exists()

    ws = load_workbook(out).active
    assert ws.title == "DMS Report"
    assert [c.value for c in ws[2]][:3] == ["70-1234", "2026-10-19 06:15", "หาว"]


def test_convert_report_into_other_dir(tmp_path):
    src = tmp_path / "report.html"
    src.write_text(EXPORT_HTML, encoding="utf-8")
    out = convert_report(src, output_dir=tmp_path / "out")
    assert out == tmp_path / "out" / "report.xlsx"


def test_convert_report_errors_are_conversion_errors(tmp_path):
    missing = tmp_path / "gone.xls"
    with pytest.raises(ConversionError):
        convert_report(missing)

    no_table = tmp_path / "login.xls"
    no_table.write_text("<html>please log in</html>")
    with pytest.raises(ConversionError):
        convert_report(no_table)


def test_existing_xlsx_is_not_overwritten(tmp_path):
    src = tmp_path / "already.xlsx"
    src.write_text(EXPORT_HTML, encoding="utf-8")
    out = convert_report(src)
    assert out.name == "already_styled.xlsx"
    assert Path(src).read_text(encoding="utf-8") == EXPORT_HTML
