from __future__ import annotations
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from .types import ParsedOrder, ParsedOrderItem

log = logging.getLogger(__name__)

# sheet header -> "<order|item|component>.<attribute>"
DEFAULT_MAPPING = {
    "Order Number": "order.order_number",
    "Order Date": "order.order_date",
    "Status": "order.status",
    "Supplier": "order.supplier",
    "Product Title": "item.product_title",
    "Quantity": "item.quantity",
    "Unit Price": "item.unit_price",
    "Total Price": "item.total_price",
    "Image": "item.local_image_path",
    "Product URL": "item.product_url",
    "Category": "component.category",
    "Part Number": "component.part_number",
    "Package": "component.package_type",
}

DEFAULT_SHEET = "Orders"


def _cell_value(order: ParsedOrder, item: ParsedOrderItem, path: str) -> Any:
    scope, _, attr = path.partition(".")
    sources = {"order": order, "item": item, "component": item.parsed_component}
    if scope not in sources:
        raise ValueError(f"Unknown mapping scope '{scope}' in '{path}'")
    value = getattr(sources[scope], attr, None)
    if path == "item.local_image_path" and not value:
        # no stored copy: fall back to the remote URL
        value = item.image_url
    return value


def _item_rows(orders: List[ParsedOrder]) -> Iterator[Tuple[ParsedOrder, ParsedOrderItem]]:
    for order in orders:
        for item in order.items:
            yield order, item


def _row_text(ws: Worksheet, row: int) -> List[str]:
    return ["" if c.value is None else str(c.value).strip() for c in ws[row]]


def _find_header_row(ws: Worksheet, required_headers: List[str], scan_rows: int = 50) -> int:
    for row in range(1, scan_rows + 1):
        present = _row_text(ws, row)
        if all(h in present for h in required_headers):
            return row
    return -1


def _header_columns(ws: Worksheet, header_row: int, headers: List[str]) -> Dict[str, int]:
    return {text: col for col, text in enumerate(_row_text(ws, header_row), start=1) if text in headers}


def _clear_data_rows(ws: Worksheet, start_row: int, columns: Dict[str, int], key_header: str) -> None:
    """Blank the template's previous rows, stopping at the first empty key cell."""
    key_col = columns[key_header]
    for row in range(start_row, ws.max_row + 1):
        if ws.cell(row, key_col).value in (None, ""):
            break
        for col in columns.values():
            ws.cell(row, col).value = None


def _open_sheet(template_path: Optional[str], sheet_name: Optional[str], headers: List[str]) -> Tuple[Workbook, Worksheet, int]:
    if not template_path:
        wb = Workbook()
        ws = wb.active
        ws.title = sheet_name or DEFAULT_SHEET
        ws.append(headers)
        return wb, ws, 1

    wb = load_workbook(template_path)
    ws = wb[sheet_name or wb.sheetnames[0]]
    header_row = _find_header_row(ws, headers)
    if header_row == -1:
        raise ValueError(f"Cannot find header row with required headers in sheet '{ws.title}'. Required: {headers}")
    return wb, ws, header_row


def write_orders_to_xlsx(output_path: str, orders: List[ParsedOrder], template_path: Optional[str] = None,
                         options: Optional[Dict[str, Any]] = None) -> None:
    """
    One row per item, order fields repeated. Writes below the template's
    header row when a template is given, else into a fresh workbook.
    """
    options = options or {}
    mapping: Dict[str, str] = options.get("mapping") or DEFAULT_MAPPING
    headers = list(mapping)

    wb, ws, header_row = _open_sheet(template_path, options.get("sheet_name"), headers)
    columns = _header_columns(ws, header_row, headers)
    first_row = header_row + 1

    if template_path and options.get("clear_existing", True):
        _clear_data_rows(ws, first_row, columns, headers[0])

    written = 0
    for written, (order, item) in enumerate(_item_rows(orders), start=1):
        row = first_row + written - 1
        for header, path in mapping.items():
            ws.cell(row, columns[header]).value = _cell_value(order, item, path)

    wb.save(output_path)
    log.info("Saved output: %s (%s rows)", output_path, written)
