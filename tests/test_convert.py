import json
import os

import pytest
from openpyxl import load_workbook

from mhtml2orders.convert import compute_statistics, convert, parse_document, read_document
from mhtml2orders.errors import DocumentFormatError, HTML_TOO_SHORT, INVALID_INPUT, NO_ORDERS_FOUND
from mhtml2orders.types import ImportRequest, ParsedOrder

from conftest import EMPTY_PAGE_HTML, JPEG_BYTES, MHTML_ORDER_HTML, ORDER_LIST_HTML, build_mhtml


def write(path, text):
    path.write_bytes(text.encode("utf-8"))
    return str(path)


def test_mhtml_pipeline(tmp_path, import_options, events):
    src = write(tmp_path / "orders.mhtml", build_mhtml(MHTML_ORDER_HTML))
    req = ImportRequest(
        input_path=src,
        json_output_path=str(tmp_path / "orders.json"),
        xlsx_output_path=str(tmp_path / "orders.xlsx"),
    )
    result = convert(req, import_options, progress_callback=events.append)

    assert len(result.orders) == 1
    order = result.orders[0]
    assert order.order_number == "8200000000000001"
    assert order.status == "delivered"
    assert order.supplier == "Café Electronics"
    item = order.items[0]
    assert item.quantity == 5
    assert item.total_price == 4.0
    # the embedded CDN image was stored and the HTML rewritten to point at it
    assert item.local_image_path == "imported-images/S1234abcd.jpg"
    assert item.image_url is None
    with open(os.path.join(import_options.image_dir, "S1234abcd.jpg"), "rb") as f:
        assert f.read() == JPEG_BYTES
    assert item.parsed_component.manufacturer == "Texas Instruments"

    assert result.statistics.total_orders == 1
    assert result.statistics.total_items == 1
    assert result.statistics.total_value == 4.0
    assert result.warnings == []

    with open(tmp_path / "orders.json", encoding="utf-8") as f:
        payload = json.load(f)
    assert payload["orders"][0]["orderNumber"] == "8200000000000001"
    assert payload["orders"][0]["items"][0]["localImagePath"] == "imported-images/S1234abcd.jpg"
    assert "imageUrl" not in payload["orders"][0]["items"][0]
    assert payload["statistics"]["dateRange"]["earliest"] == "2024-02-01T00:00:00"

    ws = load_workbook(tmp_path / "orders.xlsx").active
    assert ws.cell(1, 1).value == "Order Number"
    assert ws.cell(2, 1).value == "8200000000000001"
    assert ws.max_row == 2

    assert events[0].stage == "parsing"
    assert events[-1].stage == "complete"


def test_plain_html_without_site_marker_warns(import_options):
    html = ORDER_LIST_HTML.replace("AliExpress", "Shop")
    warnings = []
    orders = parse_document(html, import_options, warnings=warnings)
    assert len(orders) == 2
    assert warnings == ["This may not be a AliExpress page"]


def test_auto_site_detection(import_options):
    import_options.site = "auto"
    assert len(parse_document(ORDER_LIST_HTML, import_options)) == 2


def test_no_orders(tmp_path, import_options):
    src = write(tmp_path / "empty.html", EMPTY_PAGE_HTML)
    with pytest.raises(DocumentFormatError) as e:
        convert(ImportRequest(input_path=src), import_options)
    assert e.value.reason == NO_ORDERS_FOUND


def test_short_html(import_options):
    with pytest.raises(DocumentFormatError) as e:
        parse_document("<html></html>", import_options)
    assert e.value.reason == HTML_TOO_SHORT


@pytest.mark.parametrize("name,content", [
    ("orders.pdf", "%PDF-1.4"),
    ("orders.html", ""),
])
def test_invalid_input(tmp_path, import_options, name, content):
    src = write(tmp_path / name, content)
    with pytest.raises(DocumentFormatError) as e:
        read_document(src, import_options)
    assert e.value.reason == INVALID_INPUT


def test_binary_bytes_survive_reading(tmp_path, import_options):
    path = tmp_path / "raw.mht"
    path.write_bytes(b"abc\xff\xfe")
    text = read_document(str(path), import_options)
    assert text.encode("utf-8", errors="surrogateescape") == b"abc\xff\xfe"


def test_statistics():
    orders = [
        ParsedOrder("1", "2024-03-01T00:00:00", 10.0, "Shop A"),
        ParsedOrder("2", "2024-01-01T00:00:00", 5.0, "Shop B"),
        ParsedOrder("3", "2024-02-01T00:00:00", 1.0, "Shop A"),
    ]
    stats = compute_statistics(orders)
    assert stats.total_orders == 3
    assert stats.total_value == 16.0
    assert stats.suppliers == ["Shop A", "Shop B"]
    assert stats.earliest == "2024-01-01T00:00:00"
    assert stats.latest == "2024-03-01T00:00:00"
    assert compute_statistics([]).to_dict()["dateRange"] == {"earliest": None, "latest": None}
