from __future__ import annotations
import json
import logging
import os
from typing import List, Optional

from bs4 import BeautifulSoup

from .config import ImportOptions
from .errors import DocumentFormatError, HTML_TOO_SHORT, INVALID_INPUT
from .images import (
    FileStore,
    ImageFetcher,
    ImageResolver,
    LocalFileStore,
    RequestsImageFetcher,
    StorageLayout,
    replace_image_urls,
    save_embedded_images,
)
from .mhtml_reader import MIN_HTML_LENGTH, is_mhtml, parse_mhtml
from .parsers.base import ParseContext
from .parsers.registry import AUTO, detect, get as get_parser
from .progress import ProgressCallback, ProgressReporter
from .types import ImportRequest, ImportResult, ImportStatistics, ParsedOrder
from .xlsx_writer import write_orders_to_xlsx

log = logging.getLogger(__name__)


def read_document(path: str, options: ImportOptions) -> str:
    ext = os.path.splitext(path)[1].lower()
    if ext not in options.allowed_extensions:
        raise DocumentFormatError(INVALID_INPUT, f"Only HTML and MHTML files are allowed, got '{ext or path}'")
    size = os.path.getsize(path)
    if size == 0:
        raise DocumentFormatError(INVALID_INPUT, f"Input file is empty: {path}")
    if size > options.max_input_bytes:
        raise DocumentFormatError(INVALID_INPUT, f"Input file too large ({size} bytes): {path}")
    with open(path, "rb") as f:
        raw = f.read()
    # surrogateescape keeps binary MIME parts byte-exact
    return raw.decode("utf-8", errors="surrogateescape")


def parse_document(
    content: str,
    options: Optional[ImportOptions] = None,
    store: Optional[FileStore] = None,
    fetcher: Optional[ImageFetcher] = None,
    progress_callback: Optional[ProgressCallback] = None,
    warnings: Optional[List[str]] = None,
) -> List[ParsedOrder]:
    """
    Raw saved page (MHTML or HTML) -> orders. Raises DocumentFormatError
    when nothing importable is found; never returns an empty list.
    """
    options = options or ImportOptions()
    store = store or LocalFileStore()
    progress = ProgressReporter(progress_callback)
    layout = StorageLayout(options.uploads_root, options.image_dir, options.public_prefix)
    url_mapping = {}

    if is_mhtml(content):
        progress.report("parsing", "Detected MHTML format, extracting content and images...")
        document = parse_mhtml(content)
        html = document.html_content
        progress.report("images", f"Processing {len(document.images)} embedded images...")
        url_mapping = save_embedded_images(document.images, store, layout)
        html = replace_image_urls(html, url_mapping)
        progress.report("images", f"Processed {len(url_mapping)} embedded images")
    else:
        html = content

    if len(html or "") < MIN_HTML_LENGTH:
        raise DocumentFormatError(HTML_TOO_SHORT, "HTML content too short - may be corrupted")

    progress.report("parsing", f"Loading HTML content ({round(len(html) / 1024)} KB)")
    soup = BeautifulSoup(html, "html.parser")
    page_title = soup.title.get_text().strip() if soup.title else ""
    progress.report("parsing", f"Analyzing page: {page_title or 'Unknown page'}")

    if options.site == AUTO:
        parser = detect(soup) or get_parser("aliexpress")
    else:
        parser = get_parser(options.site)
    log.info("Using parser: %s (%s)", parser.display_name, parser.site_key)

    if not parser.can_parse(soup):
        msg = f"This may not be a {parser.source_name} page"
        log.warning("Parser '%s' heuristics say it may not match this page. Continuing anyway.", parser.site_key)
        progress.report("parsing", f"Warning: {msg}")
        if warnings is not None:
            warnings.append(msg)

    if fetcher is None and options.download_images:
        fetcher = RequestsImageFetcher(referer=parser.site_url + "/", timeout=options.download_timeout)
    images = ImageResolver(layout, store, fetcher if options.download_images else None, url_mapping)
    ctx = ParseContext(options=options, images=images, progress=progress)
    return parser.parse(soup, ctx)


def compute_statistics(orders: List[ParsedOrder]) -> ImportStatistics:
    suppliers: List[str] = []
    for o in orders:
        if o.supplier not in suppliers:
            suppliers.append(o.supplier)
    dates = [o.order_date for o in orders]
    return ImportStatistics(
        total_orders=len(orders),
        total_items=sum(len(o.items) for o in orders),
        total_value=round(sum(o.total_amount for o in orders), 2),
        suppliers=suppliers,
        earliest=min(dates) if dates else None,
        latest=max(dates) if dates else None,
    )


def write_json(path: str, result: ImportResult) -> None:
    payload = {
        "orders": [o.to_dict() for o in result.orders],
        "statistics": result.statistics.to_dict(),
        "warnings": result.warnings,
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    log.info("Saved output: %s", path)


def convert(
    req: ImportRequest,
    options: Optional[ImportOptions] = None,
    store: Optional[FileStore] = None,
    fetcher: Optional[ImageFetcher] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> ImportResult:
    options = options or ImportOptions.from_dict(dict(req.options or {}, site=req.site_key))
    content = read_document(req.input_path, options)

    warnings: List[str] = []
    orders = parse_document(content, options, store, fetcher, progress_callback, warnings)
    result = ImportResult(orders=orders, statistics=compute_statistics(orders), warnings=warnings)

    if req.json_output_path:
        write_json(req.json_output_path, result)
    if req.xlsx_output_path:
        write_orders_to_xlsx(req.xlsx_output_path, orders, req.template_xlsx_path, req.options or {})
    return result
