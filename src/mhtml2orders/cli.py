from __future__ import annotations
import argparse
import json
import logging
from .logging_config import setup_logging
from .config import DEFAULT_PROFILES_PATH, resolve_options
from .errors import DocumentFormatError
from .types import ImportRequest
from .convert import convert
from .parsers import bootstrap

log = logging.getLogger(__name__)

def main(argv=None) -> int:
    bootstrap()
    p = argparse.ArgumentParser(description="Import orders from a saved AliExpress order page (HTML/MHTML)")
    p.add_argument("--input", required=True, help="Saved page (.html, .htm, .mhtml, .mht)")
    p.add_argument("--site", default="aliexpress", help="Site key (e.g. aliexpress, auto)")
    p.add_argument("--images-dir", help="Directory for extracted/downloaded images")
    p.add_argument("--uploads-root", help="Root that stored image paths are relative to")
    p.add_argument("--no-download", action="store_true", help="Do not download external images")
    p.add_argument("--json", dest="json_out", help="Write orders + statistics as JSON")
    p.add_argument("--xlsx", dest="xlsx_out", help="Write one row per item to XLSX")
    p.add_argument("--template", help="XLSX template path (optional)")
    p.add_argument("--profiles", default=DEFAULT_PROFILES_PATH, help="Site profiles JSON")
    p.add_argument("--options", default="{}", help="JSON options (image_dir, cdn_image_size, sheet_name, mapping, etc.)")
    p.add_argument("--log", default="INFO", help="Log level")
    args = p.parse_args(argv)

    setup_logging(args.log)

    options = json.loads(args.options) if args.options else {}
    if args.images_dir:
        options["image_dir"] = args.images_dir
    if args.uploads_root:
        options["uploads_root"] = args.uploads_root
    if args.no_download:
        options["download_images"] = False

    req = ImportRequest(
        input_path=args.input,
        site_key=args.site,
        json_output_path=args.json_out,
        xlsx_output_path=args.xlsx_out,
        template_xlsx_path=args.template,
        options=options,
    )
    try:
        res = convert(req, resolve_options(args.site, options, args.profiles))
    except DocumentFormatError as e:
        log.error("Import failed (%s): %s", e.reason, e)
        return 2

    stats = res.statistics
    print(f"\nImported {stats.total_orders} orders, {stats.total_items} items, total value {stats.total_value:.2f}")
    if stats.suppliers:
        print("Suppliers:", ", ".join(stats.suppliers))
    if res.warnings:
        print("\nWARNINGS:")
        for w in res.warnings:
            print("-", w)
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
