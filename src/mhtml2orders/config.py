from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

log = logging.getLogger(__name__)

DEFAULT_PROFILES_PATH = os.path.join("config", "site_profiles.json")

# Consumed by xlsx_writer, not by the import itself
WRITER_KEYS = ("sheet_name", "mapping", "clear_existing")


@dataclass
class ImportOptions:
    site: str = "aliexpress"
    uploads_root: str = "./uploads"
    image_dir: str = "./uploads/imported-images"
    public_prefix: str = "/uploads"
    download_images: bool = True
    download_timeout: Optional[float] = None
    cdn_image_size: int = 800
    extra_container_selectors: List[str] = field(default_factory=list)
    max_input_bytes: int = 50 * 1024 * 1024
    allowed_extensions: Tuple[str, ...] = (".html", ".htm", ".mhtml", ".mht")

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]]) -> "ImportOptions":
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (options or {}).items():
            if key in WRITER_KEYS:
                continue
            if key not in known:
                log.warning("Ignoring unknown option '%s'", key)
                continue
            kwargs[key] = value
        if "allowed_extensions" in kwargs:
            kwargs["allowed_extensions"] = tuple(e.lower() for e in kwargs["allowed_extensions"])
        if "extra_container_selectors" in kwargs:
            kwargs["extra_container_selectors"] = list(kwargs["extra_container_selectors"] or [])
        return cls(**kwargs)


def load_profiles(path: str) -> dict:
    if not path or not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def resolve_options(site_key: str, options: Optional[Dict[str, Any]] = None, profiles_path: Optional[str] = None) -> ImportOptions:
    """
    Profile options for the site first, explicit options on top.
    """
    merged: Dict[str, Any] = {}
    profiles = load_profiles(profiles_path) if profiles_path else {}
    merged.update(profiles.get(site_key, {}).get("options", {}))
    merged.update(options or {})
    merged["site"] = site_key
    return ImportOptions.from_dict(merged)
