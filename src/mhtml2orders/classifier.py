from __future__ import annotations
import re
from typing import Callable, Dict, List, Optional, Tuple

from .types import (
    CapacitanceValue,
    CurrentRating,
    FrequencyValue,
    ParsedComponent,
    ResistanceValue,
    VoltageRating,
)
from .utils import format_number

DEFAULT_CATEGORY = "Electronic Component"

# Category cascade, first match wins.
_RESISTOR_RE = re.compile(r"resistor|ohm|ω|kω|mω|ком", re.IGNORECASE)
_CAPACITOR_RE = re.compile(r"capacitor|capacitance|[pnuµμmf]f|farad", re.IGNORECASE)
_IC_RE = re.compile(r"\b[a-z]{2,6}\d{2,6}[a-z]*\b|microcontroller|mcu|cpu|processor|atmega|stm32|esp32", re.IGNORECASE)
_CONNECTOR_RE = re.compile(r"connector|socket|header|pin|plug|jack|terminal", re.IGNORECASE)
_SENSOR_RE = re.compile(r"sensor|temperature|pressure|humidity|accelerometer|gyroscope|proximity", re.IGNORECASE)
_DISPLAY_RE = re.compile(r"display|lcd|oled|led|screen|monitor", re.IGNORECASE)

# (test, category, subcategory, tags)
CATEGORY_RULES: List[Tuple[re.Pattern, str, Optional[str], Tuple[str, ...]]] = [
    (_RESISTOR_RE, "Passive Components", "Resistors", ("resistor",)),
    (_CAPACITOR_RE, "Passive Components", "Capacitors", ("capacitor",)),
    (_IC_RE, "Integrated Circuits", None, ("ic", "microcontroller")),
    (_CONNECTOR_RE, "Connectors", None, ("connector",)),
    (_SENSOR_RE, "Sensors", None, ("sensor",)),
    (_DISPLAY_RE, "Displays", None, ("display",)),
]

PACKAGE_TYPES = ("0402", "0603", "0805", "1206", "SOT", "QFP", "DIP", "SOP", "TSSOP", "QFN", "BGA", "SOIC")

PROTOCOLS = ("spi", "i2c", "uart", "usb", "can", "ethernet", "wifi", "bluetooth")

_MULTIPLIERS = {"": 1, "k": 1e3, "m": 1e6, "g": 1e9}
_CAP_TO_PF = {"p": 1, "n": 1e3, "u": 1e6, "µ": 1e6, "μ": 1e6, "m": 1e9}
_CURRENT_UNITS = {"": "A", "m": "mA", "u": "µA", "µ": "µA", "μ": "µA", "n": "nA"}
_FREQ_UNITS = {"hz": "Hz", "khz": "kHz", "mhz": "MHz", "ghz": "GHz"}

_OHMS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([kmg]?)\s*(?:Ω|ohms?\b)", re.IGNORECASE)
_SHORTHAND_OHMS_RE = re.compile(r"(?<![\w.])(\d+)([kmgr])(\d+)(?![\w.])", re.IGNORECASE)
_BARE_OHMS_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?)([kmg])(?![\w.])", re.IGNORECASE)
_TOLERANCE_RE = re.compile(r"(?:±|\+/-)?\s*(\d+(?:\.\d+)?%)")
_CAPACITANCE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([pnuµμm])f\b", re.IGNORECASE)
_CAP_VOLTAGE_RE = re.compile(r"(\d+)\s*v\b", re.IGNORECASE)
_PART_NUMBER_RE = re.compile(r"\b([a-z]{2,6}\d{2,6}[a-z]*)\b", re.IGNORECASE)
_VOLTAGE_RANGE_RE = re.compile(
    r"(?<![\w.])(\d+(?:\.\d+)?)\s*v?\s*(?:-|~|to)\s*(\d+(?:\.\d+)?)\s*v(?:olts?)?\b", re.IGNORECASE)
_VOLTAGE_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?)\s*v(?:olts?)?\b", re.IGNORECASE)
_CURRENT_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?)\s*([mµμun]?)a(?:mps?)?\b", re.IGNORECASE)
_FREQUENCY_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?)\s*([kmg]?hz)\b", re.IGNORECASE)
_PIN_COUNT_RE = re.compile(r"(\d+)\s*-?\s*pins?\b", re.IGNORECASE)

_MANUFACTURER_SPEC_KEYS = ("manufacturer", "brand", "brand name")
KNOWN_FAMILIES = (
    (re.compile(r"\bstm32|\bstm8", re.IGNORECASE), "STMicroelectronics"),
    (re.compile(r"\besp32|\besp8266|\besp-?01", re.IGNORECASE), "Espressif"),
    (re.compile(r"\batmega|\battiny|\bpic\d", re.IGNORECASE), "Microchip"),
    (re.compile(r"\bch340|\bch341", re.IGNORECASE), "WCH"),
    (re.compile(r"\bne555|\blm\d{3}|\btl07\d", re.IGNORECASE), "Texas Instruments"),
    (re.compile(r"\brp2040", re.IGNORECASE), "Raspberry Pi"),
)


def parse_resistance(title: str) -> Optional[ResistanceValue]:
    m = _OHMS_RE.search(title)
    if m:
        value = float(m.group(1)) * _MULTIPLIERS[m.group(2).lower()]
    else:
        # Shorthand ("4K7", "10K") only counts on resistor-like titles
        if not _RESISTOR_RE.search(title):
            return None
        s = _SHORTHAND_OHMS_RE.search(title)
        b = _BARE_OHMS_RE.search(title)
        if s:
            mult = s.group(2).lower()
            value = float(f"{s.group(1)}.{s.group(3)}") * _MULTIPLIERS.get(mult, 1)
        elif b:
            value = float(b.group(1)) * _MULTIPLIERS[b.group(2).lower()]
        else:
            return None

    tol = _TOLERANCE_RE.search(title)
    return ResistanceValue(value=value, unit="Ω", tolerance=tol.group(1) if tol else None)


def parse_capacitance(title: str) -> Optional[CapacitanceValue]:
    m = _CAPACITANCE_RE.search(title)
    if not m:
        return None
    value = float(m.group(1)) * _CAP_TO_PF[m.group(2).lower()]
    v = _CAP_VOLTAGE_RE.search(title)
    return CapacitanceValue(value=value, unit="pF", voltage=int(v.group(1)) if v else None)


def parse_part_number(title: str) -> Optional[str]:
    m = _PART_NUMBER_RE.search(title)
    return m.group(1).upper() if m else None


def parse_package_type(title: str) -> Optional[str]:
    for pkg in PACKAGE_TYPES:
        if re.search(rf"\b{pkg}\b", title, re.IGNORECASE):
            return pkg
    return None


def parse_voltage(title: str) -> Optional[VoltageRating]:
    m = _VOLTAGE_RANGE_RE.search(title)
    if m:
        return VoltageRating(min=float(m.group(1)), max=float(m.group(2)))
    m = _VOLTAGE_RE.search(title)
    if m:
        return VoltageRating(nominal=float(m.group(1)))
    return None


def parse_current(title: str) -> Optional[CurrentRating]:
    m = _CURRENT_RE.search(title)
    if not m:
        return None
    return CurrentRating(value=float(m.group(1)), unit=_CURRENT_UNITS[m.group(2).lower()])


def parse_frequency(title: str) -> Optional[FrequencyValue]:
    m = _FREQUENCY_RE.search(title)
    if not m:
        return None
    return FrequencyValue(value=float(m.group(1)), unit=_FREQ_UNITS[m.group(2).lower()])


def parse_pin_count(title: str) -> Optional[int]:
    m = _PIN_COUNT_RE.search(title)
    return int(m.group(1)) if m else None


def parse_protocols(title: str) -> List[str]:
    found: List[str] = []
    for proto in PROTOCOLS:
        pattern = r"\bwi-?fi\b" if proto == "wifi" else rf"\b{proto}\b"
        if re.search(pattern, title, re.IGNORECASE):
            found.append(proto.upper())
    return found


def parse_manufacturer(title: str, specs: Dict[str, str]) -> Optional[str]:
    for key, value in specs.items():
        if key.strip().lower() in _MANUFACTURER_SPEC_KEYS and value.strip():
            return value.strip()
    for pattern, name in KNOWN_FAMILIES:
        if pattern.search(title):
            return name
    return None


def describe(title: str, source: str, resistance: Optional[ResistanceValue],
             capacitance: Optional[CapacitanceValue], package_type: Optional[str]) -> str:
    text = f"Imported from {source}: {title}"
    if resistance:
        text += f". {format_number(resistance.value)}{resistance.unit} resistor"
        if resistance.tolerance:
            text += f" with {resistance.tolerance} tolerance"
    if capacitance:
        text += f". {format_number(capacitance.value)}{capacitance.unit} capacitor"
        if capacitance.voltage:
            text += f" rated for {capacitance.voltage}V"
    if package_type:
        text += f" in {package_type} package"
    return text


def classify_component(title: str, specs: Optional[Dict[str, str]] = None, source: str = "AliExpress") -> ParsedComponent:
    """
    Best-effort structured description of a product title. Never raises;
    anything that does not match is simply left out.
    """
    title = title or ""
    specs = specs or {}

    category, subcategory, tags = DEFAULT_CATEGORY, None, []
    for pattern, cat, sub, cat_tags in CATEGORY_RULES:
        if pattern.search(title):
            category, subcategory, tags = cat, sub, list(cat_tags)
            break

    extractors: Dict[str, Callable[[str], object]] = {
        "resistance": parse_resistance,
        "capacitance": parse_capacitance,
        "part_number": parse_part_number,
        "package_type": parse_package_type,
        "voltage": parse_voltage,
        "current": parse_current,
        "frequency": parse_frequency,
        "pin_count": parse_pin_count,
    }
    found = {name: fn(title) for name, fn in extractors.items()}

    return ParsedComponent(
        name=title,
        category=category,
        subcategory=subcategory,
        tags=tags,
        protocols=parse_protocols(title),
        manufacturer=parse_manufacturer(title, specs),
        description=describe(title, source, found["resistance"], found["capacitance"], found["package_type"]),
        **found,
    )
