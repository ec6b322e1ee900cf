"""Price extraction from crawled clinic text."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from medsignal.logic.events import EventContext, detect_event
from medsignal.logic.normalizer import KeywordDictionary
from medsignal.utils.dates import format_date, today_in_tz
from medsignal.utils.numbers import round_half_up

PREMIUM_THRESHOLD = 500_000
MID_THRESHOLD = 200_000
MIN_UNIT_PRICE = 100
MAX_UNIT_PRICE = 10_000_000
MAX_TOTAL_PRICE = 100_000_000

AMBIGUOUS = "__AMBIGUOUS__"

UNIT_MAP: dict[str, str] = {
    "샷": "SHOT", "shot": "SHOT", "shots": "SHOT",
    "cc": "CC", "ml": "CC", "시시": "CC",
    "유닛": "UNIT", "u": "UNIT", "unit": "UNIT", "units": "UNIT",
    "줄": AMBIGUOUS,
    "j": "JOULE", "joule": "JOULE",
    "라인": "LINE", "line": "LINE", "가닥": "LINE",
    "회": "SESSION", "패키지": "SESSION", "세션": "SESSION", "session": "SESSION",
}

JOULE_CONTEXT = ("온다", "onda", "줄리프팅", "하이푸")
LINE_CONTEXT = ("실", "민트", "코그", "실루엣", "캐번", "잼버", "녹는실")

_NUMBER = r"\d+(?:,\d{3})*(?:\.\d+)?(?:만|천)?"
_UNITS = "|".join(sorted(UNIT_MAP, key=len, reverse=True))

# [name] [quantity][unit] ... [price]원
PRICE_LINE_RE = re.compile(
    rf"([가-힣a-zA-Z\s]+?)\s*({_NUMBER})\s*({_UNITS})\s*[^\d]*?({_NUMBER})\s*원",
    re.I,
)
# [name] [price]원
SIMPLE_PRICE_RE = re.compile(rf"([가-힣a-zA-Z]{{2,15}})\s+({_NUMBER})\s*원", re.I)

MAN_RE = re.compile(r"^(\d+(?:\.\d+)?)만$")
CHEON_RE = re.compile(r"^(\d+(?:\.\d+)?)천$")
MAN_CHEON_RE = re.compile(r"^(\d+)만(\d+)천?$")
LEADING_INT_RE = re.compile(r"^[+-]?\d+")


@dataclass(slots=True, frozen=True)
class ParsedPrice:
    treatment_name: str
    standard_name: str | None
    raw_text: str
    total_quantity: int | None
    unit_type: str | None
    total_price: int
    unit_price: float | None
    price_band: str
    is_package: bool
    is_event_price: bool
    is_outlier: bool
    confidence_level: str
    event_context: EventContext = field(default_factory=EventContext)


@dataclass(slots=True)
class PriceParseResult:
    prices: list[ParsedPrice] = field(default_factory=list)
    unparsed: list[str] = field(default_factory=list)


def parse_korean_number(text: str) -> int | None:
    """Parse "5만", "1만5천", "350,000" style numerals; None when there is no number."""
    cleaned = re.sub(r"\s", "", text).replace(",", "")
    match = MAN_RE.match(cleaned)
    if match:
        return int(round_half_up(float(match.group(1)) * 10_000))
    match = CHEON_RE.match(cleaned)
    if match:
        return int(round_half_up(float(match.group(1)) * 1_000))
    match = MAN_CHEON_RE.match(cleaned)
    if match:
        return int(match.group(1)) * 10_000 + int(match.group(2)) * 1_000
    match = LEADING_INT_RE.match(cleaned)
    return int(match.group(0)) if match else None


def resolve_ambiguous_jul(context: str, dictionary: KeywordDictionary) -> str:
    lower = context.lower()
    if any(word in lower for word in JOULE_CONTEXT):
        return "JOULE"
    if any(word in lower for word in LINE_CONTEXT):
        return "LINE"
    # Thread lifts quote 줄 far more often than energy devices.
    return dictionary.base_unit_for(context, ("JOULE", "LINE")) or "LINE"


def resolve_unit(unit_text: str, context: str, dictionary: KeywordDictionary) -> str | None:
    mapped = UNIT_MAP.get(unit_text.strip().lower())
    if mapped == AMBIGUOUS:
        return resolve_ambiguous_jul(context, dictionary)
    return mapped


def classify_price_band(unit_price: float | None, total_price: int) -> str:
    price = unit_price if unit_price is not None else total_price
    if price >= PREMIUM_THRESHOLD:
        return "Premium"
    if price >= MID_THRESHOLD:
        return "Mid"
    return "Mass"


def is_outlier_price(total_price: int, unit_price: float | None) -> bool:
    if unit_price is not None and (unit_price < MIN_UNIT_PRICE or unit_price > MAX_UNIT_PRICE):
        return True
    return total_price > MAX_TOTAL_PRICE


def parse_prices(text: str, dictionary: KeywordDictionary, as_of: date | None = None) -> PriceParseResult:
    """Extract quantity-aware prices first, then bare name/price pairs."""
    year = (as_of or today_in_tz()).year
    result = PriceParseResult()
    seen: set[tuple[str, int]] = set()

    for match in PRICE_LINE_RE.finditer(text):
        name = match.group(1).strip()
        quantity = parse_korean_number(match.group(2))
        total_price = parse_korean_number(match.group(4))
        if not name or not total_price or total_price <= 0:
            result.unparsed.append(match.group(0))
            continue
        normalized = dictionary.normalize(name)
        key = (normalized.standard_name or name, total_price)
        if key in seen:
            continue
        seen.add(key)

        unit_price = round_half_up(total_price / quantity, 2) if quantity and quantity > 0 else None
        is_event, context = detect_event(text, match.start(), match.end(), year)
        result.prices.append(
            ParsedPrice(
                treatment_name=name,
                standard_name=normalized.standard_name,
                raw_text=match.group(0),
                total_quantity=quantity,
                unit_type=resolve_unit(match.group(3), name, dictionary),
                total_price=total_price,
                unit_price=unit_price,
                price_band=classify_price_band(unit_price, total_price),
                is_package="패키지" in name or "세트" in name,
                is_event_price=is_event,
                is_outlier=is_outlier_price(total_price, unit_price),
                confidence_level="EXACT",
                event_context=context,
            )
        )

    for match in SIMPLE_PRICE_RE.finditer(text):
        name = match.group(1).strip()
        total_price = parse_korean_number(match.group(2))
        if not total_price or total_price <= 0:
            continue
        if not 2 <= len(name) <= 15 or name.isdigit():
            continue
        normalized = dictionary.normalize(name)
        key = (normalized.standard_name or name, total_price)
        if key in seen:
            continue
        seen.add(key)

        is_event, context = detect_event(text, match.start(), match.end(), year)
        result.prices.append(
            ParsedPrice(
                treatment_name=name,
                standard_name=normalized.standard_name,
                raw_text=match.group(0),
                total_quantity=None,
                unit_type=normalized.base_unit_type or "SESSION",
                total_price=total_price,
                unit_price=None,
                price_band=classify_price_band(None, total_price),
                is_package=False,
                is_event_price=is_event,
                is_outlier=is_outlier_price(total_price, None),
                confidence_level="ESTIMATED",
                event_context=context,
            )
        )
    return result


def to_pricing_row(price: ParsedPrice, hospital_id: str, crawled_at: str) -> dict[str, Any]:
    context = price.event_context
    return {
        "hospital_id": hospital_id,
        "treatment_name": price.treatment_name,
        "standard_name": price.standard_name,
        "raw_text": price.raw_text,
        "total_quantity": price.total_quantity,
        "unit_type": price.unit_type,
        "total_price": price.total_price,
        "unit_price": price.unit_price,
        "price_band": price.price_band,
        "is_package": price.is_package,
        "is_event_price": price.is_event_price,
        "is_outlier": price.is_outlier,
        "confidence_level": price.confidence_level,
        "event_label": context.label,
        "event_start_date": format_date(context.start_date),
        "event_end_date": format_date(context.end_date),
        "event_conditions": context.conditions.to_dict(),
        "event_detected_at": crawled_at if price.is_event_price else None,
        "crawled_at": crawled_at,
    }
