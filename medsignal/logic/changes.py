"""Snapshot change detection.

Two hashes are kept per crawl. ``text_hash`` covers the page verbatim and
feeds the audit trail; ``stripped_hash`` covers the page with dates and
promotional phrasing removed and is the only one that gates re-analysis, so
a banner going from "2월 한정" to "3월 한정" does not re-run OCR.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from medsignal.db.store import SignalStore
from medsignal.logic.normalizer import KeywordDictionary
from medsignal.logic.prices import ParsedPrice
from medsignal.utils.dates import format_date, utc_timestamp

logger = logging.getLogger(__name__)

FIRST_CRAWL_SUMMARY = "최초 크롤링"
NO_TEXT_CHANGE_SUMMARY = "텍스트 변동 없음"
NO_DIFF_SUMMARY = "변동 없음"

# Order matters: full dates go before bare months, ranges before bare 까지.
VOLATILE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\d{4}년\s*"), ""),
    (re.compile(r"\d{4}[./-]\d{1,2}[./-]\d{1,2}"), ""),
    (re.compile(r"\d{1,2}월\s*\d{1,2}일"), ""),
    (re.compile(r"\d{1,2}월"), ""),
    # decimals such as 1.5만 are prices, not dates
    (re.compile(r"\d{1,2}[./]\d{1,2}(?![\d만천])"), ""),
    (re.compile(r"[~\-–]\s*\d{1,2}[./]\d{1,2}\s*까지"), ""),
    (re.compile(r"[~\-–]\s*\d{1,2}\s*까지"), ""),
    (re.compile(r"[~\-–]\s*까지"), ""),
    (re.compile(r"까지"), ""),
    (re.compile(r"이벤트|한정|특가|프로모션|할인가|세일|체험가"), ""),
    (re.compile(r"선착순\s*\d+\s*명"), ""),
    (re.compile(r"\d+\s*명\s*한정"), ""),
    (re.compile(r"오픈\s*기념|개원\s*기념|\d+주년\s*기념"), ""),
    (re.compile(r"얼리버드|런칭|파격|초특가"), ""),
    (re.compile(r"\d+\s*%\s*(?:할인|OFF|off|세일)", re.I), ""),
    (re.compile(r"마감\s*임박|오늘만|금일\s*한정|기간\s*한정"), ""),
    (re.compile(r"\s+"), " "),
]


@dataclass(slots=True)
class CrawlSnapshot:
    hospital_id: str
    crawled_at: str
    text_hash: str
    stripped_hash: str
    ocr_hash: str | None = None
    tier: str | None = None
    equipments_found: list[str] = field(default_factory=list)
    treatments_found: list[str] = field(default_factory=list)
    pricing_found: list[dict[str, Any]] = field(default_factory=list)
    event_pricing_snapshot: list[dict[str, Any]] = field(default_factory=list)
    new_compounds: list[str] = field(default_factory=list)
    diff_summary: str | None = None
    id: int | None = None


@dataclass(slots=True)
class EquipmentChange:
    hospital_id: str
    change_type: str
    item_type: str
    item_name: str
    standard_name: str
    detected_at: str
    prev_snapshot_id: int | None = None
    curr_snapshot_id: int | None = None
    id: int | None = None

    @property
    def trigger(self) -> str:
        return f"{self.item_type}_{self.change_type}".lower()


@dataclass(slots=True)
class ChangeDetectionResult:
    has_text_changed: bool
    has_full_text_changed: bool
    has_ocr_changed: bool
    is_first_crawl: bool
    should_run_ocr: bool
    diff_summary: str
    text_hash: str
    stripped_hash: str
    ocr_hash: str | None = None
    previous_snapshot: CrawlSnapshot | None = None


def compute_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def strip_volatile_content(value: str) -> str:
    for pattern, replacement in VOLATILE_PATTERNS:
        value = pattern.sub(replacement, value)
    return value.strip()


def _diff(previous: Iterable[str], current: Iterable[str]) -> tuple[list[str], list[str]]:
    previous = list(previous)
    current = list(current)
    prev_keys = {item.lower() for item in previous}
    curr_keys = {item.lower() for item in current}
    added = [item for item in current if item.lower() not in prev_keys]
    removed = [item for item in previous if item.lower() not in curr_keys]
    return added, removed


def build_diff_summary(
    prev_equipment: Iterable[str],
    curr_equipment: Iterable[str],
    prev_treatments: Iterable[str],
    curr_treatments: Iterable[str],
) -> str:
    parts: list[str] = []
    added, removed = _diff(prev_equipment, curr_equipment)
    if added:
        parts.append(f"장비 추가: {', '.join(added)}")
    if removed:
        parts.append(f"장비 제거: {', '.join(removed)}")
    added, removed = _diff(prev_treatments, curr_treatments)
    if added:
        parts.append(f"시술 추가: {', '.join(added)}")
    if removed:
        parts.append(f"시술 제거: {', '.join(removed)}")
    return " | ".join(parts) if parts else NO_DIFF_SUMMARY


def detect_changes(
    store: SignalStore,
    hospital_id: str,
    current_text: str,
    current_ocr_text: str | None = None,
    current_equipment: Sequence[str] = (),
    current_treatments: Sequence[str] = (),
) -> ChangeDetectionResult:
    text_hash = compute_hash(current_text)
    stripped_hash = compute_hash(strip_volatile_content(current_text))
    ocr_hash = compute_hash(current_ocr_text) if current_ocr_text else None

    previous = store.latest_snapshot(hospital_id)
    if previous is None:
        logger.info("First crawl for hospital %s", hospital_id)
        return ChangeDetectionResult(
            has_text_changed=True,
            has_full_text_changed=True,
            has_ocr_changed=True,
            is_first_crawl=True,
            should_run_ocr=True,
            diff_summary=FIRST_CRAWL_SUMMARY,
            text_hash=text_hash,
            stripped_hash=stripped_hash,
            ocr_hash=ocr_hash,
        )

    has_text_changed = previous.stripped_hash != stripped_hash
    if has_text_changed:
        summary = build_diff_summary(
            previous.equipments_found, current_equipment, previous.treatments_found, current_treatments
        )
    else:
        summary = NO_TEXT_CHANGE_SUMMARY
    return ChangeDetectionResult(
        has_text_changed=has_text_changed,
        has_full_text_changed=previous.text_hash != text_hash,
        has_ocr_changed=ocr_hash is not None and previous.ocr_hash != ocr_hash,
        is_first_crawl=False,
        should_run_ocr=has_text_changed,
        diff_summary=summary,
        text_hash=text_hash,
        stripped_hash=stripped_hash,
        ocr_hash=ocr_hash,
        previous_snapshot=previous,
    )


def detect_equipment_changes(
    store: SignalStore,
    hospital_id: str,
    previous: CrawlSnapshot | None,
    equipment: Sequence[str],
    treatments: Sequence[str],
    current_snapshot_id: int | None = None,
    dictionary: KeywordDictionary | None = None,
) -> list[EquipmentChange]:
    """One change row per added or removed item; ids are set when the insert lands."""
    detected_at = utc_timestamp()
    prev_id = previous.id if previous else None
    prev_equipment = previous.equipments_found if previous else []
    prev_treatments = previous.treatments_found if previous else []

    def standard(name: str) -> str:
        if dictionary is None:
            return name
        return dictionary.normalize(name).standard_name or name

    changes: list[EquipmentChange] = []
    for item_type, prev_items, curr_items in (
        ("EQUIPMENT", prev_equipment, equipment),
        ("TREATMENT", prev_treatments, treatments),
    ):
        added, removed = _diff(prev_items, curr_items)
        for change_type, names in (("ADDED", added), ("REMOVED", removed)):
            changes.extend(
                EquipmentChange(
                    hospital_id=hospital_id,
                    change_type=change_type,
                    item_type=item_type,
                    item_name=name,
                    standard_name=standard(name),
                    detected_at=detected_at,
                    prev_snapshot_id=prev_id,
                    curr_snapshot_id=current_snapshot_id,
                )
                for name in names
            )

    if not changes:
        return changes
    written = store.insert_equipment_changes(changes)
    if written.ok:
        for change, change_id in zip(changes, written.value):
            change.id = change_id
    logger.info("Hospital %s: %s equipment/treatment changes", hospital_id, len(changes))
    return changes


def pricing_summary(prices: Iterable[ParsedPrice]) -> list[dict[str, Any]]:
    return [
        {"name": price.treatment_name, "price": price.total_price, "unit_price": price.unit_price}
        for price in prices
    ]


def event_pricing_snapshot(prices: Iterable[ParsedPrice]) -> list[dict[str, Any]]:
    """Event prices with their promotional context, kept for the time series."""
    return [
        {
            "standard_name": price.standard_name,
            "treatment_name": price.treatment_name,
            "total_price": price.total_price,
            "unit_price": price.unit_price,
            "event_label": price.event_context.label,
            "event_conditions": price.event_context.conditions.to_dict(),
            "event_start_date": format_date(price.event_context.start_date),
            "event_end_date": format_date(price.event_context.end_date),
            "raw_text": price.raw_text,
            "is_event_price": True,
        }
        for price in prices
        if price.is_event_price
    ]


def save_snapshot(
    store: SignalStore,
    hospital_id: str,
    detection: ChangeDetectionResult,
    equipment: Sequence[str],
    treatments: Sequence[str],
    prices: Sequence[ParsedPrice] = (),
    new_compounds: Sequence[str] = (),
    tier: str | None = None,
) -> CrawlSnapshot:
    """Persist the crawl. Storage errors propagate."""
    snapshot = CrawlSnapshot(
        hospital_id=hospital_id,
        crawled_at=utc_timestamp(),
        tier=tier,
        text_hash=detection.text_hash,
        stripped_hash=detection.stripped_hash,
        ocr_hash=detection.ocr_hash,
        equipments_found=list(equipment),
        treatments_found=list(treatments),
        pricing_found=pricing_summary(prices),
        event_pricing_snapshot=event_pricing_snapshot(prices),
        new_compounds=list(new_compounds),
        diff_summary=detection.diff_summary,
    )
    snapshot.id = store.insert_snapshot(snapshot)
    return snapshot
