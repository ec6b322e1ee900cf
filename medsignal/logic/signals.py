"""Sales signal classification from equipment/treatment changes."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from medsignal.db.store import SignalStore
from medsignal.ingest.criteria import SalesSignalRule
from medsignal.logic.changes import EquipmentChange
from medsignal.utils.dates import utc_timestamp

logger = logging.getLogger(__name__)

WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class SalesSignal:
    hospital_id: str
    product_id: str
    signal_type: str
    priority: str
    title: str
    description: str
    related_angle: str
    source_change_id: int | None
    detected_at: str
    status: str = "NEW"
    id: int | None = None


def compact(value: str) -> str:
    """Lowercase with all whitespace removed, the form keywords are compared in."""
    return WHITESPACE_RE.sub("", value).lower()


def keyword_matches(keyword: str, value: str) -> bool:
    return compact(keyword) in compact(value)


def rule_matches(rule: SalesSignalRule, change: EquipmentChange) -> bool:
    if rule.trigger != change.trigger:
        return False
    return any(
        keyword_matches(keyword, change.standard_name) or keyword_matches(keyword, change.item_name)
        for keyword in rule.match_keywords
    )


def classify_signals(
    store: SignalStore,
    changes: Sequence[EquipmentChange],
    product_id: str,
    rules: Sequence[SalesSignalRule],
) -> list[SalesSignal]:
    """Emit one signal per (change, matching rule); the list is returned even if the insert fails."""
    if not changes or not rules:
        return []
    detected_at = utc_timestamp()
    signals: list[SalesSignal] = []
    for change in changes:
        for rule in rules:
            if not rule_matches(rule, change):
                continue
            signals.append(
                SalesSignal(
                    hospital_id=change.hospital_id,
                    product_id=product_id,
                    signal_type=change.trigger.upper(),
                    priority=rule.priority,
                    title=rule.render_title(change.item_name),
                    description=rule.render_description(change.item_name),
                    related_angle=rule.related_angle,
                    source_change_id=change.id,
                    detected_at=detected_at,
                )
            )
    if not signals:
        return signals
    written = store.insert_signals(signals)
    if written.ok:
        for signal, signal_id in zip(signals, written.value):
            signal.id = signal_id
    logger.info("Product %s: %s signals from %s changes", product_id, len(signals), len(changes))
    return signals
