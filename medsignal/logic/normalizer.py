"""Keyword dictionary: standard names, aliases, compounds and OCR fixes.

A ``KeywordDictionary`` is built once per process from ``dictionary.yml`` and
passed into the price extractor, the change detector and the matcher.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９", "0123456789")

# Clinic shorthand usually glues the first syllable of two treatment names.
COMPOUND_PREFIX_RE = re.compile(r"^(울|써|인|슈|텐|올|포|쥬|리|실|보)(써|쥬|리|슈|모|포|텐|올|인)")


@dataclass(slots=True, frozen=True)
class KeywordEntry:
    standard_name: str
    category: str
    base_unit_type: str
    aliases: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class CompoundWord:
    compound_name: str
    decomposed_names: tuple[str, ...]
    scoring_note: str = ""


@dataclass(slots=True)
class NormalizedItem:
    original: str
    standard_name: str | None = None
    category: str | None = None
    base_unit_type: str | None = None
    matched_by: str | None = None


@dataclass(slots=True)
class NormalizerResult:
    normalized: list[NormalizedItem]
    unmatched: list[str]
    match_rate: float


@dataclass(slots=True)
class Decomposition:
    original: str
    decomposed: tuple[str, ...] | None = None
    source: str | None = None
    scoring_note: str | None = None


@dataclass(slots=True)
class KeywordDictionary:
    entries: list[KeywordEntry]
    compounds: list[CompoundWord] = field(default_factory=list)
    ocr_corrections: dict[str, str] = field(default_factory=dict)
    exclusions: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, data: Mapping[str, Any]) -> "KeywordDictionary":
        entries = [
            KeywordEntry(
                standard_name=item["standard_name"],
                category=item["category"],
                base_unit_type=item["base_unit_type"],
                aliases=tuple(str(alias) for alias in item.get("aliases") or ()),
            )
            for item in data.get("keywords") or []
        ]
        compounds = [
            CompoundWord(
                compound_name=item["compound_name"],
                decomposed_names=tuple(item["decomposed_names"]),
                scoring_note=item.get("scoring_note") or "",
            )
            for item in data.get("compounds") or []
        ]
        exclusions = {key: tuple(str(term) for term in terms) for key, terms in (data.get("exclusion_terms") or {}).items()}
        return cls(
            entries=entries,
            compounds=compounds,
            ocr_corrections=dict(data.get("ocr_corrections") or {}),
            exclusions=exclusions,
        )

    def correct_ocr_errors(self, text: str) -> str:
        result = text.translate(FULLWIDTH_DIGITS)
        for wrong, right in self.ocr_corrections.items():
            if wrong != right:
                result = result.replace(wrong, right)
        return result

    def normalize(self, text: str) -> NormalizedItem:
        lower = self.correct_ocr_errors(text.strip()).lower()
        for entry in self.entries:
            if entry.standard_name.lower() in lower:
                return _normalized(text, entry, "standard")
        for entry in self.entries:
            for alias in sorted(entry.aliases, key=len, reverse=True):
                if alias.lower() in lower:
                    return _normalized(text, entry, "alias")
        return NormalizedItem(original=text)

    def normalize_all(self, items: Iterable[str]) -> NormalizerResult:
        normalized: list[NormalizedItem] = []
        unmatched: list[str] = []
        for item in items:
            if not item.strip():
                continue
            result = self.normalize(item)
            normalized.append(result)
            if result.standard_name is None:
                unmatched.append(item)
        total = len(normalized)
        match_rate = (total - len(unmatched)) / total if total else 0.0
        return NormalizerResult(normalized=normalized, unmatched=unmatched, match_rate=match_rate)

    def base_unit_for(self, text: str, units: Iterable[str] | None = None) -> str | None:
        """Base unit of the first entry named in ``text``, optionally limited to ``units``."""
        allowed = set(units) if units is not None else None
        lower = text.lower()
        for entry in self.entries:
            if allowed is not None and entry.base_unit_type not in allowed:
                continue
            terms = (entry.standard_name, *entry.aliases)
            if any(term.lower() in lower for term in terms):
                return entry.base_unit_type
        return None

    def decompose_compound(self, text: str) -> Decomposition:
        trimmed = text.strip()
        lower = trimmed.lower()
        for compound in self.compounds:
            if compound.compound_name.lower() in lower:
                return Decomposition(
                    original=trimmed,
                    decomposed=compound.decomposed_names,
                    source="dictionary",
                    scoring_note=compound.scoring_note,
                )
        if COMPOUND_PREFIX_RE.match(trimmed):
            return Decomposition(original=trimmed, source="candidate")
        return Decomposition(original=trimmed)

    def compound_candidates(self, items: Iterable[str]) -> list[str]:
        """Names that look like unregistered compounds, for later review."""
        return [item for item in items if item.strip() and self.decompose_compound(item).source == "candidate"]

    def exclusion_terms(self, condition: str) -> tuple[str, ...]:
        return self.exclusions.get(condition, ())


def _normalized(text: str, entry: KeywordEntry, matched_by: str) -> NormalizedItem:
    return NormalizedItem(
        original=text,
        standard_name=entry.standard_name,
        category=entry.category,
        base_unit_type=entry.base_unit_type,
        matched_by=matched_by,
    )
