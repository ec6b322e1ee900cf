"""Typed hospital records consumed by the scoring core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


@dataclass(slots=True)
class Hospital:
    id: str
    name: str
    opened_at: date | None = None
    website: str | None = None
    email: str | None = None
    data_quality_score: int = 0
    doctor_count: int = 0
    naver_review_count: int = 0
    sigungu: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(slots=True)
class Equipment:
    name: str
    category: str | None = None
    brand: str | None = None
    model: str | None = None
    estimated_year: int | None = None
    manufacturer: str | None = None


@dataclass(slots=True)
class Treatment:
    name: str
    category: str | None = None
    price_min: int | None = None
    price_max: int | None = None
    price: int | None = None
    price_event: int | None = None
    is_promoted: bool = False


@dataclass(slots=True)
class ExtractedHospital:
    hospital: Hospital
    equipment: list[Equipment] = field(default_factory=list)
    treatments: list[Treatment] = field(default_factory=list)
    raw_text: str = ""
    ocr_text: str | None = None

    @property
    def equipment_names(self) -> list[str]:
        return [item.name for item in self.equipment]

    @property
    def treatment_names(self) -> list[str]:
        return [item.name for item in self.treatments]
