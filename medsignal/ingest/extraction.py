"""Validation of LLM extraction payloads.

The extraction model returns loosely shaped JSON: field names drift between
prompt versions and prices arrive as ``"15만"`` as often as ``150000``. The
pydantic models below accept those variants and hand the scoring core plain
``Hospital``/``Equipment``/``Treatment`` records.
"""

from __future__ import annotations

import json
import pathlib
from datetime import date
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from medsignal.ingest.models import Equipment, ExtractedHospital, Hospital, Treatment
from medsignal.logic.prices import parse_korean_number


class ExtractionError(ValueError):
    """Raised when an extraction payload cannot be turned into typed records."""


def _coerce_price(value: Any) -> Any:
    if value is None or isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        cleaned = value.replace("원", "").replace(" ", "").strip()
        if not cleaned:
            return None
        return parse_korean_number(cleaned)
    return value


class EquipmentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, validation_alias=AliasChoices("name", "equipment_name"))
    category: str | None = Field(default=None, validation_alias=AliasChoices("category", "equipment_category"))
    brand: str | None = Field(default=None, validation_alias=AliasChoices("brand", "equipment_brand"))
    model: str | None = None
    estimated_year: int | None = None
    manufacturer: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("equipment name is blank")
        return value

    def to_record(self) -> Equipment:
        return Equipment(
            name=self.name,
            category=self.category.lower() if self.category else None,
            brand=self.brand,
            model=self.model,
            estimated_year=self.estimated_year,
            manufacturer=self.manufacturer,
        )


class TreatmentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, validation_alias=AliasChoices("name", "treatment_name"))
    category: str | None = Field(default=None, validation_alias=AliasChoices("category", "treatment_category"))
    price_min: int | None = None
    price_max: int | None = None
    price: int | None = None
    price_event: int | None = None
    is_promoted: bool = False

    @field_validator("price_min", "price_max", "price", "price_event", mode="before")
    @classmethod
    def _korean_prices(cls, value: Any) -> Any:
        return _coerce_price(value)

    @field_validator("is_promoted", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    def to_record(self) -> Treatment:
        return Treatment(
            name=self.name.strip(),
            category=self.category.lower() if self.category else None,
            price_min=self.price_min,
            price_max=self.price_max,
            price=self.price,
            price_event=self.price_event,
            is_promoted=self.is_promoted,
        )


class HospitalPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(validation_alias=AliasChoices("id", "hospital_id"))
    name: str
    opened_at: date | None = Field(default=None, validation_alias=AliasChoices("opened_at", "opened_date"))
    website: str | None = None
    email: str | None = None
    data_quality_score: int = 0
    naver_review_count: int = 0
    sigungu: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float | None = Field(default=None, ge=-180, le=180, validation_alias=AliasChoices("longitude", "lng", "lon"))


class HospitalExtraction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hospital: HospitalPayload
    equipment: list[EquipmentPayload] = Field(
        default_factory=list, validation_alias=AliasChoices("equipment", "equipments")
    )
    treatments: list[TreatmentPayload] = Field(default_factory=list)
    raw_text: str = ""
    ocr_text: str | None = None
    doctor_count: int = Field(default=0, ge=0)

    @field_validator("equipment", "treatments", mode="before")
    @classmethod
    def _null_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_records(self) -> ExtractedHospital:
        hospital = Hospital(
            id=self.hospital.id,
            name=self.hospital.name,
            opened_at=self.hospital.opened_at,
            website=self.hospital.website,
            email=self.hospital.email,
            data_quality_score=self.hospital.data_quality_score,
            doctor_count=self.doctor_count,
            naver_review_count=self.hospital.naver_review_count,
            sigungu=self.hospital.sigungu,
            latitude=self.hospital.latitude,
            longitude=self.hospital.longitude,
        )
        return ExtractedHospital(
            hospital=hospital,
            equipment=[item.to_record() for item in self.equipment],
            treatments=[item.to_record() for item in self.treatments],
            raw_text=self.raw_text,
            ocr_text=self.ocr_text,
        )


def parse_extraction(payload: dict[str, Any]) -> ExtractedHospital:
    try:
        return HospitalExtraction.model_validate(payload).to_records()
    except ValidationError as exc:
        raise ExtractionError(str(exc)) from exc


def load_extraction(path: pathlib.Path) -> ExtractedHospital:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"{path.name}: invalid JSON ({exc})") from exc
    if not isinstance(payload, dict):
        raise ExtractionError(f"{path.name}: expected an object")
    return parse_extraction(payload)
