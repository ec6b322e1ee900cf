"""Nearby competitor lookup by great-circle distance.

Candidates come from the same district (sigungu) in the hospital registry and
are filtered to a radius with the haversine formula, so no spatial extension
is needed in the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

import numpy as np
from sqlalchemy.exc import SQLAlchemyError

from medsignal.db.store import SignalStore
from medsignal.ingest.models import Hospital
from medsignal.utils.dates import today_in_tz

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_RADIUS_KM = 1.0
MODERN_RF_YEARS = 3


@dataclass(slots=True)
class Competitor:
    hospital_id: str
    name: str
    distance_meters: int
    has_modern_rf: bool
    rf_equipment_name: str | None
    treatment_count: int


def haversine_meters(lat: float, lon: float, lats: Any, lons: Any) -> np.ndarray:
    """Distance in meters from one point to each of ``lats``/``lons``."""
    lat1, lon1 = np.radians(lat), np.radians(lon)
    lat2, lon2 = np.radians(np.asarray(lats, dtype=float)), np.radians(np.asarray(lons, dtype=float))
    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def modern_rf(rf_equipment: list[dict[str, Any]], year: int) -> str | None:
    for item in rf_equipment:
        estimated = item.get("estimated_year")
        if estimated is not None and year - int(estimated) <= MODERN_RF_YEARS:
            return item.get("name")
    return None


def find_competitors(
    store: SignalStore,
    hospital: Hospital,
    radius_km: float = DEFAULT_RADIUS_KM,
    as_of: date | None = None,
) -> list[Competitor]:
    """Registered hospitals within ``radius_km``, nearest first."""
    if hospital.latitude is None or hospital.longitude is None or not hospital.sigungu:
        return []
    try:
        candidates = store.hospitals_in_area(hospital.sigungu, hospital.id)
    except SQLAlchemyError as exc:
        logger.warning("Competitor lookup failed for %s: %s", hospital.id, exc)
        return []
    if not candidates:
        return []

    year = (as_of or today_in_tz()).year
    distances = haversine_meters(
        hospital.latitude,
        hospital.longitude,
        [row["latitude"] for row in candidates],
        [row["longitude"] for row in candidates],
    )
    competitors = []
    for row, distance in zip(candidates, distances):
        if distance > radius_km * 1000:
            continue
        rf_name = modern_rf(row["rf_equipment"], year)
        competitors.append(
            Competitor(
                hospital_id=row["id"],
                name=row["name"],
                distance_meters=int(round(float(distance))),
                has_modern_rf=rf_name is not None,
                rf_equipment_name=rf_name,
                treatment_count=int(row["treatment_count"] or 0),
            )
        )
    competitors.sort(key=lambda c: c.distance_meters)
    return competitors
