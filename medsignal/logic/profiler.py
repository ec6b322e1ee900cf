"""Four-axis hospital profile: investment, portfolio, scale/trust, marketing."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

import numpy as np
from sqlalchemy.exc import SQLAlchemyError

from medsignal.db.store import SignalStore
from medsignal.ingest.models import Equipment, Hospital, Treatment
from medsignal.utils.dates import today_in_tz, utc_timestamp
from medsignal.utils.numbers import clamp, round_score

logger = logging.getLogger(__name__)

SCORING_VERSION = "v3.1"

PREMIUM_EQUIPMENT = ("울쎄라", "써마지", "피코슈어", "쿨스컬프팅", "인모드", "포텐자")
EQUIPMENT_CATEGORIES = ("rf", "laser", "hifu", "ipl", "booster", "body", "lifting")
PREMIUM_TREATMENT_CATEGORIES = ("lifting", "tightening", "surgery")

AXIS_WEIGHTS = {"investment": 0.35, "portfolio": 0.25, "scale_trust": 0.25, "marketing": 0.15}
RECENT_YEARS = 2


@dataclass(slots=True)
class HospitalProfile:
    hospital_id: str
    investment_score: int
    portfolio_score: int
    scale_trust_score: int
    marketing_score: int
    profile_score: int
    profile_grade: str
    investment_tendency: str
    competitor_count: int
    analyzed_at: str
    scoring_version: str = SCORING_VERSION


@dataclass(slots=True)
class ProfileResult:
    success: bool
    profile: HospitalProfile
    error: str | None = None


def _tier(value: float, tiers: Sequence[tuple[float, int]]) -> int:
    for threshold, points in tiers:
        if value >= threshold:
            return points
    return 0


def score_investment(equipment: Sequence[Equipment], opened_at: date | None, as_of: date | None = None) -> int:
    year = (as_of or today_in_tz()).year
    score = 0

    recent = sum(1 for item in equipment if item.estimated_year is not None and year - item.estimated_year <= RECENT_YEARS)
    ratio = recent / len(equipment) if equipment else 0.0
    if ratio >= 0.5:
        score += 35
    elif ratio >= 0.3:
        score += 28
    elif recent >= 2:
        score += 22
    elif recent == 1:
        score += 15

    premium = sum(1 for item in equipment if any(brand in item.name for brand in PREMIUM_EQUIPMENT))
    score += _tier(premium, ((4, 40), (3, 33), (2, 25), (1, 15)))

    if opened_at is not None:
        years_open = year - opened_at.year
        if 2 <= years_open <= 5:
            score += 25
        elif 6 <= years_open <= 10:
            score += 18
        elif years_open > 10:
            score += 12
        elif years_open >= 1:
            score += 8
    return int(clamp(score))


def score_portfolio(equipment: Sequence[Equipment], treatments: Sequence[Treatment]) -> int:
    categories = {item.category for item in equipment if item.category}
    score = round_score(len(categories) / len(EQUIPMENT_CATEGORIES) * 50)
    score += _tier(len(equipment), ((10, 20), (7, 16), (5, 12), (3, 8), (1, 4)))
    score += _tier(len(treatments), ((20, 30), (15, 25), (10, 18), (5, 12), (1, 5)))
    return int(clamp(score))


def score_scale_trust(treatments: Sequence[Treatment], doctor_count: int) -> int:
    score = _tier(doctor_count, ((5, 40), (3, 32), (2, 22), (1, 12)))

    prices = [
        value
        for value in (item.price_min if item.price_min is not None else item.price for item in treatments)
        if value is not None and value > 0
    ]
    if prices:
        score += _tier(float(np.mean(prices)), ((500_000, 35), (300_000, 28), (150_000, 20), (80_000, 12)))

    premium = sum(1 for item in treatments if item.category in PREMIUM_TREATMENT_CATEGORIES)
    ratio = premium / len(treatments) if treatments else 0.0
    if ratio >= 0.4:
        score += 25
    elif ratio >= 0.2:
        score += 18
    elif ratio > 0:
        score += 10
    return int(clamp(score))


def profile_grade(score: float) -> str:
    if score >= 80:
        return "PRIME"
    if score >= 60:
        return "HIGH"
    if score >= 40:
        return "MID"
    return "LOW"


def investment_tendency(investment_score: float) -> str:
    if investment_score >= 65:
        return "aggressive"
    if investment_score >= 35:
        return "moderate"
    return "conservative"


def build_profile(
    hospital: Hospital,
    equipment: Sequence[Equipment],
    treatments: Sequence[Treatment],
    marketing_score: int,
    competitor_count: int = 0,
    as_of: date | None = None,
) -> HospitalProfile:
    investment = score_investment(equipment, hospital.opened_at, as_of)
    portfolio = score_portfolio(equipment, treatments)
    scale_trust = score_scale_trust(treatments, hospital.doctor_count)
    marketing = int(clamp(marketing_score))
    total = round_score(
        investment * AXIS_WEIGHTS["investment"]
        + portfolio * AXIS_WEIGHTS["portfolio"]
        + scale_trust * AXIS_WEIGHTS["scale_trust"]
        + marketing * AXIS_WEIGHTS["marketing"]
    )
    return HospitalProfile(
        hospital_id=hospital.id,
        investment_score=investment,
        portfolio_score=portfolio,
        scale_trust_score=scale_trust,
        marketing_score=marketing,
        profile_score=total,
        profile_grade=profile_grade(total),
        investment_tendency=investment_tendency(investment),
        competitor_count=competitor_count,
        analyzed_at=utc_timestamp(),
    )


def profile_hospital(
    store: SignalStore,
    hospital: Hospital,
    equipment: Sequence[Equipment],
    treatments: Sequence[Treatment],
    marketing_score: int,
    competitor_count: int = 0,
    as_of: date | None = None,
) -> ProfileResult:
    profile = build_profile(hospital, equipment, treatments, marketing_score, competitor_count, as_of)
    try:
        store.upsert_profile(profile)
    except SQLAlchemyError as exc:
        logger.error("Profile upsert failed for %s: %s", hospital.id, exc)
        return ProfileResult(success=False, profile=profile, error=f"profile upsert failed: {exc}")
    logger.info("Profiled %s: %s (%s)", hospital.id, profile.profile_grade, profile.profile_score)
    return ProfileResult(success=True, profile=profile)
