"""Per-product match scoring against a sales playbook.

Angle criteria score each sales angle by keyword coverage of the hospital's
equipment and treatment menu, then combine angles by normalized weight.
Legacy criteria score need/fit/timing rule lists instead. Either way the
stored grade is compared with the new one and a transition is written to
``scoring_change_history`` only when it moved.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from medsignal.db.store import SignalStore
from medsignal.ingest.criteria import AngleCriteria, LegacyCriteria, ProductConfig, SalesAngle, ScoringRule
from medsignal.ingest.models import Equipment, Hospital, Treatment
from medsignal.logic.normalizer import KeywordDictionary
from medsignal.logic.profiler import HospitalProfile
from medsignal.logic.signals import compact, keyword_matches
from medsignal.utils.dates import today_in_tz, utc_timestamp
from medsignal.utils.numbers import round_half_up, round_score

logger = logging.getLogger(__name__)

ANGLE_VERSION = "v3.1"
LEGACY_VERSION = "v3.0-legacy"
LEGACY_WEIGHTS = {"need": 0.40, "fit": 0.35, "timing": 0.25}
MIN_DATA_QUALITY = 50

ANTI_AGING_CATEGORIES = ("lifting", "tightening", "toning", "filler", "botox")
LIFTING_CATEGORIES = ("lifting", "tightening")


@dataclass(slots=True)
class AngleScore:
    angle_id: str
    angle_name: str
    score: int
    weight: float
    weighted_score: float
    matched_keywords: list[str]
    matched_points: int
    total_points: int


@dataclass(slots=True)
class AngleEvaluation:
    total_score: int
    angle_scores: dict[str, int]
    details: list[AngleScore]
    top_pitch_points: list[str]


@dataclass(slots=True)
class ProductMatchScore:
    hospital_id: str
    product_id: str
    total_score: int
    grade: str
    scoring_version: str
    scored_at: str
    sales_angle_scores: dict[str, int] = field(default_factory=dict)
    top_pitch_points: list[str] = field(default_factory=list)
    need_score: int = 0
    fit_score: int = 0
    timing_score: int = 0


@dataclass(slots=True)
class GradeChange:
    hospital_id: str
    product_id: str
    old_grade: str | None
    new_grade: str
    old_score: int | None
    new_score: int
    change_reason: str
    changed_at: str


@dataclass(slots=True)
class MatchResult:
    success: bool
    match_score: ProductMatchScore | None = None
    grade_change: GradeChange | None = None
    error: str | None = None


# sales angles


def score_angle(angle: SalesAngle, equipment: Sequence[Equipment], treatments: Sequence[Treatment]) -> AngleScore:
    pool = [item.name for item in equipment]
    pool += [item.name for item in treatments]
    pool += [item.category for item in treatments if item.category is not None]
    combined = compact(" ".join(pool))
    pool = [compact(value) for value in pool]

    matched: list[str] = []
    matched_points = 0
    total_points = 0
    for keyword in angle.keywords:
        total_points += keyword.point
        term = compact(keyword.term)
        if any(term in value for value in pool) or term in combined:
            matched.append(keyword.term)
            matched_points += keyword.point

    score = round_score(matched_points / total_points * 100) if total_points else 0
    return AngleScore(
        angle_id=angle.id,
        angle_name=angle.display_name,
        score=score,
        weight=angle.weight,
        weighted_score=0.0,
        matched_keywords=matched,
        matched_points=matched_points,
        total_points=total_points,
    )


def evaluate_sales_angles(
    criteria: AngleCriteria, equipment: Sequence[Equipment], treatments: Sequence[Treatment]
) -> AngleEvaluation:
    total_weight = criteria.total_weight
    details: list[AngleScore] = []
    weighted_sum = 0.0
    for angle in criteria.sales_angles:
        detail = score_angle(angle, equipment, treatments)
        weighted = detail.score * (angle.weight / total_weight)
        detail.weighted_score = round_half_up(weighted, 2)
        weighted_sum += weighted
        details.append(detail)

    ranked = sorted((d for d in details if d.score > 0), key=lambda d: (-d.score, -d.weight))
    return AngleEvaluation(
        total_score=round_score(weighted_sum),
        angle_scores={d.angle_id: d.score for d in details},
        details=details,
        top_pitch_points=[d.angle_id for d in ranked[: criteria.max_pitch_points]],
    )


def should_exclude(conditions: Sequence[str], equipment: Sequence[Equipment], dictionary: KeywordDictionary) -> str | None:
    """Return the first exclude condition the equipment list satisfies."""
    for condition in conditions:
        terms = [condition.removeprefix("has_"), *dictionary.exclusion_terms(condition)]
        for item in equipment:
            if any(keyword_matches(term, item.name) for term in terms):
                return condition
    return None


def match_grade(total_score: float) -> str:
    if total_score >= 75:
        return "S"
    if total_score >= 55:
        return "A"
    if total_score >= 35:
        return "B"
    return "C"


def legacy_match_grade(total_score: float, data_quality: int) -> str:
    if data_quality < MIN_DATA_QUALITY:
        return "EXCLUDE"
    return match_grade(total_score)


def angle_change_reason(evaluation: AngleEvaluation) -> str:
    parts = [
        f"{d.angle_id}: {d.matched_points}/{d.total_points}pt [{','.join(d.matched_keywords)}]"
        for d in evaluation.details
        if d.matched_points > 0 or d.total_points > 0
    ]
    return f"{ANGLE_VERSION} 매칭: total={evaluation.total_score}, {'; '.join(parts)}"


# legacy need/fit/timing


@dataclass(slots=True)
class LegacyContext:
    hospital: Hospital
    equipment: Sequence[Equipment]
    treatments: Sequence[Treatment]
    product: ProductConfig
    profile: HospitalProfile | None = None
    competitor_count: int = 0
    as_of: date | None = None

    @property
    def year(self) -> int:
        return (self.as_of or today_in_tz()).year

    @property
    def rf(self) -> list[Equipment]:
        return [item for item in self.equipment if item.category == "rf"]

    def is_recent(self, item: Equipment) -> bool:
        return item.estimated_year is not None and self.year - item.estimated_year <= 2

    def oldest_rf_age(self) -> int | None:
        years = [item.estimated_year for item in self.rf if item.estimated_year is not None]
        return self.year - min(years) if years else None

    def owns_any(self, keywords: Sequence[str]) -> bool:
        return any(keyword in item.name for item in self.equipment for keyword in keywords)

    def average_price(self) -> float | None:
        prices = [
            value
            for value in (item.price_min if item.price_min is not None else item.price for item in self.treatments)
            if value is not None and value > 0
        ]
        return sum(prices) / len(prices) if prices else None


def _rf_older_than(years: int) -> Callable[[LegacyContext], bool]:
    def check(ctx: LegacyContext) -> bool:
        age = ctx.oldest_rf_age()
        return age is not None and age >= years

    return check


def _anti_aging_ratio(ctx: LegacyContext) -> float:
    hits = sum(1 for item in ctx.treatments if item.category in ANTI_AGING_CATEGORIES)
    return hits / max(len(ctx.treatments), 1)


def _opened_2_5yr(ctx: LegacyContext) -> bool:
    if ctx.hospital.opened_at is None:
        return False
    return 2 <= ctx.year - ctx.hospital.opened_at.year <= 5


def _high_price(ctx: LegacyContext) -> bool:
    average = ctx.average_price()
    return average is not None and average >= 300_000


def _profile_grade_in(*grades: str) -> Callable[[LegacyContext], bool]:
    return lambda ctx: ctx.profile is not None and ctx.profile.profile_grade in grades


LEGACY_CONDITIONS: dict[str, Callable[[LegacyContext], bool]] = {
    "no_rf": lambda ctx: not ctx.rf,
    "has_rf": lambda ctx: bool(ctx.rf),
    "old_rf_3yr": _rf_older_than(3),
    "old_rf_5yr": _rf_older_than(5),
    "has_ultrasound": lambda ctx: any(item.category in ("hifu", "ultrasound") for item in ctx.equipment),
    "has_laser": lambda ctx: any(item.category == "laser" for item in ctx.equipment),
    "equipment_count_5plus": lambda ctx: len(ctx.equipment) >= 5,
    "has_torr_rf": lambda ctx: any("torr" in item.name.lower() for item in ctx.equipment),
    "has_any_rf_needle": lambda ctx: any("니들" in item.name or "needle" in item.name for item in ctx.treatments),
    "lifting_treatments": lambda ctx: any(item.category in LIFTING_CATEGORIES for item in ctx.treatments),
    "high_antiaging_ratio": lambda ctx: _anti_aging_ratio(ctx) >= 0.5,
    "high_price_treatments": _high_price,
    "opened_2_5yr": _opened_2_5yr,
    "recent_investment": lambda ctx: any(ctx.is_recent(item) for item in ctx.equipment),
    "no_recent_rf_purchase": lambda ctx: not any(ctx.is_recent(item) for item in ctx.rf),
    "competitive_market": lambda ctx: ctx.competitor_count >= 10,
    "prime_profile": _profile_grade_in("PRIME"),
    "high_profile": _profile_grade_in("PRIME", "HIGH"),
    "has_competing_equipment": lambda ctx: ctx.owns_any(ctx.product.competing_keywords),
    "has_synergy_equipment": lambda ctx: ctx.owns_any(ctx.product.synergy_keywords),
    "has_required_equipment": lambda ctx: ctx.owns_any(ctx.product.requires_equipment_keywords),
    "regular_reorder": lambda ctx: False,
}


def evaluate_condition(condition: str, ctx: LegacyContext) -> bool:
    check = LEGACY_CONDITIONS.get(condition)
    if check is None:
        logger.debug("Unknown legacy condition %s", condition)
        return False
    return check(ctx)


def evaluate_rules(rules: Sequence[ScoringRule], ctx: LegacyContext) -> int:
    possible = sum(rule.score for rule in rules)
    if not possible:
        return 0
    earned = sum(rule.score for rule in rules if evaluate_condition(rule.condition, ctx))
    return min(round_score(earned / possible * 100), 100)


def evaluate_legacy(criteria: LegacyCriteria, ctx: LegacyContext) -> tuple[int, int, int, int]:
    need = evaluate_rules(criteria.need_rules, ctx)
    fit = evaluate_rules(criteria.fit_rules, ctx)
    timing = evaluate_rules(criteria.timing_rules, ctx)
    total = round_score(
        need * LEGACY_WEIGHTS["need"] + fit * LEGACY_WEIGHTS["fit"] + timing * LEGACY_WEIGHTS["timing"]
    )
    return need, fit, timing, total


# persistence


def _persist(store: SignalStore, score: ProductMatchScore, reason: str) -> MatchResult:
    try:
        old_grade, old_score = store.match_grade(score.hospital_id, score.product_id)
        store.upsert_match_score(score)
    except SQLAlchemyError as exc:
        logger.error("Match upsert failed for %s/%s: %s", score.hospital_id, score.product_id, exc)
        return MatchResult(success=False, match_score=score, error=f"match upsert failed: {exc}")

    if old_grade == score.grade:
        return MatchResult(success=True, match_score=score)
    change = GradeChange(
        hospital_id=score.hospital_id,
        product_id=score.product_id,
        old_grade=old_grade,
        new_grade=score.grade,
        old_score=old_score,
        new_score=score.total_score,
        change_reason=reason,
        changed_at=score.scored_at,
    )
    store.insert_grade_change(change)
    logger.info("Grade %s -> %s for %s/%s", old_grade, score.grade, score.hospital_id, score.product_id)
    return MatchResult(success=True, match_score=score, grade_change=change)


def match_hospital_product(
    store: SignalStore,
    hospital: Hospital,
    product: ProductConfig,
    profile: HospitalProfile | None,
    equipment: Sequence[Equipment],
    treatments: Sequence[Treatment],
    dictionary: KeywordDictionary,
    competitor_count: int = 0,
    as_of: date | None = None,
) -> MatchResult:
    criteria = product.scoring_criteria
    if isinstance(criteria, AngleCriteria):
        excluded_by = should_exclude(criteria.exclude_if, equipment, dictionary)
        if excluded_by is not None:
            logger.info("Excluded %s from %s (%s)", hospital.id, product.id, excluded_by)
            return MatchResult(success=False, error=f"excluded: {excluded_by}")
        evaluation = evaluate_sales_angles(criteria, equipment, treatments)
        score = ProductMatchScore(
            hospital_id=hospital.id,
            product_id=product.id,
            total_score=evaluation.total_score,
            grade=match_grade(evaluation.total_score),
            scoring_version=ANGLE_VERSION,
            scored_at=utc_timestamp(),
            sales_angle_scores=evaluation.angle_scores,
            top_pitch_points=evaluation.top_pitch_points,
        )
        return _persist(store, score, angle_change_reason(evaluation))

    ctx = LegacyContext(
        hospital=hospital,
        equipment=equipment,
        treatments=treatments,
        product=product,
        profile=profile,
        competitor_count=competitor_count,
        as_of=as_of,
    )
    need, fit, timing, total = evaluate_legacy(criteria, ctx)
    score = ProductMatchScore(
        hospital_id=hospital.id,
        product_id=product.id,
        total_score=total,
        grade=legacy_match_grade(total, hospital.data_quality_score),
        scoring_version=LEGACY_VERSION,
        scored_at=utc_timestamp(),
        need_score=need,
        fit_score=fit,
        timing_score=timing,
    )
    return _persist(store, score, f"{LEGACY_VERSION}: need={need}, fit={fit}, timing={timing}")
