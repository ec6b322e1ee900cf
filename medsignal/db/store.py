"""SQL persistence for snapshots, changes, signals and scores."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from medsignal.utils.dates import utc_timestamp
from medsignal.utils.results import best_effort

if TYPE_CHECKING:
    from medsignal.ingest.models import Equipment, Hospital
    from medsignal.logic.changes import CrawlSnapshot, EquipmentChange
    from medsignal.logic.matcher import GradeChange, ProductMatchScore
    from medsignal.logic.profiler import HospitalProfile
    from medsignal.logic.signals import SalesSignal


def _json(conn: Connection, name: str) -> str:
    return f":{name}" if conn.dialect.name == "sqlite" else f"CAST(:{name} AS JSONB)"


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class SignalStore:
    """Thin SQL layer; one ``engine.begin()`` transaction per call."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # hospital registry

    @best_effort("hospital registry upsert")
    def upsert_hospital(self, hospital: Hospital, equipment: Sequence[Equipment], treatment_count: int) -> None:
        rf_equipment = [
            {"name": item.name, "estimated_year": item.estimated_year} for item in equipment if item.category == "rf"
        ]
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    f"""
                    INSERT INTO hospitals (
                      id, name, sigungu, latitude, longitude, rf_equipment, treatment_count, updated_at
                    )
                    VALUES (
                      :id, :name, :sigungu, :latitude, :longitude, {_json(conn, "rf_equipment")},
                      :treatment_count, :updated_at
                    )
                    ON CONFLICT (id) DO UPDATE SET
                      name = EXCLUDED.name,
                      sigungu = EXCLUDED.sigungu,
                      latitude = EXCLUDED.latitude,
                      longitude = EXCLUDED.longitude,
                      rf_equipment = EXCLUDED.rf_equipment,
                      treatment_count = EXCLUDED.treatment_count,
                      updated_at = EXCLUDED.updated_at
                    """
                ),
                {
                    "id": hospital.id,
                    "name": hospital.name,
                    "sigungu": hospital.sigungu,
                    "latitude": hospital.latitude,
                    "longitude": hospital.longitude,
                    "rf_equipment": json.dumps(rf_equipment, ensure_ascii=False),
                    "treatment_count": treatment_count,
                    "updated_at": utc_timestamp(),
                },
            )

    def hospitals_in_area(self, sigungu: str, exclude_id: str) -> list[dict[str, Any]]:
        """Located hospitals in one district, other than ``exclude_id``."""
        with self.engine.begin() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT id, name, latitude, longitude, rf_equipment, treatment_count
                    FROM hospitals
                    WHERE sigungu = :sigungu AND id <> :exclude_id
                      AND latitude IS NOT NULL AND longitude IS NOT NULL
                    ORDER BY id
                    """
                ),
                {"sigungu": sigungu, "exclude_id": exclude_id},
            ).mappings().all()
        return [{**row, "rf_equipment": _load_json(row["rf_equipment"], [])} for row in rows]

    # snapshots

    def latest_snapshot(self, hospital_id: str) -> CrawlSnapshot | None:
        from medsignal.logic.changes import CrawlSnapshot

        with self.engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT id, hospital_id, crawled_at, tier, text_hash, stripped_hash, ocr_hash,
                           equipments_found, treatments_found, pricing_found,
                           event_pricing_snapshot, new_compounds, diff_summary
                    FROM crawl_snapshots
                    WHERE hospital_id = :hospital_id
                    ORDER BY crawled_at DESC, id DESC
                    LIMIT 1
                    """
                ),
                {"hospital_id": hospital_id},
            ).mappings().first()
        if row is None:
            return None
        return CrawlSnapshot(
            id=row["id"],
            hospital_id=row["hospital_id"],
            crawled_at=str(row["crawled_at"]),
            tier=row["tier"],
            text_hash=row["text_hash"],
            stripped_hash=row["stripped_hash"],
            ocr_hash=row["ocr_hash"],
            equipments_found=_load_json(row["equipments_found"], []),
            treatments_found=_load_json(row["treatments_found"], []),
            pricing_found=_load_json(row["pricing_found"], []),
            event_pricing_snapshot=_load_json(row["event_pricing_snapshot"], []),
            new_compounds=_load_json(row["new_compounds"], []),
            diff_summary=row["diff_summary"],
        )

    def insert_snapshot(self, snapshot: CrawlSnapshot) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    f"""
                    INSERT INTO crawl_snapshots (
                      hospital_id, crawled_at, tier, text_hash, stripped_hash, ocr_hash,
                      equipments_found, treatments_found, pricing_found,
                      event_pricing_snapshot, new_compounds, diff_summary
                    )
                    VALUES (
                      :hospital_id, :crawled_at, :tier, :text_hash, :stripped_hash, :ocr_hash,
                      {_json(conn, "equipments_found")}, {_json(conn, "treatments_found")},
                      {_json(conn, "pricing_found")}, {_json(conn, "event_pricing_snapshot")},
                      {_json(conn, "new_compounds")}, :diff_summary
                    )
                    RETURNING id
                    """
                ),
                {
                    "hospital_id": snapshot.hospital_id,
                    "crawled_at": snapshot.crawled_at,
                    "tier": snapshot.tier,
                    "text_hash": snapshot.text_hash,
                    "stripped_hash": snapshot.stripped_hash,
                    "ocr_hash": snapshot.ocr_hash,
                    "equipments_found": json.dumps(snapshot.equipments_found, ensure_ascii=False),
                    "treatments_found": json.dumps(snapshot.treatments_found, ensure_ascii=False),
                    "pricing_found": json.dumps(snapshot.pricing_found, ensure_ascii=False),
                    "event_pricing_snapshot": json.dumps(snapshot.event_pricing_snapshot, ensure_ascii=False),
                    "new_compounds": json.dumps(snapshot.new_compounds, ensure_ascii=False),
                    "diff_summary": snapshot.diff_summary,
                },
            )
            return int(result.scalar_one())

    # best-effort logs

    @best_effort("equipment change insert")
    def insert_equipment_changes(self, changes: Sequence[EquipmentChange]) -> list[int]:
        ids: list[int] = []
        with self.engine.begin() as conn:
            for change in changes:
                result = conn.execute(
                    text(
                        """
                        INSERT INTO equipment_changes (
                          hospital_id, change_type, item_type, item_name, standard_name,
                          detected_at, prev_snapshot_id, curr_snapshot_id
                        )
                        VALUES (
                          :hospital_id, :change_type, :item_type, :item_name, :standard_name,
                          :detected_at, :prev_snapshot_id, :curr_snapshot_id
                        )
                        RETURNING id
                        """
                    ),
                    {
                        "hospital_id": change.hospital_id,
                        "change_type": change.change_type,
                        "item_type": change.item_type,
                        "item_name": change.item_name,
                        "standard_name": change.standard_name,
                        "detected_at": change.detected_at,
                        "prev_snapshot_id": change.prev_snapshot_id,
                        "curr_snapshot_id": change.curr_snapshot_id,
                    },
                )
                ids.append(int(result.scalar_one()))
        return ids

    @best_effort("sales signal insert")
    def insert_signals(self, signals: Sequence[SalesSignal]) -> list[int]:
        ids: list[int] = []
        with self.engine.begin() as conn:
            for signal in signals:
                result = conn.execute(
                    text(
                        """
                        INSERT INTO sales_signals (
                          hospital_id, product_id, signal_type, priority, title, description,
                          related_angle, source_change_id, status, detected_at
                        )
                        VALUES (
                          :hospital_id, :product_id, :signal_type, :priority, :title, :description,
                          :related_angle, :source_change_id, :status, :detected_at
                        )
                        RETURNING id
                        """
                    ),
                    {
                        "hospital_id": signal.hospital_id,
                        "product_id": signal.product_id,
                        "signal_type": signal.signal_type,
                        "priority": signal.priority,
                        "title": signal.title,
                        "description": signal.description,
                        "related_angle": signal.related_angle,
                        "source_change_id": signal.source_change_id,
                        "status": signal.status,
                        "detected_at": signal.detected_at,
                    },
                )
                ids.append(int(result.scalar_one()))
        return ids

    @best_effort("pricing insert")
    def insert_pricing_rows(self, rows: Sequence[dict[str, Any]]) -> int:
        if not rows:
            return 0
        with self.engine.begin() as conn:
            stmt = text(
                f"""
                INSERT INTO hospital_pricing (
                  hospital_id, treatment_name, standard_name, raw_text, total_quantity, unit_type,
                  total_price, unit_price, price_band, is_package, is_event_price, is_outlier,
                  confidence_level, event_label, event_start_date, event_end_date,
                  event_conditions, event_detected_at, crawled_at
                )
                VALUES (
                  :hospital_id, :treatment_name, :standard_name, :raw_text, :total_quantity, :unit_type,
                  :total_price, :unit_price, :price_band, :is_package, :is_event_price, :is_outlier,
                  :confidence_level, :event_label, :event_start_date, :event_end_date,
                  {_json(conn, "event_conditions")}, :event_detected_at, :crawled_at
                )
                """
            )
            conn.execute(
                stmt,
                [{**row, "event_conditions": json.dumps(row["event_conditions"], ensure_ascii=False)} for row in rows],
            )
        return len(rows)

    @best_effort("grade history insert")
    def insert_grade_change(self, change: GradeChange) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    INSERT INTO scoring_change_history (
                      hospital_id, product_id, old_grade, new_grade, old_score, new_score,
                      change_reason, changed_at
                    )
                    VALUES (
                      :hospital_id, :product_id, :old_grade, :new_grade, :old_score, :new_score,
                      :change_reason, :changed_at
                    )
                    RETURNING id
                    """
                ),
                {
                    "hospital_id": change.hospital_id,
                    "product_id": change.product_id,
                    "old_grade": change.old_grade,
                    "new_grade": change.new_grade,
                    "old_score": change.old_score,
                    "new_score": change.new_score,
                    "change_reason": change.change_reason,
                    "changed_at": change.changed_at,
                },
            )
            return int(result.scalar_one())

    # upserts

    def upsert_profile(self, profile: HospitalProfile) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO hospital_profiles (
                      hospital_id, investment_score, portfolio_score, scale_trust_score,
                      marketing_score, profile_score, profile_grade, investment_tendency,
                      competitor_count, scoring_version, analyzed_at
                    )
                    VALUES (
                      :hospital_id, :investment_score, :portfolio_score, :scale_trust_score,
                      :marketing_score, :profile_score, :profile_grade, :investment_tendency,
                      :competitor_count, :scoring_version, :analyzed_at
                    )
                    ON CONFLICT (hospital_id) DO UPDATE SET
                      investment_score = EXCLUDED.investment_score,
                      portfolio_score = EXCLUDED.portfolio_score,
                      scale_trust_score = EXCLUDED.scale_trust_score,
                      marketing_score = EXCLUDED.marketing_score,
                      profile_score = EXCLUDED.profile_score,
                      profile_grade = EXCLUDED.profile_grade,
                      investment_tendency = EXCLUDED.investment_tendency,
                      competitor_count = EXCLUDED.competitor_count,
                      scoring_version = EXCLUDED.scoring_version,
                      analyzed_at = EXCLUDED.analyzed_at
                    """
                ),
                {
                    "hospital_id": profile.hospital_id,
                    "investment_score": profile.investment_score,
                    "portfolio_score": profile.portfolio_score,
                    "scale_trust_score": profile.scale_trust_score,
                    "marketing_score": profile.marketing_score,
                    "profile_score": profile.profile_score,
                    "profile_grade": profile.profile_grade,
                    "investment_tendency": profile.investment_tendency,
                    "competitor_count": profile.competitor_count,
                    "scoring_version": profile.scoring_version,
                    "analyzed_at": profile.analyzed_at,
                },
            )

    def match_grade(self, hospital_id: str, product_id: str) -> tuple[str | None, int | None]:
        """Currently stored (grade, total_score) for the pair, or (None, None)."""
        with self.engine.begin() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT grade, total_score FROM product_match_scores
                    WHERE hospital_id = :hospital_id AND product_id = :product_id
                    """
                ),
                {"hospital_id": hospital_id, "product_id": product_id},
            ).first()
        if row is None:
            return None, None
        return row.grade, row.total_score

    def upsert_match_score(self, score: ProductMatchScore) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    f"""
                    INSERT INTO product_match_scores (
                      hospital_id, product_id, total_score, grade, sales_angle_scores,
                      top_pitch_points, need_score, fit_score, timing_score,
                      scoring_version, scored_at
                    )
                    VALUES (
                      :hospital_id, :product_id, :total_score, :grade,
                      {_json(conn, "sales_angle_scores")}, {_json(conn, "top_pitch_points")},
                      :need_score, :fit_score, :timing_score, :scoring_version, :scored_at
                    )
                    ON CONFLICT (hospital_id, product_id) DO UPDATE SET
                      total_score = EXCLUDED.total_score,
                      grade = EXCLUDED.grade,
                      sales_angle_scores = EXCLUDED.sales_angle_scores,
                      top_pitch_points = EXCLUDED.top_pitch_points,
                      need_score = EXCLUDED.need_score,
                      fit_score = EXCLUDED.fit_score,
                      timing_score = EXCLUDED.timing_score,
                      scoring_version = EXCLUDED.scoring_version,
                      scored_at = EXCLUDED.scored_at
                    """
                ),
                {
                    "hospital_id": score.hospital_id,
                    "product_id": score.product_id,
                    "total_score": score.total_score,
                    "grade": score.grade,
                    "sales_angle_scores": json.dumps(score.sales_angle_scores, ensure_ascii=False),
                    "top_pitch_points": json.dumps(score.top_pitch_points, ensure_ascii=False),
                    "need_score": score.need_score,
                    "fit_score": score.fit_score,
                    "timing_score": score.timing_score,
                    "scoring_version": score.scoring_version,
                    "scored_at": score.scored_at,
                },
            )
