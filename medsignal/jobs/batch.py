"""Batch evaluation of extracted hospitals."""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
from dataclasses import dataclass, field
from datetime import date

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from medsignal.db.session import create_engine_from_env
from medsignal.db.store import SignalStore
from medsignal.ingest import load_dictionary, load_products
from medsignal.ingest.criteria import ProductConfig
from medsignal.ingest.extraction import ExtractionError, load_extraction
from medsignal.ingest.models import ExtractedHospital
from medsignal.logic.changes import (
    ChangeDetectionResult,
    CrawlSnapshot,
    EquipmentChange,
    detect_changes,
    detect_equipment_changes,
    save_snapshot,
)
from medsignal.logic.competitors import Competitor, find_competitors
from medsignal.logic.marketing import NaverSearchClient, score_marketing_activity
from medsignal.logic.matcher import MatchResult, match_hospital_product
from medsignal.logic.normalizer import KeywordDictionary
from medsignal.logic.prices import ParsedPrice, parse_prices, to_pricing_row
from medsignal.logic.profiler import ProfileResult, profile_hospital
from medsignal.logic.signals import SalesSignal, classify_signals

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4
DEFAULT_EXTRACTIONS_DIR = "data/extractions"


@dataclass(slots=True)
class HospitalEvaluation:
    hospital_id: str
    detection: ChangeDetectionResult
    snapshot: CrawlSnapshot
    prices: list[ParsedPrice]
    changes: list[EquipmentChange]
    profile: ProfileResult
    competitors: list[Competitor] = field(default_factory=list)
    signals: list[SalesSignal] = field(default_factory=list)
    matches: dict[str, MatchResult] = field(default_factory=dict)


def evaluate_hospital(
    store: SignalStore,
    extracted: ExtractedHospital,
    products: list[ProductConfig],
    dictionary: KeywordDictionary,
    marketing_score: int,
    as_of: date | None = None,
    tier: str | None = None,
) -> HospitalEvaluation:
    """Run one hospital through change detection, signals, profiling and matching."""
    hospital = extracted.hospital
    equipment_names = extracted.equipment_names
    treatment_names = extracted.treatment_names

    detection = detect_changes(
        store, hospital.id, extracted.raw_text, extracted.ocr_text, equipment_names, treatment_names
    )
    page_text = extracted.raw_text
    if extracted.ocr_text:
        page_text = f"{page_text}\n{dictionary.correct_ocr_errors(extracted.ocr_text)}"
    prices = parse_prices(page_text, dictionary, as_of).prices
    unmatched = dictionary.normalize_all(equipment_names + treatment_names).unmatched

    snapshot = save_snapshot(
        store,
        hospital.id,
        detection,
        equipment_names,
        treatment_names,
        prices,
        new_compounds=dictionary.compound_candidates(unmatched),
        tier=tier,
    )
    if detection.has_text_changed:
        rows = [to_pricing_row(price, hospital.id, snapshot.crawled_at) for price in prices if not price.is_outlier]
        store.insert_pricing_rows(rows)

    changes = detect_equipment_changes(
        store,
        hospital.id,
        detection.previous_snapshot,
        equipment_names,
        treatment_names,
        snapshot.id,
        dictionary,
    )
    signals: list[SalesSignal] = []
    for product in products:
        signals.extend(classify_signals(store, changes, product.id, product.signal_rules))

    competitors = find_competitors(store, hospital, as_of=as_of)
    profile = profile_hospital(
        store,
        hospital,
        extracted.equipment,
        extracted.treatments,
        marketing_score,
        competitor_count=len(competitors),
        as_of=as_of,
    )
    matches = {
        product.id: match_hospital_product(
            store,
            hospital,
            product,
            profile.profile,
            extracted.equipment,
            extracted.treatments,
            dictionary,
            competitor_count=len(competitors),
            as_of=as_of,
        )
        for product in products
    }
    return HospitalEvaluation(
        hospital_id=hospital.id,
        detection=detection,
        snapshot=snapshot,
        prices=prices,
        changes=changes,
        profile=profile,
        competitors=competitors,
        signals=signals,
        matches=matches,
    )


def load_extractions(directory: pathlib.Path) -> list[ExtractedHospital]:
    extractions = []
    for path in sorted(directory.glob("*.json")):
        try:
            extractions.append(load_extraction(path))
        except ExtractionError as exc:
            logger.warning("Skipping %s: %s", path.name, exc)
    return extractions


def register_hospitals(store: SignalStore, extractions: list[ExtractedHospital]) -> int:
    """Upsert every hospital's location and RF line-up before any is scored against its neighbours."""
    registered = 0
    for extracted in extractions:
        written = store.upsert_hospital(extracted.hospital, extracted.equipment, len(extracted.treatments))
        if written.ok:
            registered += 1
    return registered


async def run_batch(
    directory: pathlib.Path | None = None,
    *,
    engine: Engine | None = None,
    concurrency: int | None = None,
    naver: NaverSearchClient | None = None,
    as_of: date | None = None,
) -> list[HospitalEvaluation]:
    load_dotenv()
    directory = directory or pathlib.Path(os.environ.get("EXTRACTIONS_DIR", DEFAULT_EXTRACTIONS_DIR))
    concurrency = concurrency or int(os.environ.get("BATCH_CONCURRENCY", DEFAULT_CONCURRENCY))
    store = SignalStore(engine or create_engine_from_env())
    dictionary = load_dictionary()
    products = load_products()
    extractions = load_extractions(directory)
    client = naver or NaverSearchClient.from_env()
    semaphore = asyncio.Semaphore(concurrency)
    loop = asyncio.get_running_loop()

    registered = await loop.run_in_executor(None, register_hospitals, store, extractions)
    logger.info(
        "Evaluating %s hospitals (%s registered) against %s products", len(extractions), registered, len(products)
    )

    async def run_one(extracted: ExtractedHospital) -> HospitalEvaluation | None:
        async with semaphore:
            marketing = await score_marketing_activity(extracted.hospital, client)
            try:
                return await loop.run_in_executor(
                    None, evaluate_hospital, store, extracted, products, dictionary, marketing.score, as_of
                )
            except SQLAlchemyError as exc:
                logger.warning("Skipping hospital %s: %s", extracted.hospital.id, exc)
                return None

    try:
        results = await asyncio.gather(*(run_one(extracted) for extracted in extractions))
    finally:
        if client is not None and naver is None:
            await client.close()
    return [result for result in results if result is not None]


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    results = asyncio.run(run_batch())
    logger.info("Evaluated %s hospitals", len(results))


if __name__ == "__main__":
    main()
