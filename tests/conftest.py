import pytest
from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, MetaData, Table, Text, create_engine
from sqlalchemy.pool import StaticPool

from medsignal.db.store import SignalStore
from medsignal.ingest import load_dictionary, load_products
from medsignal.ingest.models import Equipment, Hospital, Treatment

metadata = MetaData()

hospitals = Table(
    "hospitals",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("sigungu", Text),
    Column("latitude", Float),
    Column("longitude", Float),
    Column("rf_equipment", Text),
    Column("treatment_count", Integer, nullable=False),
    Column("updated_at", Text, nullable=False),
)

crawl_snapshots = Table(
    "crawl_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hospital_id", Text, nullable=False),
    Column("crawled_at", Text, nullable=False),
    Column("tier", Text),
    Column("text_hash", Text, nullable=False),
    Column("stripped_hash", Text, nullable=False),
    Column("ocr_hash", Text),
    Column("equipments_found", Text),
    Column("treatments_found", Text),
    Column("pricing_found", Text),
    Column("event_pricing_snapshot", Text),
    Column("new_compounds", Text),
    Column("diff_summary", Text),
)

equipment_changes = Table(
    "equipment_changes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hospital_id", Text, nullable=False),
    Column("change_type", Text, nullable=False),
    Column("item_type", Text, nullable=False),
    Column("item_name", Text, nullable=False),
    Column("standard_name", Text, nullable=False),
    Column("detected_at", Text, nullable=False),
    Column("prev_snapshot_id", Integer, ForeignKey("crawl_snapshots.id")),
    Column("curr_snapshot_id", Integer, ForeignKey("crawl_snapshots.id")),
)

sales_signals = Table(
    "sales_signals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hospital_id", Text, nullable=False),
    Column("product_id", Text, nullable=False),
    Column("signal_type", Text, nullable=False),
    Column("priority", Text, nullable=False),
    Column("title", Text, nullable=False),
    Column("description", Text, nullable=False),
    Column("related_angle", Text),
    Column("source_change_id", Integer, ForeignKey("equipment_changes.id")),
    Column("status", Text, nullable=False),
    Column("detected_at", Text, nullable=False),
)

hospital_pricing = Table(
    "hospital_pricing",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hospital_id", Text, nullable=False),
    Column("treatment_name", Text, nullable=False),
    Column("standard_name", Text),
    Column("raw_text", Text),
    Column("total_quantity", Integer),
    Column("unit_type", Text),
    Column("total_price", Integer, nullable=False),
    Column("unit_price", Float),
    Column("price_band", Text, nullable=False),
    Column("is_package", Boolean),
    Column("is_event_price", Boolean),
    Column("is_outlier", Boolean),
    Column("confidence_level", Text, nullable=False),
    Column("event_label", Text),
    Column("event_start_date", Text),
    Column("event_end_date", Text),
    Column("event_conditions", Text),
    Column("event_detected_at", Text),
    Column("crawled_at", Text, nullable=False),
)

hospital_profiles = Table(
    "hospital_profiles",
    metadata,
    Column("hospital_id", Text, primary_key=True),
    Column("investment_score", Integer, nullable=False),
    Column("portfolio_score", Integer, nullable=False),
    Column("scale_trust_score", Integer, nullable=False),
    Column("marketing_score", Integer, nullable=False),
    Column("profile_score", Integer, nullable=False),
    Column("profile_grade", Text, nullable=False),
    Column("investment_tendency", Text, nullable=False),
    Column("competitor_count", Integer, nullable=False),
    Column("scoring_version", Text, nullable=False),
    Column("analyzed_at", Text, nullable=False),
)

product_match_scores = Table(
    "product_match_scores",
    metadata,
    Column("hospital_id", Text, primary_key=True),
    Column("product_id", Text, primary_key=True),
    Column("total_score", Integer, nullable=False),
    Column("grade", Text, nullable=False),
    Column("sales_angle_scores", Text),
    Column("top_pitch_points", Text),
    Column("need_score", Integer),
    Column("fit_score", Integer),
    Column("timing_score", Integer),
    Column("scoring_version", Text, nullable=False),
    Column("scored_at", Text, nullable=False),
)

scoring_change_history = Table(
    "scoring_change_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hospital_id", Text, nullable=False),
    Column("product_id", Text, nullable=False),
    Column("old_grade", Text),
    Column("new_grade", Text, nullable=False),
    Column("old_score", Integer),
    Column("new_score", Integer, nullable=False),
    Column("change_reason", Text, nullable=False),
    Column("changed_at", Text, nullable=False),
)


@pytest.fixture()
def engine():
    # One shared connection so executor threads see the same in-memory database.
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine):
    return SignalStore(engine)


@pytest.fixture(scope="session")
def dictionary():
    return load_dictionary()


@pytest.fixture(scope="session")
def products():
    return {product.id: product for product in load_products()}


@pytest.fixture()
def hospital():
    return Hospital(id="h-1", name="강남하늘피부과", data_quality_score=70, doctor_count=2)


@pytest.fixture()
def equipment():
    return [
        Equipment(name="써마지 FLX", category="rf", estimated_year=2021),
        Equipment(name="울쎄라", category="hifu", estimated_year=2025),
        Equipment(name="인모드", category="rf", estimated_year=2024),
    ]


@pytest.fixture()
def treatments():
    return [
        Treatment(name="울쎄라 리프팅", category="lifting", price_min=990000),
        Treatment(name="남성피부관리", category="skincare", price=120000),
        Treatment(name="안면거상", category="surgery", price_min=4500000),
        Treatment(name="쥬베룩 볼륨", category="booster", price=350000),
    ]
