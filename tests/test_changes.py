from sqlalchemy import text

from medsignal.logic.changes import (
    FIRST_CRAWL_SUMMARY,
    NO_DIFF_SUMMARY,
    NO_TEXT_CHANGE_SUMMARY,
    build_diff_summary,
    compute_hash,
    detect_changes,
    detect_equipment_changes,
    save_snapshot,
    strip_volatile_content,
)
from medsignal.logic.prices import parse_prices


def _crawl(store, hospital_id, page, equipment=(), treatments=(), prices=()):
    detection = detect_changes(store, hospital_id, page, None, equipment, treatments)
    snapshot = save_snapshot(store, hospital_id, detection, equipment, treatments, prices)
    return detection, snapshot


def test_date_only_edit_keeps_stripped_hash():
    before = "울쎄라 300샷 2월 한정 99만원"
    after = "울쎄라 300샷 3월 한정 99만원"
    assert compute_hash(before) != compute_hash(after)
    assert strip_volatile_content(before) == strip_volatile_content(after)


def test_strip_volatile_content_removes_promotions():
    stripped = strip_volatile_content("2026년 3월 15일까지 선착순 10명 30% 할인 써마지 600샷")
    assert stripped == "써마지 600샷"


def test_first_crawl(store):
    detection = detect_changes(store, "h-1", "써마지 600샷 250만원")
    assert detection.is_first_crawl
    assert detection.has_text_changed
    assert detection.should_run_ocr
    assert detection.diff_summary == FIRST_CRAWL_SUMMARY
    assert detection.previous_snapshot is None


def test_promotional_edit_does_not_trigger_reanalysis(store):
    _crawl(store, "h-1", "울쎄라 300샷 2월 한정 99만원", ["울쎄라"])
    detection = detect_changes(store, "h-1", "울쎄라 300샷 3월 한정 99만원", None, ["울쎄라"])
    assert not detection.is_first_crawl
    assert not detection.has_text_changed
    assert detection.has_full_text_changed
    assert not detection.should_run_ocr
    assert detection.diff_summary == NO_TEXT_CHANGE_SUMMARY


def test_content_change_builds_summary(store):
    _crawl(store, "h-1", "울쎄라 써마지", ["울쎄라", "써마지"], ["리프팅"])
    detection = detect_changes(store, "h-1", "울쎄라 인모드", None, ["울쎄라", "인모드"], ["리프팅"])
    assert detection.has_text_changed
    assert detection.diff_summary == "장비 추가: 인모드 | 장비 제거: 써마지"


def test_ocr_hash_change(store):
    detection = detect_changes(store, "h-1", "본문", "이미지 텍스트")
    save_snapshot(store, "h-1", detection, [], [])
    detection = detect_changes(store, "h-1", "본문", "다른 이미지 텍스트")
    assert not detection.has_text_changed
    assert detection.has_ocr_changed


def test_build_diff_summary():
    assert build_diff_summary(["A"], ["a"], [], []) == NO_DIFF_SUMMARY
    assert build_diff_summary([], [], ["필러"], ["필러", "보톡스"]) == "시술 추가: 보톡스"


def test_save_snapshot_round_trip(store, dictionary):
    prices = parse_prices("3월 한정 울쎄라 300샷 99만원", dictionary).prices
    detection = detect_changes(store, "h-1", "3월 한정 울쎄라 300샷 99만원")
    saved = save_snapshot(store, "h-1", detection, ["울쎄라"], ["울쎄라 리프팅"], prices, ["울리쥬"], tier="A")
    assert saved.id is not None

    latest = store.latest_snapshot("h-1")
    assert latest.id == saved.id
    assert latest.tier == "A"
    assert latest.equipments_found == ["울쎄라"]
    assert latest.treatments_found == ["울쎄라 리프팅"]
    assert latest.new_compounds == ["울리쥬"]
    assert latest.diff_summary == FIRST_CRAWL_SUMMARY
    assert latest.pricing_found[0]["price"] == 990000
    assert latest.event_pricing_snapshot[0]["is_event_price"] is True


def test_latest_snapshot_picks_newest(store):
    _, first = _crawl(store, "h-1", "첫 번째")
    _, second = _crawl(store, "h-1", "두 번째")
    assert store.latest_snapshot("h-1").id == second.id
    assert second.id > first.id
    assert store.latest_snapshot("h-2") is None


def test_equipment_changes_on_first_crawl(store, dictionary):
    changes = detect_equipment_changes(store, "h-1", None, ["써마지 FLX"], ["남성피부관리"], dictionary=dictionary)
    assert [(c.item_type, c.change_type) for c in changes] == [("EQUIPMENT", "ADDED"), ("TREATMENT", "ADDED")]
    assert changes[0].standard_name == "써마지"
    assert changes[1].standard_name == "남성피부관리"
    assert all(change.id is not None for change in changes)


def test_equipment_changes_between_snapshots(store, engine):
    _, previous = _crawl(store, "h-1", "v1", ["써마지", "울쎄라"], ["리프팅"])
    changes = detect_equipment_changes(
        store, "h-1", previous, ["울쎄라", "인모드"], ["리프팅", "남성피부관리"], current_snapshot_id=previous.id + 1
    )
    assert [(c.trigger, c.item_name) for c in changes] == [
        ("equipment_added", "인모드"),
        ("equipment_removed", "써마지"),
        ("treatment_added", "남성피부관리"),
    ]
    assert all(change.prev_snapshot_id == previous.id for change in changes)

    with engine.begin() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM equipment_changes")).scalar_one()
    assert count == 3


def test_no_changes_writes_nothing(store, engine):
    _, previous = _crawl(store, "h-1", "v1", ["울쎄라"], [])
    assert detect_equipment_changes(store, "h-1", previous, ["울쎄라"], []) == []
    with engine.begin() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM equipment_changes")).scalar_one()
    assert count == 0


def test_decimal_price_edit_changes_stripped_hash():
    assert strip_volatile_content("써마지 600샷 1.5만") != strip_volatile_content("써마지 600샷 2.5만")
    assert strip_volatile_content("울쎄라 3.15 까지 99만원") == strip_volatile_content("울쎄라 4.20 까지 99만원")


def test_failed_change_insert_still_returns_changes(store, engine, dictionary):
    with engine.begin() as conn:
        conn.execute(text("DROP TABLE equipment_changes"))
    changes = detect_equipment_changes(store, "h-1", None, ["써마지 FLX"], ["남성피부관리"], dictionary=dictionary)
    assert [(c.trigger, c.standard_name) for c in changes] == [
        ("equipment_added", "써마지"),
        ("treatment_added", "남성피부관리"),
    ]
    assert all(change.id is None for change in changes)
