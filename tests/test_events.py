from datetime import date

from medsignal.logic import events


def test_conditions_are_extracted_independently():
    window = "오픈 기념 선착순 10명 30% 할인 마감 임박"
    conditions = events.extract_conditions(window)
    assert conditions.limit == "선착순 10명"
    assert conditions.occasion == "오픈 기념"
    assert conditions.discount == "30% 할인"
    assert conditions.urgency == "마감 임박"
    assert conditions.duration is None


def test_labels_join_every_phrase():
    labels = events.extract_labels("12월 이벤트 100명 한정 초특가")
    assert labels == ["12월 이벤트", "100명 한정", "초특가"]


def test_structured_context_implies_event_without_keyword():
    text = "써마지 600샷 250만원" + " " * 70 + "2주년 기념"
    is_event, context = events.detect_event(text, 0, 14, 2026)
    assert is_event
    assert context.conditions.occasion == "2주년 기념"


def test_keyword_only_event():
    text = "체험가 인모드 1회 99000원"
    is_event, context = events.detect_event(text, 4, len(text), 2026)
    assert is_event
    assert not context.is_structured


def test_until_date_is_literal():
    start, end = events.resolve_event_dates("3월 15일까지", 2026)
    assert start is None
    assert end == date(2026, 3, 15)


def test_month_limit_resolves_to_month_end():
    assert events.resolve_event_dates("2월 한정", 2028) == (None, date(2028, 2, 29))
    assert events.resolve_event_dates("12월말까지", 2026) == (None, date(2026, 12, 31))


def test_explicit_ranges():
    assert events.resolve_event_dates("2026.3.1 ~ 2026.3.31", 2026) == (date(2026, 3, 1), date(2026, 3, 31))
    assert events.resolve_event_dates("12월 20일 ~ 1월 10일", 2026) == (date(2026, 12, 20), date(2027, 1, 10))


def test_impossible_dates_are_none():
    assert events.resolve_event_dates("2월 30일까지", 2026) == (None, None)
    assert events.resolve_event_dates("13월 한정", 2026) == (None, None)


def test_context_serializes_dates():
    context = events.extract_event_context("3월 31일까지 울쎄라 300샷 120만원", 10, 20, 2026)
    payload = context.to_dict()
    assert payload["end_date"] == "2026-03-31"
    assert payload["conditions"]["duration"] == "3월 31일까지"
