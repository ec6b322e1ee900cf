"""Promotional context around a quoted price.

Event framing ("3월 한정", "선착순 10명", "30% 할인") is kept verbatim next to
each price because it is useful on its own, independent of the number.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import date

from medsignal.utils.dates import format_date, month_end, safe_date

KEYWORD_WINDOW = 50
CONTEXT_WINDOW = 100

EVENT_KEYWORDS = (
    "체험가", "이벤트가", "이벤트", "1회체험", "체험", "프로모션", "할인가", "특가",
    "한정", "기념", "오픈", "할인", "세일", "선착순", "마감", "임박", "금일",
    "오늘만", "기간한정", "얼리버드", "런칭", "파격", "sale", "event", "off",
)

LABEL_PATTERNS = [
    re.compile(r"(\d{1,2}월\s*(?:한정|이벤트|특가|프로모션|할인|세일))", re.I),
    re.compile(r"(\d{1,2}월\s*\d{1,2}일\s*(?:까지|한정|마감))", re.I),
    re.compile(r"(선착순\s*\d+\s*명)", re.I),
    re.compile(r"(\d+\s*명\s*한정)", re.I),
    re.compile(r"((?:오픈|개원|리뉴얼|\d+주년)\s*기념)", re.I),
    re.compile(r"(신규\s*오픈)", re.I),
    re.compile(r"(마감\s*임박)", re.I),
    re.compile(r"(오늘만|금일\s*한정|기간\s*한정)", re.I),
    re.compile(r"(\d+\s*%\s*(?:할인|OFF|off|세일))", re.I),
    re.compile(r"(얼리버드\s*(?:특가|할인|가격)?)", re.I),
    re.compile(r"(런칭\s*(?:특가|할인|가격)?)", re.I),
    re.compile(r"(파격\s*(?:가|할인|특가))", re.I),
    re.compile(r"(초특가)", re.I),
]

LIMIT_RE = re.compile(r"(선착순\s*\d+\s*명|\d+\s*명\s*한정)")
DURATION_RE = re.compile(r"(\d{1,2}월\s*(?:한정|말\s*까지|까지)|\d{1,2}월\s*\d{1,2}일\s*까지|기간\s*한정)")
URGENCY_RE = re.compile(r"(마감\s*임박|오늘만|금일\s*한정|오늘\s*마감|마지막\s*기회)")
OCCASION_RE = re.compile(r"((?:오픈|개원|리뉴얼|\d+주년)\s*기념|신규\s*오픈|런칭)")
DISCOUNT_RE = re.compile(r"(\d+\s*%\s*(?:할인|OFF|off|세일))", re.I)

FULL_RANGE_RE = re.compile(
    r"(\d{4})[./-](\d{1,2})[./-](\d{1,2})\s*[~\-–]\s*(\d{4})[./-](\d{1,2})[./-](\d{1,2})"
)
KOREAN_RANGE_RE = re.compile(r"(\d{1,2})월\s*(\d{1,2})일\s*[~\-–]\s*(\d{1,2})월\s*(\d{1,2})일")
UNTIL_RE = re.compile(r"(\d{1,2})월\s*(\d{1,2})일\s*까지")
MONTH_LIMIT_RE = re.compile(r"(\d{1,2})월\s*(?:한정|말\s*까지)")


@dataclass(slots=True, frozen=True)
class EventConditions:
    limit: str | None = None
    duration: str | None = None
    urgency: str | None = None
    occasion: str | None = None
    discount: str | None = None

    def any(self) -> bool:
        return any((self.limit, self.duration, self.urgency, self.occasion, self.discount))

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class EventContext:
    label: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    conditions: EventConditions = field(default_factory=EventConditions)

    @property
    def is_structured(self) -> bool:
        return self.label is not None or self.conditions.any()

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "start_date": format_date(self.start_date),
            "end_date": format_date(self.end_date),
            "conditions": self.conditions.to_dict(),
        }


def _window(text: str, start: int, end: int, margin: int) -> str:
    return text[max(0, start - margin):min(len(text), end + margin)]


def _first(pattern: re.Pattern[str], window: str) -> str | None:
    match = pattern.search(window)
    return match.group(1).strip() if match else None


def has_event_keyword(window: str) -> bool:
    lower = window.lower()
    return any(keyword in lower for keyword in EVENT_KEYWORDS)


def extract_conditions(window: str) -> EventConditions:
    return EventConditions(
        limit=_first(LIMIT_RE, window),
        duration=_first(DURATION_RE, window),
        urgency=_first(URGENCY_RE, window),
        occasion=_first(OCCASION_RE, window),
        discount=_first(DISCOUNT_RE, window),
    )


def extract_labels(window: str) -> list[str]:
    labels: list[str] = []
    for pattern in LABEL_PATTERNS:
        labels.extend(match.group(1).strip() for match in pattern.finditer(window))
    return labels


def resolve_event_dates(window: str, year: int) -> tuple[date | None, date | None]:
    """Start and end dates named in ``window``; impossible dates come back as None."""
    match = FULL_RANGE_RE.search(window)
    if match:
        y1, m1, d1, y2, m2, d2 = (int(part) for part in match.groups())
        return safe_date(y1, m1, d1), safe_date(y2, m2, d2)

    match = KOREAN_RANGE_RE.search(window)
    if match:
        m1, d1, m2, d2 = (int(part) for part in match.groups())
        end_year = year + 1 if m2 < m1 else year
        return safe_date(year, m1, d1), safe_date(end_year, m2, d2)

    match = UNTIL_RE.search(window)
    if match:
        return None, safe_date(year, int(match.group(1)), int(match.group(2)))

    match = MONTH_LIMIT_RE.search(window)
    if match:
        return None, month_end(year, int(match.group(1)))
    return None, None


def extract_event_context(text: str, start: int, end: int, year: int) -> EventContext:
    window = _window(text, start, end, CONTEXT_WINDOW)
    labels = extract_labels(window)
    start_date, end_date = resolve_event_dates(window, year)
    return EventContext(
        label=", ".join(labels) if labels else None,
        start_date=start_date,
        end_date=end_date,
        conditions=extract_conditions(window),
    )


def detect_event(text: str, start: int, end: int, year: int) -> tuple[bool, EventContext]:
    """Keyword scan over the near window, structured context over the wide one."""
    context = extract_event_context(text, start, end, year)
    keyword_hit = has_event_keyword(_window(text, start, end, KEYWORD_WINDOW))
    return keyword_hit or context.is_structured, context
