"""Marketing activity score from Naver search counts."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

import httpx

from medsignal.ingest.models import Hospital
from medsignal.utils.numbers import clamp, round_score
from medsignal.utils.retry import retry_async

logger = logging.getLogger(__name__)

NAVER_SEARCH_ENDPOINT = "https://openapi.naver.com/v1/search"

WEBSITE_BONUS = 5
EMAIL_BONUS = 3


@dataclass(slots=True)
class SearchCounts:
    blog: int
    cafe: int
    news: int


@dataclass(slots=True)
class MarketingScore:
    score: int
    source: str
    blog_count: int
    cafe_count: int
    news_count: int
    website_bonus: int
    email_bonus: int


class NaverSearchClient:
    def __init__(self, client_id: str, client_secret: str, *, session: httpx.AsyncClient | None = None) -> None:
        self.session = session or httpx.AsyncClient(timeout=10.0)
        self.headers = {"X-Naver-Client-Id": client_id, "X-Naver-Client-Secret": client_secret}

    @classmethod
    def from_env(cls) -> "NaverSearchClient | None":
        client_id = os.environ.get("NAVER_CLIENT_ID")
        client_secret = os.environ.get("NAVER_CLIENT_SECRET")
        if not client_id or not client_secret:
            return None
        return cls(client_id, client_secret)

    async def close(self) -> None:
        await self.session.aclose()

    async def _total(self, kind: str, query: str) -> int:
        response = await retry_async(self.session.get)(
            f"{NAVER_SEARCH_ENDPOINT}/{kind}.json",
            params={"query": query, "display": 1},
            headers=self.headers,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected {kind} search payload")
        return int(payload.get("total") or 0)

    async def fetch_counts(self, query: str) -> SearchCounts:
        blog, cafe, news = await asyncio.gather(
            self._total("blog", query),
            self._total("cafearticle", query),
            self._total("news", query),
        )
        return SearchCounts(blog=blog, cafe=cafe, news=news)


def estimate_counts(data_quality_score: int, review_count: int) -> SearchCounts:
    return SearchCounts(
        blog=round_score(data_quality_score * 0.5 + review_count * 0.3),
        cafe=round_score(data_quality_score * 0.3 + review_count * 0.2),
        news=round_score(data_quality_score * 0.1),
    )


def _blog_points(count: int) -> int:
    for threshold, points in ((1000, 40), (500, 35), (200, 28), (100, 22), (50, 15), (10, 8)):
        if count >= threshold:
            return points
    return round_score(count * 0.5)


def _cafe_points(count: int) -> int:
    for threshold, points in ((500, 30), (200, 25), (100, 20), (50, 13), (10, 7)):
        if count >= threshold:
            return points
    return round_score(count * 0.5)


def _news_points(count: int) -> int:
    for threshold, points in ((100, 30), (50, 25), (20, 18), (5, 10)):
        if count >= threshold:
            return points
    return round_score(count * 1.5)


def score_counts(counts: SearchCounts, hospital: Hospital, source: str) -> MarketingScore:
    website_bonus = WEBSITE_BONUS if hospital.website else 0
    email_bonus = EMAIL_BONUS if hospital.email else 0
    raw = _blog_points(counts.blog) + _cafe_points(counts.cafe) + _news_points(counts.news) + website_bonus + email_bonus
    return MarketingScore(
        score=int(clamp(raw)),
        source=source,
        blog_count=counts.blog,
        cafe_count=counts.cafe,
        news_count=counts.news,
        website_bonus=website_bonus,
        email_bonus=email_bonus,
    )


async def score_marketing_activity(hospital: Hospital, client: NaverSearchClient | None = None) -> MarketingScore:
    """Score 0-100; falls back to an estimate when the search API is unavailable."""
    if client is not None:
        try:
            counts = await client.fetch_counts(hospital.name)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Naver search failed for %s, using estimate: %s", hospital.name, exc)
        else:
            return score_counts(counts, hospital, "naver_api")
    estimated = estimate_counts(hospital.data_quality_score, hospital.naver_review_count)
    return score_counts(estimated, hospital, "fallback")
