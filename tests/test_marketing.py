import httpx
import pytest
import respx
from dotenv import load_dotenv

from medsignal.logic.marketing import (
    NAVER_SEARCH_ENDPOINT,
    NaverSearchClient,
    SearchCounts,
    estimate_counts,
    score_counts,
    score_marketing_activity,
)


def _total(count):
    return httpx.Response(200, json={"total": count, "items": []})


@pytest.mark.asyncio
async def test_score_from_naver_search(hospital):
    hospital.website = "https://skyderm.example"
    async with respx.mock(assert_all_called=True) as router:
        blog = router.get(f"{NAVER_SEARCH_ENDPOINT}/blog.json").mock(return_value=_total(1200))
        router.get(f"{NAVER_SEARCH_ENDPOINT}/cafearticle.json").mock(return_value=_total(250))
        router.get(f"{NAVER_SEARCH_ENDPOINT}/news.json").mock(return_value=_total(8))
        async with httpx.AsyncClient() as session:
            client = NaverSearchClient("id", "secret", session=session)
            result = await score_marketing_activity(hospital, client)
    request = blog.calls.last.request
    assert request.headers["X-Naver-Client-Id"] == "id"
    assert request.url.params["query"] == "강남하늘피부과"
    assert result.source == "naver_api"
    assert (result.blog_count, result.cafe_count, result.news_count) == (1200, 250, 8)
    assert result.website_bonus == 5
    assert result.score == 40 + 25 + 10 + 5


@pytest.mark.asyncio
async def test_http_error_falls_back_to_estimate(hospital):
    async with respx.mock(assert_all_called=False) as router:
        router.get(url__startswith=NAVER_SEARCH_ENDPOINT).mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as session:
            client = NaverSearchClient("id", "secret", session=session)
            result = await score_marketing_activity(hospital, client)
    assert result.source == "fallback"
    assert result.score == 25


@pytest.mark.asyncio
async def test_no_client_uses_estimate(hospital):
    result = await score_marketing_activity(hospital)
    assert result.source == "fallback"
    assert (result.blog_count, result.cafe_count, result.news_count) == (35, 21, 7)


def test_estimate_counts():
    assert estimate_counts(80, 100) == SearchCounts(blog=70, cafe=44, news=8)


def test_score_counts_is_clamped(hospital):
    hospital.website = "https://a.example"
    hospital.email = "info@a.example"
    result = score_counts(SearchCounts(blog=5000, cafe=5000, news=5000), hospital, "naver_api")
    assert result.score == 100
    assert result.email_bonus == 3


def test_small_counts_scale_linearly(hospital):
    assert score_counts(SearchCounts(blog=4, cafe=2, news=2), hospital, "naver_api").score == 2 + 1 + 3


@pytest.mark.asyncio
async def test_non_json_response_falls_back_to_estimate(hospital):
    async with respx.mock(assert_all_called=False) as router:
        router.get(url__startswith=NAVER_SEARCH_ENDPOINT).mock(
            return_value=httpx.Response(200, text="<html>점검 중</html>")
        )
        async with httpx.AsyncClient() as session:
            client = NaverSearchClient("id", "secret", session=session)
            result = await score_marketing_activity(hospital, client)
    assert result.source == "fallback"
    assert result.score == 25


@pytest.mark.asyncio
async def test_unexpected_payload_shape_falls_back(hospital):
    async with respx.mock(assert_all_called=False) as router:
        router.get(url__startswith=NAVER_SEARCH_ENDPOINT).mock(return_value=httpx.Response(200, json=[1, 2]))
        async with httpx.AsyncClient() as session:
            client = NaverSearchClient("id", "secret", session=session)
            result = await score_marketing_activity(hospital, client)
    assert result.source == "fallback"


def test_from_env_without_credentials(monkeypatch):
    monkeypatch.delenv("NAVER_CLIENT_ID", raising=False)
    monkeypatch.setenv("NAVER_CLIENT_SECRET", "secret")
    assert NaverSearchClient.from_env() is None


@pytest.mark.asyncio
async def test_from_env_reads_credentials_loaded_after_import(monkeypatch, tmp_path):
    monkeypatch.setenv("NAVER_CLIENT_ID", "")
    monkeypatch.setenv("NAVER_CLIENT_SECRET", "")
    assert NaverSearchClient.from_env() is None

    env_file = tmp_path / ".env"
    env_file.write_text("NAVER_CLIENT_ID=dotenv-id\nNAVER_CLIENT_SECRET=dotenv-secret\n", encoding="utf-8")
    load_dotenv(env_file, override=True)

    client = NaverSearchClient.from_env()
    assert client is not None
    assert client.headers["X-Naver-Client-Id"] == "dotenv-id"
    await client.close()
