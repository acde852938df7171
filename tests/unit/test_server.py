"""
Tests for the FastAPI app: routes, the response envelope and error statuses.

The browser is replaced by a scripted scraper and the language model by the
offline mock client; transcripts are patched at the server module.
"""

from typing import Any, List, Optional
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from learnflow.config import LearnFlowConfig
from learnflow.error_handler import ErrorCategory, TranscriptError
from learnflow.llm import LanguageModelService
from learnflow.mock_api import MockErrorScenario, MockOpenAIClient, MockOpenAIConfig
from learnflow.scraper import VideoResult
from learnflow.server import create_app, envelope
from learnflow.session_guard import SessionGuard
from learnflow.transcripts import TranscriptData

pytestmark = pytest.mark.http

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


class FakeScraper:
    def __init__(
        self, batches: Optional[List[List[VideoResult]]] = None, launch_error: Optional[Exception] = None
    ) -> None:
        self.batches = batches or []
        self.launch_error = launch_error
        self.connected = False
        self.launches = 0
        self.closes = 0
        self.limits: List[int] = []

    def is_connected(self) -> bool:
        return self.connected

    async def initialize(self) -> None:
        self.launches += 1
        if self.launch_error is not None:
            raise self.launch_error
        self.connected = True

    async def close(self) -> None:
        self.closes += 1
        self.connected = False

    async def search_videos(self, query: str, limit: int = 5) -> List[VideoResult]:
        self.limits.append(limit)
        return self.batches.pop(0) if self.batches else []


def video(n: int) -> VideoResult:
    return VideoResult(
        title=f"Video {n}", url=f"https://www.youtube.com/watch?v={n:011d}", description="d"
    )


def build_client(
    fake_sleep: Any,
    scraper: Optional[FakeScraper] = None,
    mock_config: Optional[MockOpenAIConfig] = None,
) -> TestClient:
    scraper = scraper or FakeScraper()
    guard = SessionGuard(scraper.initialize, scraper.close, sleep=fake_sleep)
    llm = LanguageModelService(client=MockOpenAIClient(config=mock_config or MockOpenAIConfig()))
    app = create_app(LearnFlowConfig(mock=True), scraper=scraper, llm=llm, guard=guard)  # type: ignore[arg-type]
    return TestClient(app)


class TestEnvelope:
    def test_success_omits_empty_keys(self) -> None:
        assert envelope(data=[1]) == {"success": True, "data": [1]}

    def test_error(self) -> None:
        assert envelope(error="bad", details="why") == {
            "success": False,
            "error": "bad",
            "details": "why",
        }


class TestBasicRoutes:
    def test_root(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).get("/")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "message": "LearnFlow API is running"}

    def test_health_does_not_launch_browser(self, fake_sleep: Any) -> None:
        scraper = FakeScraper()

        response = build_client(fake_sleep, scraper).get("/api/health")

        body = response.json()
        assert body["success"] is True
        assert body["data"]["browserConnected"] is False
        assert body["data"]["session"]["state"] == "UNINITIALIZED"
        assert body["data"]["mock"] is True
        assert scraper.launches == 0

    def test_lifespan_closes_services(self, fake_sleep: Any) -> None:
        scraper = FakeScraper()
        client = build_client(fake_sleep, scraper)
        llm_client = client.app.state.llm.client  # type: ignore[attr-defined]

        with client:
            client.get("/")

        assert scraper.closes == 1
        assert llm_client.closed


class TestLanguageModelRoutes:
    def test_learning_path(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).post("/api/learning-path", json={"topic": "Rust"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert len(body["data"]) == 3

    def test_best_video(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).post("/api/best-video", json={"topic": "Rust"})

        assert response.status_code == 200
        assert set(response.json()["data"]) == {"title", "url", "description"}

    @pytest.mark.parametrize("payload", [{}, {"topic": ""}, {"topic": "   "}])
    def test_missing_topic(self, fake_sleep: Any, payload: dict) -> None:
        response = build_client(fake_sleep).post("/api/learning-path", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Topic is required and must be a string."

    def test_non_string_topic(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).post("/api/learning-path", json={"topic": 42})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    def test_rate_limit(self, fake_sleep: Any) -> None:
        client = build_client(
            fake_sleep, mock_config=MockOpenAIConfig(error_scenario=MockErrorScenario.RATE_LIMIT)
        )

        response = client.post("/api/learning-path", json={"topic": "Rust"})

        assert response.status_code == 429
        assert response.json()["success"] is False

    def test_unparseable_reply_includes_raw(self, fake_sleep: Any) -> None:
        client = build_client(
            fake_sleep, mock_config=MockOpenAIConfig(error_scenario=MockErrorScenario.MALFORMED_JSON)
        )

        response = client.post("/api/best-video", json={"topic": "Rust"})

        assert response.status_code == 500
        assert response.json()["raw"].startswith("Sure!")


class TestVideoRoutes:
    def test_search_clamps_limit(self, fake_sleep: Any) -> None:
        scraper = FakeScraper([[video(1), video(2)]])

        response = build_client(fake_sleep, scraper).post(
            "/api/videos/search", json={"query": "python", "limit": 50}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert [v["title"] for v in data] == ["Video 1", "Video 2"]
        assert "duration" not in data[0]
        assert scraper.limits == [10]

    def test_best_scraped_video(self, fake_sleep: Any) -> None:
        scraper = FakeScraper([[video(1), video(2)]])

        response = build_client(fake_sleep, scraper).post(
            "/api/videos/best", json={"query": "python"}
        )

        assert response.json()["data"]["title"] == "Video 1"
        assert scraper.limits == [3]

    def test_exhausted_retries_are_service_unavailable(self, fake_sleep: Any) -> None:
        scraper = FakeScraper([])

        response = build_client(fake_sleep, scraper).post(
            "/api/videos/search", json={"query": "python"}
        )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        body = response.json()
        assert body["error"] == "searchVideos failed after all retry attempts"
        assert body["details"] == "searchVideos returned empty result"
        assert fake_sleep.delays == [2.0, 4.0]

    def test_browser_that_never_launches(self, fake_sleep: Any) -> None:
        scraper = FakeScraper(launch_error=RuntimeError("chromium missing"))

        response = build_client(fake_sleep, scraper).post(
            "/api/videos/best", json={"query": "python"}
        )

        assert response.status_code == 503
        assert "chromium missing" in response.json()["details"]

    def test_missing_query(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).post("/api/videos/search", json={"limit": 3})

        assert response.status_code == 400
        assert response.json()["error"] == "Query is required and must be a string."


class TestTranscriptRoutes:
    def test_transcript(self, fake_sleep: Any) -> None:
        data = TranscriptData("hello and welcome", "en", "dQw4w9WgXcQ", "Intro")
        with patch("learnflow.server.fetch_transcript", AsyncMock(return_value=data)) as fetch:
            response = build_client(fake_sleep).post(
                "/api/youtube/transcript", json={"videoUrl": VIDEO_URL, "language": "de"}
            )

        assert response.status_code == 200
        assert response.json()["data"] == {
            "videoId": "dQw4w9WgXcQ",
            "title": "Intro",
            "language": "en",
            "transcript": "hello and welcome",
        }
        fetch.assert_awaited_once_with(VIDEO_URL, language="de")

    def test_transcript_unavailable(self, fake_sleep: Any) -> None:
        error = TranscriptError("No transcript available for this video")
        with patch("learnflow.server.fetch_transcript", AsyncMock(side_effect=error)):
            response = build_client(fake_sleep).post(
                "/api/youtube/transcript", json={"videoUrl": VIDEO_URL}
            )

        assert response.status_code == 404
        assert response.json()["error"] == "No transcript available for this video"

    def test_missing_video_url(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).post("/api/youtube/transcript", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "VideoUrl is required and must be a string."


class TestFormCreate:
    def test_rejects_non_youtube_url(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).post(
            "/api/createFormData/form/create", json={"videoUrl": "https://vimeo.com/1"}
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_rejects_missing_url(self, fake_sleep: Any) -> None:
        response = build_client(fake_sleep).post("/api/createFormData/form/create", json={})

        assert response.status_code == 400
        assert "Missing or invalid videoUrl" in response.json()["error"]

    def test_extracts_and_builds_knowledge_check(self, fake_sleep: Any) -> None:
        data = TranscriptData("gradient descent walks downhill " * 10, "en", "dQw4w9WgXcQ", "GD")
        with patch("learnflow.server.fetch_transcript", AsyncMock(return_value=data)) as fetch:
            response = build_client(fake_sleep).post(
                "/api/createFormData/form/create", json={"videoUrl": "www.youtube.com/watch?v=dQw4w9WgXcQ"}
            )

        assert response.status_code == 200
        body = response.json()
        assert body["message"].startswith("YouTube content extracted")
        extracted = body["data"]["extracted"]
        assert extracted["videoId"] == "dQw4w9WgXcQ"
        assert extracted["topics"] == ["introduction", "key ideas", "examples"]
        assert body["data"]["knowledgeCheck"]["questions"]
        fetch.assert_awaited_once_with(VIDEO_URL)

    def test_transcript_failure_maps_to_status(self, fake_sleep: Any) -> None:
        error = TranscriptError("Video unavailable", ErrorCategory.NOT_FOUND)
        with patch("learnflow.server.fetch_transcript", AsyncMock(side_effect=error)):
            response = build_client(fake_sleep).post(
                "/api/createFormData/form/create", json={"videoUrl": VIDEO_URL}
            )

        assert response.status_code == 404
