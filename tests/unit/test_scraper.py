"""
Tests for the Google video scraper.

Tests cover:
1. HTML parsing of result pages (titles, URLs, durations, views, dedupe)
2. URL/title/description cleaning helpers
3. search_videos() against a fake Playwright browser
4. Browser launch and shutdown with a patched async_playwright
5. The guarded search helpers used by the server and CLI
"""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from learnflow.error_handler import ErrorCategory, OperationExhaustedError, ScrapeError
from learnflow.scraper import (
    NO_DESCRIPTION,
    GoogleVideoScraper,
    VideoResult,
    build_search_url,
    clean_description,
    clean_title,
    clean_url,
    extract_channel,
    guarded_best_video,
    guarded_search,
    is_detection_page,
    parse_video_results,
)
from learnflow.session_guard import SessionGuard

RESULTS_HTML = """
<html><body>
<div class="g">
  <a href="/url?q=https://www.youtube.com/watch%3Fv%3Dabc12345678&sa=U">
    <h3>Python Decorators Explained</h3>
  </a>
  <span>12:34</span> <span>1.2M views</span>
  <div>Learn how decorators work in Python.</div>
</div>
<div class="g">
  <a href="https://www.youtube.com/watch?v=xyz98765432"><h3>Decorators in 5 MinutesYouTube · Corey</h3></a>
  <div>Quick intro</div>
</div>
<div class="g"><a href="https://www.youtube.com/watch?v=abc12345678">duplicate link</a></div>
<div class="g"><a href="https://example.com/page"><h3>Not a video at all</h3></a></div>
<div class="g"><a href="https://youtu.be/short000000"><h3>Hi</h3></a></div>
</body></html>
"""

BLOCKED_HTML = (
    "<html><body>Our systems have detected unusual traffic from your "
    "computer network.</body></html>"
)


class TestParseVideoResults:
    """Result pages turn into deduplicated VideoResults."""

    def test_extracts_youtube_results(self) -> None:
        videos = parse_video_results(RESULTS_HTML, limit=10)

        assert [v.url for v in videos] == [
            "https://www.youtube.com/watch?v=abc12345678",
            "https://www.youtube.com/watch?v=xyz98765432",
        ]

    def test_fields_of_first_result(self) -> None:
        video = parse_video_results(RESULTS_HTML)[0]

        assert video.title == "Python Decorators Explained"
        assert video.duration == "12:34"
        assert video.views == "1.2M"
        assert "Learn how decorators work" in video.description
        assert "Python Decorators Explained" not in video.description

    def test_glued_title_is_cut(self) -> None:
        video = parse_video_results(RESULTS_HTML)[1]

        assert video.title == "Decorators in 5 Minutes"
        assert video.channel == "Corey"
        assert video.duration is None

    def test_limit(self) -> None:
        assert len(parse_video_results(RESULTS_HTML, limit=1)) == 1

    def test_no_results(self) -> None:
        assert parse_video_results("<html><body><p>nothing</p></body></html>") == []

    def test_missing_description_placeholder(self) -> None:
        html = '<a href="https://youtu.be/abcdefghijk"><h3>Only A Title</h3></a>'
        video = parse_video_results(html)[0]
        assert video.description == NO_DESCRIPTION

    def test_to_dict_drops_missing_fields(self) -> None:
        video = VideoResult(title="T", url="https://youtu.be/x", description="d")
        assert video.to_dict() == {"title": "T", "url": "https://youtu.be/x", "description": "d"}


class TestCleaningHelpers:
    def test_clean_url_unwraps_google_redirect(self) -> None:
        url = "/url?q=https://www.youtube.com/watch%3Fv%3Dabc&sa=U&ved=x"
        assert clean_url(url) == "https://www.youtube.com/watch?v=abc"

    def test_clean_url_leaves_direct_links(self) -> None:
        assert clean_url("https://youtu.be/abc") == "https://youtu.be/abc"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Learn Python", "Learn Python"),
            ("Learn   Python\n in 1 Hour", "Learn Python in 1 Hour"),
            ("Learn JavaScript in 1 Hour", "Learn JavaScript in 1 Hour"),
            ("Intro to SQLYouTube · freeCodeCamp", "Intro to SQL"),
            ("Intro to PythonYouTube · Mosh", "Intro to Python"),
            ("Linear Algebra · 3Blue1Brown", "Linear Algebra"),
            ("How to grow on YouTube", "How to grow on YouTube"),
        ],
    )
    def test_clean_title(self, raw: str, expected: str) -> None:
        assert clean_title(raw) == expected

    def test_clean_description(self) -> None:
        assert clean_description("  a\n\n b\tc ") == "a b c"

    def test_extract_channel(self) -> None:
        assert extract_channel("Intro to SQLYouTube · freeCodeCamp") == "freeCodeCamp"
        assert extract_channel("Learn Python") is None

    def test_build_search_url(self) -> None:
        url = build_search_url("python decorators")
        assert url.startswith("https://www.google.com/search?")
        assert "q=python+decorators" in url
        assert "tbm=vid" in url

    def test_detection_page(self) -> None:
        assert is_detection_page(BLOCKED_HTML)
        assert is_detection_page("<html></html>", "https://www.google.com/sorry/index")
        assert not is_detection_page(RESULTS_HTML, "https://www.google.com/search?q=x")


# =============================================================================
# Fake Playwright objects
# =============================================================================


class FakePage:
    def __init__(
        self,
        html: str,
        url: str = "https://www.google.com/search?q=x",
        goto_error: Optional[Exception] = None,
        selector_timeout: bool = False,
    ) -> None:
        self.html = html
        self.url = url
        self.goto_error = goto_error
        self.selector_timeout = selector_timeout
        self.visited: List[str] = []

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.visited.append(url)
        if self.goto_error is not None:
            raise self.goto_error

    async def wait_for_selector(self, selector: str, **kwargs: Any) -> None:
        if self.selector_timeout:
            raise PlaywrightTimeoutError("Timeout 5000ms exceeded")

    async def content(self) -> str:
        return self.html


class FakeContext:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.closed = False

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.contexts: List[FakeContext] = []
        self.context_options: Dict[str, Any] = {}

    def is_connected(self) -> bool:
        return True

    async def new_context(self, **kwargs: Any) -> FakeContext:
        self.context_options = kwargs
        context = FakeContext(self.page)
        self.contexts.append(context)
        return context


def scraper_with_page(page: FakePage) -> GoogleVideoScraper:
    scraper = GoogleVideoScraper()
    scraper._browser = FakeBrowser(page)  # type: ignore[assignment]
    return scraper


class TestSearchVideos:
    """search_videos() drives one browser context per query."""

    @pytest.mark.asyncio
    async def test_returns_parsed_results(self) -> None:
        page = FakePage(RESULTS_HTML)
        scraper = scraper_with_page(page)

        videos = await scraper.search_videos("python decorators", limit=5)

        assert len(videos) == 2
        assert page.visited == [build_search_url("python decorators")]
        browser = scraper._browser
        assert browser.context_options["user_agent"] == scraper.user_agent  # type: ignore[union-attr]
        assert browser.contexts[0].closed  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_selector_timeout_still_parses_page(self) -> None:
        scraper = scraper_with_page(FakePage(RESULTS_HTML, selector_timeout=True))
        assert len(await scraper.search_videos("python")) == 2

    @pytest.mark.asyncio
    async def test_detection_page_raises(self) -> None:
        scraper = scraper_with_page(FakePage(BLOCKED_HTML))
        with pytest.raises(ScrapeError) as exc_info:
            await scraper.search_videos("python")
        assert exc_info.value.category is ErrorCategory.DETECTION_BLOCK

    @pytest.mark.asyncio
    async def test_navigation_timeout(self) -> None:
        page = FakePage("", goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        scraper = scraper_with_page(page)

        with pytest.raises(ScrapeError) as exc_info:
            await scraper.search_videos("python")

        assert exc_info.value.category is ErrorCategory.NAVIGATION_TIMEOUT
        assert scraper._browser.contexts[0].closed  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_browser_error(self) -> None:
        page = FakePage("", goto_error=PlaywrightError("Target page has been closed"))
        scraper = scraper_with_page(page)

        with pytest.raises(ScrapeError) as exc_info:
            await scraper.search_videos("python")

        assert exc_info.value.category is ErrorCategory.BROWSER_ERROR
        assert exc_info.value.recoverable

    @pytest.mark.asyncio
    async def test_requires_browser(self) -> None:
        with pytest.raises(ScrapeError, match="Browser not initialized"):
            await GoogleVideoScraper().search_videos("python")

    @pytest.mark.asyncio
    async def test_rejects_empty_query(self) -> None:
        scraper = scraper_with_page(FakePage(RESULTS_HTML))
        with pytest.raises(ScrapeError) as exc_info:
            await scraper.search_videos("   ")
        assert exc_info.value.category is ErrorCategory.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_best_video_is_first_result(self) -> None:
        scraper = scraper_with_page(FakePage(RESULTS_HTML))
        video = await scraper.get_best_video("python decorators")
        assert video.title == "Python Decorators Explained"

    @pytest.mark.asyncio
    async def test_best_video_without_results(self) -> None:
        scraper = scraper_with_page(FakePage("<html></html>"))
        with pytest.raises(ScrapeError) as exc_info:
            await scraper.get_best_video("python")
        assert exc_info.value.category is ErrorCategory.EMPTY_RESULT


class TestBrowserLifecycle:
    """initialize()/close() around a patched async_playwright."""

    def _patched_playwright(self, launch: AsyncMock) -> tuple[MagicMock, MagicMock]:
        playwright = MagicMock()
        playwright.chromium.launch = launch
        playwright.stop = AsyncMock()
        starter = MagicMock()
        starter.start = AsyncMock(return_value=playwright)
        return starter, playwright

    @pytest.mark.asyncio
    async def test_initialize_launches_once(self) -> None:
        browser = MagicMock()
        browser.is_connected = MagicMock(return_value=True)
        browser.close = AsyncMock()
        starter, playwright = self._patched_playwright(AsyncMock(return_value=browser))

        scraper = GoogleVideoScraper(headless=True)
        with patch("learnflow.scraper.async_playwright", return_value=starter):
            await scraper.initialize()
            await scraper.initialize()

        assert starter.start.await_count == 1
        launch_kwargs = playwright.chromium.launch.await_args.kwargs
        assert launch_kwargs["headless"] is True
        assert "--no-sandbox" in launch_kwargs["args"]
        assert scraper.is_connected()

        await scraper.close()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert not scraper.is_connected()

    @pytest.mark.asyncio
    async def test_launch_failure_cleans_up(self) -> None:
        starter, playwright = self._patched_playwright(
            AsyncMock(side_effect=PlaywrightError("Executable doesn't exist"))
        )
        scraper = GoogleVideoScraper()

        with patch("learnflow.scraper.async_playwright", return_value=starter):
            with pytest.raises(ScrapeError) as exc_info:
                await scraper.initialize()

        assert exc_info.value.category is ErrorCategory.BROWSER_LAUNCH
        playwright.stop.assert_awaited_once()
        assert not scraper.is_connected()

    @pytest.mark.asyncio
    async def test_close_detaches_handles_before_awaiting(self) -> None:
        browser = MagicMock()
        browser.is_connected = MagicMock(return_value=True)
        seen: List[bool] = []

        async def close_browser() -> None:
            # A concurrent initialize() must already see no browser
            seen.append(scraper.is_connected())

        browser.close = close_browser
        scraper = GoogleVideoScraper()
        scraper._browser = browser
        scraper._playwright = MagicMock(stop=AsyncMock())

        await scraper.close()

        assert seen == [False]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        scraper = GoogleVideoScraper()
        await scraper.close()
        await scraper.close()
        assert not scraper.is_connected()


class FakeScraper:
    """Scripted stand-in for GoogleVideoScraper used by the guarded helpers."""

    def __init__(self, batches: List[List[VideoResult]]) -> None:
        self.batches = batches
        self.initialized = 0
        self.closed = 0
        self.limits: List[int] = []

    async def initialize(self) -> None:
        self.initialized += 1

    async def close(self) -> None:
        self.closed += 1

    async def search_videos(self, query: str, limit: int = 5) -> List[VideoResult]:
        self.limits.append(limit)
        return self.batches.pop(0) if self.batches else []


def video(n: int) -> VideoResult:
    return VideoResult(title=f"Video {n}", url=f"https://youtu.be/{n:011d}", description="d")


class TestGuardedHelpers:
    @pytest.mark.asyncio
    async def test_guarded_search_retries_empty_page(self, fake_sleep: Any) -> None:
        scraper = FakeScraper([[], [video(1), video(2)]])
        guard = SessionGuard(scraper.initialize, scraper.close, sleep=fake_sleep)

        videos = await guarded_search(guard, scraper, "python", 4)  # type: ignore[arg-type]

        assert [v.title for v in videos] == ["Video 1", "Video 2"]
        assert scraper.initialized == 2
        assert scraper.closed == 1
        assert scraper.limits == [4, 4]

    @pytest.mark.asyncio
    async def test_guarded_search_exhaustion_label(self, fake_sleep: Any) -> None:
        scraper = FakeScraper([])
        guard = SessionGuard(scraper.initialize, scraper.close, sleep=fake_sleep)

        with pytest.raises(OperationExhaustedError) as exc_info:
            await guarded_search(guard, scraper, "python")  # type: ignore[arg-type]

        assert str(exc_info.value) == "searchVideos failed after all retry attempts"

    @pytest.mark.asyncio
    async def test_guarded_best_video(self, fake_sleep: Any) -> None:
        scraper = FakeScraper([[video(7), video(8)]])
        guard = SessionGuard(scraper.initialize, scraper.close, sleep=fake_sleep)

        best = await guarded_best_video(guard, scraper, "python")  # type: ignore[arg-type]

        assert best.title == "Video 7"
        assert scraper.limits == [3]

    @pytest.mark.asyncio
    async def test_guarded_best_video_exhaustion_label(self, fake_sleep: Any) -> None:
        scraper = FakeScraper([])
        guard = SessionGuard(scraper.initialize, scraper.close, sleep=fake_sleep)

        with pytest.raises(OperationExhaustedError, match="^getBestVideo failed"):
            await guarded_best_video(guard, scraper, "python")  # type: ignore[arg-type]
