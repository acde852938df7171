"""
Google video search scraper backed by a shared headless Chromium.

GoogleVideoScraper owns the Playwright browser handle; SessionGuard (see
session_guard.py) decides when it is started, restarted, and released.
Page parsing is plain BeautifulSoup over the rendered HTML: every link to
YouTube becomes a VideoResult, titled from the nearest heading.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import (
    BEST_VIDEO_CANDIDATES,
    BROWSER_LAUNCH_ARGS,
    BROWSER_NAVIGATION_TIMEOUT_MS,
    BROWSER_SELECTOR_TIMEOUT_MS,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_USER_AGENT,
    GOOGLE_VIDEO_SEARCH_URL,
    MIN_TITLE_LENGTH,
    LearnFlowConfig,
)
from .error_handler import ErrorCategory, ScrapeError, classify_playwright_error
from .session_guard import SessionGuard
from .transcripts import is_youtube_url

logger = logging.getLogger(__name__)

YOUTUBE_LINK_SELECTOR = 'a[href*="youtube.com"], a[href*="youtu.be"]'
DETECTION_MARKERS = (
    "our systems have detected unusual traffic",
    "detected unusual traffic from your computer network",
)
DURATION_RE = re.compile(r"\b(\d{1,2}:\d{2}(?::\d{2})?)\b")
VIEWS_RE = re.compile(r"\b(\d[\d.,]*\s?[KMB]?)\s+views\b", re.IGNORECASE)
# Result cards glue the source onto the title: "Intro to PythonYouTube · Mosh"
GLUED_SOURCE_RE = re.compile(r"(?<=\S)(?:YouTube|youtube\.com)\b.*$")
SOURCE_SEPARATOR = " · "
WHITESPACE_RE = re.compile(r"\s+")
MAX_DESCRIPTION_CHARS = 300
NO_DESCRIPTION = "No description available"


@dataclass
class VideoResult:
    title: str
    url: str
    description: str
    duration: Optional[str] = None
    channel: Optional[str] = None
    views: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize, leaving out optional fields that were not found."""
        return {k: v for k, v in asdict(self).items() if v is not None}


def build_search_url(query: str) -> str:
    return f"{GOOGLE_VIDEO_SEARCH_URL}?{urlencode({'q': query, 'tbm': 'vid'})}"


def clean_url(url: str) -> str:
    """Unwrap Google's /url?q=<target> redirect links."""
    parsed = urlparse(url)
    if parsed.path == "/url":
        query = parse_qs(parsed.query)
        for key in ("q", "url"):
            if query.get(key):
                return query[key][0]
    return url


def clean_title(title: str) -> str:
    """Strip the source label Google glues onto result titles."""
    title = WHITESPACE_RE.sub(" ", title).strip()
    title = GLUED_SOURCE_RE.sub("", title)
    return title.split(SOURCE_SEPARATOR, 1)[0].strip()


def extract_channel(title: str) -> Optional[str]:
    """The channel name Google appends after the last " · " of a title, if any."""
    title = WHITESPACE_RE.sub(" ", title).strip()
    if SOURCE_SEPARATOR not in title:
        return None
    return title.rsplit(SOURCE_SEPARATOR, 1)[1].strip() or None


def clean_description(description: str) -> str:
    return WHITESPACE_RE.sub(" ", description).strip()


def is_detection_page(html: str, page_url: str = "") -> bool:
    """Google answers automated traffic with a /sorry/ interstitial."""
    if "/sorry/" in page_url:
        return True
    lowered = html.lower()
    return any(marker in lowered for marker in DETECTION_MARKERS)


def _result_container(anchor: Tag) -> Tag:
    # Climb until the block also holds a heading, but stay local to one result
    node: Tag = anchor
    for _ in range(4):
        parent = node.parent
        if not isinstance(parent, Tag) or parent.name in ("body", "html", "[document]"):
            break
        node = parent
        if node.find("h3") is not None:
            break
    return node


def _video_from_anchor(anchor: Tag) -> Optional[VideoResult]:
    url = clean_url(str(anchor.get("href", "")))
    if not is_youtube_url(url):
        return None

    container = _result_container(anchor)
    heading = anchor.find("h3") or container.find("h3")
    raw_title = heading.get_text(" ", strip=True) if heading else ""
    if not raw_title:
        raw_title = anchor.get_text(" ", strip=True)
    title = clean_title(raw_title)
    if len(title) < MIN_TITLE_LENGTH:
        return None

    text = clean_description(container.get_text(" ", strip=True))
    description = clean_description(text.replace(raw_title, " "))
    duration = DURATION_RE.search(text)
    views = VIEWS_RE.search(text)

    return VideoResult(
        title=title,
        url=url,
        description=description[:MAX_DESCRIPTION_CHARS] or NO_DESCRIPTION,
        duration=duration.group(1) if duration else None,
        channel=extract_channel(raw_title),
        views=views.group(1) if views else None,
    )


def parse_video_results(html: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[VideoResult]:
    """
    Extract YouTube videos from a rendered search results page.

    Duplicate URLs are collapsed; at most `limit` results are returned.
    """
    soup = BeautifulSoup(html, "lxml")
    videos: List[VideoResult] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        video = _video_from_anchor(anchor)
        if video is None or video.url in seen:
            continue
        seen.add(video.url)
        videos.append(video)
        if len(videos) >= limit:
            break
    return videos


class GoogleVideoScraper:
    """
    Searches Google's video tab with a shared headless Chromium.

    initialize()/close() manage the browser; search methods expect a running
    browser and raise ScrapeError otherwise.
    """

    def __init__(
        self,
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
        navigation_timeout_ms: int = BROWSER_NAVIGATION_TIMEOUT_MS,
        selector_timeout_ms: int = BROWSER_SELECTOR_TIMEOUT_MS,
    ) -> None:
        self.headless = headless
        self.user_agent = user_agent
        self.navigation_timeout_ms = navigation_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def initialize(self) -> None:
        """Launch Chromium unless a connected browser already exists."""
        if self.is_connected():
            return

        # Drop handles left behind by a crashed browser
        await self.close()
        logger.info("Launching headless Chromium")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=list(BROWSER_LAUNCH_ARGS),
            )
        except Exception as e:
            await self.close()
            raise ScrapeError(
                f"Failed to launch browser: {e}", ErrorCategory.BROWSER_LAUNCH, cause=e
            ) from e

    async def close(self) -> None:
        """Close the browser and stop Playwright. Safe to call repeatedly."""
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except PlaywrightError as e:
                logger.warning(f"Error stopping Playwright: {e}")

    async def is_healthy(self) -> bool:
        try:
            await self.initialize()
        except ScrapeError as e:
            logger.warning(f"Scraper health check failed: {e}")
            return False
        return self.is_connected()

    async def search_videos(
        self, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> List[VideoResult]:
        """
        Search Google videos for `query` and return up to `limit` YouTube results.

        Raises:
            ScrapeError: browser not running, navigation failed, or Google
                served its automated-traffic page
        """
        query = (query or "").strip()
        if not query:
            raise ScrapeError("Search query must not be empty", ErrorCategory.INVALID_INPUT)
        if self._browser is None or not self._browser.is_connected():
            raise ScrapeError("Browser not initialized", ErrorCategory.BROWSER_ERROR)

        search_url = build_search_url(query)
        logger.debug(f"Scraping {search_url}")
        context = await self._browser.new_context(
            user_agent=self.user_agent,
            locale="en-US",
            viewport={"width": 1280, "height": 720},
        )
        try:
            page = await context.new_page()
            await page.goto(
                search_url,
                wait_until="networkidle",
                timeout=self.navigation_timeout_ms,
            )
            try:
                await page.wait_for_selector(
                    YOUTUBE_LINK_SELECTOR, timeout=self.selector_timeout_ms
                )
            except PlaywrightTimeoutError:
                logger.debug("No YouTube link appeared in time; parsing page as-is")
            html = await page.content()
            page_url = page.url
        except PlaywrightError as e:
            raise ScrapeError(
                f"Failed to scrape videos: {e}", classify_playwright_error(e), cause=e
            ) from e
        finally:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing browser context: {e}")

        if is_detection_page(html, page_url):
            raise ScrapeError(
                "Google blocked the automated search (unusual traffic page)",
                ErrorCategory.DETECTION_BLOCK,
            )

        videos = parse_video_results(html, limit)
        logger.info(f"Found {len(videos)} videos for {query!r}")
        return videos

    async def get_best_video(self, query: str) -> VideoResult:
        """Return the top result among the first few candidates."""
        videos = await self.search_videos(query, BEST_VIDEO_CANDIDATES)
        if not videos:
            raise ScrapeError(
                f"No videos found for query: {query}", ErrorCategory.EMPTY_RESULT
            )
        return videos[0]


def build_session_guard(
    scraper: GoogleVideoScraper, config: Optional[LearnFlowConfig] = None
) -> SessionGuard:
    """Wrap the scraper's browser lifecycle in a SessionGuard."""
    config = config or LearnFlowConfig()
    return SessionGuard(
        scraper.initialize,
        scraper.close,
        max_attempts=config.init_max_attempts,
        max_retries=config.operation_max_retries,
    )


async def guarded_search(
    guard: SessionGuard,
    scraper: GoogleVideoScraper,
    query: str,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> List[VideoResult]:
    return await guard.run_with_retry(
        lambda: scraper.search_videos(query, limit), "searchVideos"
    )


async def guarded_best_video(
    guard: SessionGuard, scraper: GoogleVideoScraper, query: str
) -> VideoResult:
    videos = await guard.run_with_retry(
        lambda: scraper.search_videos(query, BEST_VIDEO_CANDIDATES), "getBestVideo"
    )
    return videos[0]
