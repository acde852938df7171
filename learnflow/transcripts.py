"""
YouTube transcript retrieval.

Provides:
- extract_video_id() / normalize_youtube_url() input parsing
- fetch_transcript() via youtube-transcript-api (run in a worker thread)
- fetch_video_title() via the public oEmbed endpoint

Library failures are mapped to TranscriptError categories by exception type.
"""

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import requests
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from .config import (
    DEFAULT_TRANSCRIPT_LANGUAGE,
    HTTP_REQUEST_TIMEOUT,
    MIN_TRANSCRIPT_LENGTH,
    YOUTUBE_OEMBED_URL,
)
from .error_handler import ErrorCategory, TranscriptError

logger = logging.getLogger(__name__)

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
# v=ID, youtu.be/ID, /shorts/ID, /embed/ID, /live/ID
URL_VIDEO_ID_RE = re.compile(
    r"(?:v=|youtu\.be/|/shorts/|/embed/|/live/)([A-Za-z0-9_-]{11})"
)
SOUND_CUE_RE = re.compile(r"\[.*?\]")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class TranscriptData:
    transcript: str
    language: str
    video_id: str
    title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_youtube_host(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    hostname = hostname.lower()
    return (
        hostname == "youtube.com"
        or hostname.endswith(".youtube.com")
        or hostname == "youtu.be"
    )


def is_youtube_url(url: str) -> bool:
    try:
        return is_youtube_host(urlparse(url).hostname)
    except ValueError:
        return False


def normalize_youtube_url(value: Any) -> str:
    """
    Validate and normalize a user-supplied YouTube URL.

    Schemeless input is accepted only for "www.", "youtube.com" and
    "m.youtube.com" prefixes, which get "https://" prepended.

    Raises:
        ValueError: the value is missing, malformed, or not a YouTube URL
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Missing or invalid videoUrl")

    url = value.strip()
    if not re.match(r"^https?://", url, re.IGNORECASE):
        if url.startswith(("www.", "youtube.com", "m.youtube.com")):
            url = "https://" + url
        else:
            raise ValueError("Missing or invalid videoUrl")

    try:
        hostname = urlparse(url).hostname
    except ValueError as e:
        raise ValueError("Malformed videoUrl") from e
    if not hostname:
        raise ValueError("Malformed videoUrl")
    if not is_youtube_host(hostname):
        raise ValueError("Provided URL is not a YouTube URL")
    return url


def extract_video_id(value: str) -> str:
    """
    Return the 11-character video id from a raw id or any YouTube URL.

    Raises:
        TranscriptError: (INVALID_INPUT) no id could be found
    """
    candidate = (value or "").strip()
    if VIDEO_ID_RE.match(candidate):
        return candidate

    try:
        query = parse_qs(urlparse(candidate).query)
    except ValueError:
        query = {}
    for v in query.get("v", []):
        if VIDEO_ID_RE.match(v):
            return v

    match = URL_VIDEO_ID_RE.search(candidate)
    if match:
        return match.group(1)

    raise TranscriptError(
        f"Invalid YouTube URL or video ID: {value}", ErrorCategory.INVALID_INPUT
    )


def clean_transcript_text(text: str) -> str:
    """Drop [Music]-style cues and collapse whitespace."""
    return WHITESPACE_RE.sub(" ", SOUND_CUE_RE.sub("", text)).strip()


def _fetch_sync(
    api: YouTubeTranscriptApi, video_id: str, language: str
) -> TranscriptData:
    try:
        fetched = api.fetch(video_id, languages=[language, DEFAULT_TRANSCRIPT_LANGUAGE])
    except TranscriptsDisabled as e:
        raise TranscriptError(
            "Transcript is not available for this video",
            ErrorCategory.TRANSCRIPT_UNAVAILABLE,
            cause=e,
        ) from e
    except NoTranscriptFound as e:
        raise TranscriptError(
            f"No transcript available in '{language}' for this video",
            ErrorCategory.TRANSCRIPT_UNAVAILABLE,
            cause=e,
        ) from e
    except VideoUnavailable as e:
        raise TranscriptError(
            "Video is unavailable or private", ErrorCategory.NOT_FOUND, cause=e
        ) from e
    except CouldNotRetrieveTranscript as e:
        raise TranscriptError(
            f"Failed to extract transcript: {e}", ErrorCategory.UNKNOWN, cause=e
        ) from e

    transcript = clean_transcript_text(" ".join(snippet.text for snippet in fetched))
    if len(transcript) < MIN_TRANSCRIPT_LENGTH:
        raise TranscriptError(
            "Transcript too short to be valid", ErrorCategory.TRANSCRIPT_UNAVAILABLE
        )

    return TranscriptData(
        transcript=transcript,
        language=getattr(fetched, "language_code", None) or language,
        video_id=video_id,
    )


def fetch_video_title(video_id: str, session: Optional[requests.Session] = None) -> str:
    """Look up a video title via oEmbed; returns "" when unavailable."""
    http = session or requests
    try:
        response = http.get(
            YOUTUBE_OEMBED_URL,
            params={
                "url": f"https://www.youtube.com/watch?v={video_id}",
                "format": "json",
            },
            timeout=HTTP_REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return str(response.json().get("title", ""))
    except (requests.RequestException, ValueError) as e:
        logger.info(f"Could not fetch title for video {video_id}, proceeding without it: {e}")
        return ""


async def fetch_transcript(
    video: str,
    language: str = DEFAULT_TRANSCRIPT_LANGUAGE,
    api: Optional[YouTubeTranscriptApi] = None,
    with_title: bool = True,
) -> TranscriptData:
    """
    Fetch and clean the transcript of a YouTube video.

    Args:
        video: video URL or 11-character id
        language: preferred caption language (English is the fallback)
        api: transcript client, injectable for tests
        with_title: also look up the title via oEmbed

    Raises:
        TranscriptError: invalid input or transcript unavailable
    """
    video_id = extract_video_id(video)
    client = api or YouTubeTranscriptApi()
    logger.info(f"Fetching transcript for video ID: {video_id}")

    data = await asyncio.to_thread(_fetch_sync, client, video_id, language)
    if with_title:
        data.title = await asyncio.to_thread(fetch_video_title, video_id)

    logger.info(
        f"Extracted transcript for {video_id} ({len(data.transcript)} characters)"
    )
    return data
