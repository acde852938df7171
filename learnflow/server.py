"""
FastAPI application exposing LearnFlow over HTTP.

Every response uses the same envelope:

    {"success": bool, "data": ..., "error": "...", "details": "..."}

Provides:
- create_app() - builds the app around a scraper, its SessionGuard and the
  language-model service (all injectable for tests)
- Exception handlers mapping LearnFlowError categories to HTTP statuses

DESIGN NOTES:
- Services are built eagerly in create_app(); the lifespan only tears them
  down, so uvicorn's SIGINT/SIGTERM handling closes the browser
- Exhausted browser retries are 503 with Retry-After; clients may retry the
  whole request later
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ._version import __version__
from .config import (
    DEFAULT_TRANSCRIPT_LANGUAGE,
    RETRY_AFTER_SECONDS,
    LearnFlowConfig,
    clamp_search_limit,
)
from .error_handler import (
    ErrorCategory,
    LearnFlowError,
    NoJsonFound,
    get_error_description,
    http_status_for,
)
from .llm import LanguageModelService
from .scraper import (
    GoogleVideoScraper,
    build_session_guard,
    guarded_best_video,
    guarded_search,
)
from .session_guard import SessionGuard
from .transcripts import fetch_transcript, normalize_youtube_url

logger = logging.getLogger(__name__)


class TopicRequest(BaseModel):
    topic: Optional[str] = None


class SearchRequest(BaseModel):
    query: Optional[str] = None
    limit: Optional[int] = None


class BestVideoRequest(BaseModel):
    query: Optional[str] = None


class TranscriptRequest(BaseModel):
    videoUrl: Optional[str] = None
    language: Optional[str] = None


class FormCreateRequest(BaseModel):
    videoUrl: Optional[str] = None


def envelope(
    data: Any = None,
    error: Optional[str] = None,
    details: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build the response body, leaving out empty keys."""
    body: Dict[str, Any] = {"success": error is None}
    if data is not None:
        body["data"] = data
    if error is not None:
        body["error"] = error
    if details is not None:
        body["details"] = details
    body.update(extra)
    return body


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(error=error, details=details))


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise LearnFlowError(
            f"{field[0].upper()}{field[1:]} is required and must be a string.",
            ErrorCategory.INVALID_INPUT,
        )
    return value.strip()


async def learnflow_error_handler(request: Request, exc: LearnFlowError) -> JSONResponse:
    status_code = http_status_for(exc)
    cause = getattr(exc, "last_error", None) or exc.cause
    details = str(cause) if cause is not None else get_error_description(exc.category)
    extra: Dict[str, Any] = {}
    if isinstance(exc, NoJsonFound):
        extra["raw"] = exc.raw

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({status_code}): {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")

    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if status_code == 503 else None
    return JSONResponse(
        status_code=status_code,
        content=envelope(error=exc.message, details=details, **extra),
        headers=headers,
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    return error_response(400, "Invalid request body", problems)


def create_app(
    config: Optional[LearnFlowConfig] = None,
    scraper: Optional[GoogleVideoScraper] = None,
    llm: Optional[LanguageModelService] = None,
    guard: Optional[SessionGuard] = None,
) -> FastAPI:
    """
    Build the LearnFlow FastAPI application.

    Args:
        config: settings; defaults are used when omitted
        scraper: browser scraper (a fresh GoogleVideoScraper by default)
        llm: language-model service (built from config by default)
        guard: session guard around the scraper (built from config by default)
    """
    config = config or LearnFlowConfig()
    scraper = scraper or GoogleVideoScraper(headless=config.headless)
    guard = guard or build_session_guard(scraper, config)
    llm = llm or LanguageModelService.from_config(config)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(f"LearnFlow API v{__version__} starting (model={llm.model})")
        yield
        logger.info("Shutting down: closing browser session")
        await guard.close()
        await llm.close()

    app = FastAPI(title="LearnFlow API", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.scraper = scraper
    app.state.guard = guard
    app.state.llm = llm

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LearnFlowError, learnflow_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]

    @app.get("/")
    async def root() -> Dict[str, Any]:
        return {"ok": True, "message": "LearnFlow API is running"}

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        # Reports state only; never launches the browser
        return envelope(
            data={
                "version": __version__,
                "model": llm.model,
                "mock": config.mock,
                "browserConnected": scraper.is_connected(),
                "session": guard.status().to_dict(),
            }
        )

    @app.post("/api/learning-path")
    async def learning_path(body: TopicRequest) -> Dict[str, Any]:
        topic = _require_text(body.topic, "topic")
        steps = await llm.generate_learning_path(topic)
        return envelope(data=steps)

    @app.post("/api/best-video")
    async def best_video(body: TopicRequest) -> Dict[str, Any]:
        topic = _require_text(body.topic, "topic")
        video = await llm.recommend_video(topic)
        return envelope(data=video)

    @app.post("/api/videos/search")
    async def search_videos(body: SearchRequest) -> Dict[str, Any]:
        query = _require_text(body.query, "query")
        videos = await guarded_search(guard, scraper, query, clamp_search_limit(body.limit))
        return envelope(data=[video.to_dict() for video in videos])

    @app.post("/api/videos/best")
    async def best_scraped_video(body: BestVideoRequest) -> Dict[str, Any]:
        query = _require_text(body.query, "query")
        video = await guarded_best_video(guard, scraper, query)
        return envelope(data=video.to_dict())

    @app.post("/api/youtube/transcript")
    async def transcript(body: TranscriptRequest) -> Dict[str, Any]:
        video_url = _require_text(body.videoUrl, "videoUrl")
        data = await fetch_transcript(
            video_url, language=body.language or DEFAULT_TRANSCRIPT_LANGUAGE
        )
        return envelope(
            data={
                "videoId": data.video_id,
                "title": data.title,
                "language": data.language,
                "transcript": data.transcript,
            }
        )

    @app.post("/api/createFormData/form/create")
    async def create_form(body: FormCreateRequest) -> Any:
        try:
            video_url = normalize_youtube_url(body.videoUrl)
        except ValueError as e:
            return error_response(400, str(e))

        data = await fetch_transcript(video_url)
        extracted = await llm.summarize_content(data.transcript)
        topics: List[str] = extracted["topics"]
        knowledge_check = await llm.generate_knowledge_check(
            data.transcript, extracted["summary"], topics
        )
        return envelope(
            data={
                "extracted": {
                    "videoId": data.video_id,
                    "title": data.title,
                    "transcript": data.transcript,
                    "summary": extracted["summary"],
                    "topics": topics,
                },
                "knowledgeCheck": knowledge_check,
            },
            message="YouTube content extracted and knowledge check generated successfully",
        )

    return app
