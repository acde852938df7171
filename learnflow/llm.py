"""
Language-model service: learning paths, video recommendations, summaries
and knowledge checks.

Provides:
- LanguageModelService.complete() - one chat completion, errors typed
- generate_learning_path() / recommend_video() - the topic endpoints
- summarize_content() / generate_knowledge_check() - the quiz pipeline

DESIGN NOTES:
- The OpenAI client is created with max_retries=0. Retry policy belongs to
  callers, and the HTTP layer reports a failed call instead of stalling
- Every answer goes through extract_json(); a reply without a complete JSON
  value raises NoJsonFound carrying the raw text

DO NOT:
- Let openai exceptions escape - wrap them in LanguageModelError
- Repair truncated JSON - fail and let the client retry
"""

import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from .config import (
    BEST_VIDEO_PARAMS,
    DEFAULT_MODEL,
    KNOWLEDGE_CHECK_PARAMS,
    LEARNING_PATH_PARAMS,
    MAX_TRANSCRIPT_PROMPT_CHARS,
    OPENAI_MAX_RETRIES,
    OPENAI_REQUEST_TIMEOUT,
    SUMMARY_PARAMS,
    LearnFlowConfig,
)
from .error_handler import (
    ErrorCategory,
    LanguageModelError,
    NoJsonFound,
    classify_openai_error,
)
from .json_extraction import extract_json

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
DEFAULT_QUESTION_COUNT = 5

LEARNING_PATH_PROMPT = """
You are an expert learning path designer. For the topic "{topic}", create a concise, step-by-step learning path.
For each step, provide:
- a short, catchy title,
- a brief description,
- a relevant emoji,
- an estimated time to complete (e.g., "2 hours", "1 week").

Respond in the following JSON array format (no extra text):

[
  {{
    "title": "...",
    "description": "...",
    "emoji": "...",
    "timeToComplete": "..."
  }}
]
"""

BEST_VIDEO_PROMPT = """
You are an expert at finding the best educational videos on the internet.
For the topic or learning path "{topic}", recommend the single best video that is easy to understand and concise.
Return ONLY a JSON object with the following fields:
{{
  "title": "...",
  "url": "...",
  "description": "..."
}}
Do not include any extra text or explanation.
"""

SUMMARY_PROMPT = """
Summarize the following video transcript for a learner.
Return ONLY a JSON object with the following fields:
{{
  "summary": "a concise paragraph covering the main ideas",
  "topics": ["key topic", "..."]
}}
List between 3 and 8 topics. Do not include any extra text.

Transcript:
{transcript}
"""

KNOWLEDGE_CHECK_PROMPT = """
You write knowledge check quizzes for educational videos.
Using the transcript, summary and topics below, write {num_questions} multiple-choice questions
that test understanding of the material, not trivia.
Return ONLY a JSON object in this format:
{{
  "questions": [
    {{
      "question": "...",
      "options": ["...", "...", "...", "..."],
      "answer": "the correct option, copied exactly",
      "explanation": "one sentence on why it is correct"
    }}
  ]
}}

Summary:
{summary}

Topics: {topics}

Transcript:
{transcript}
"""


def truncate_transcript(transcript: str, limit: int = MAX_TRANSCRIPT_PROMPT_CHARS) -> str:
    """Cut a transcript to `limit` characters on a word boundary."""
    if len(transcript) <= limit:
        return transcript
    cut = transcript[:limit]
    space = cut.rfind(" ")
    if space > limit // 2:
        cut = cut[:space]
    return cut + " ..."


class LanguageModelService:
    """
    Thin async wrapper around chat completions for the LearnFlow prompts.

    Args:
        client: object exposing `chat.completions.create` (AsyncOpenAI or the
            offline MockOpenAIClient); built lazily from `api_key` if omitted
        model: model name sent with every request
        api_key: OpenAI key used when the client is built lazily
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
    ) -> None:
        self.model = model
        self._client = client
        self._api_key = api_key
        self.request_count = 0
        self.total_tokens = 0

    @classmethod
    def from_config(cls, config: LearnFlowConfig) -> "LanguageModelService":
        if config.mock:
            from .mock_api import MockOpenAIClient

            logger.info("Using offline mock language model")
            return cls(client=MockOpenAIClient(), model=config.model)
        return cls(model=config.model, api_key=config.api_key)

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(
                    api_key=self._api_key,
                    timeout=OPENAI_REQUEST_TIMEOUT,
                    max_retries=OPENAI_MAX_RETRIES,
                )
            except OpenAIError as e:
                # Raised when no key was given and OPENAI_API_KEY is unset
                raise LanguageModelError(
                    f"OpenAI client could not be created: {e}",
                    ErrorCategory.AUTHENTICATION,
                    cause=e,
                ) from e
        return self._client

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            await client.close()

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        model: Optional[str] = None,
        system: str = DEFAULT_SYSTEM_PROMPT,
    ) -> str:
        """
        Run one chat completion and return the assistant's text.

        Raises:
            LanguageModelError: the request failed, or the reply was empty
        """
        model = model or self.model
        logger.debug(
            f"Chat completion: model={model}, prompt={len(prompt)} chars, "
            f"temperature={temperature}, max_tokens={max_tokens}"
        )
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except LanguageModelError:
            raise
        except (OpenAIError, TimeoutError, ConnectionError) as e:
            category = classify_openai_error(e)
            logger.error(f"Language model request failed ({category.name}): {e}")
            raise LanguageModelError(
                f"Language model request failed: {e}", category, cause=e
            ) from e

        self.request_count += 1
        usage = getattr(response, "usage", None)
        if usage is not None:
            self.total_tokens += getattr(usage, "total_tokens", 0) or 0

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise LanguageModelError(
                "No content in model response", ErrorCategory.INVALID_RESPONSE
            )
        finish_reason = response.choices[0].finish_reason
        if finish_reason == "length":
            logger.warning(f"Model output hit max_tokens={max_tokens}; reply may be cut off")
        return content.strip()

    async def generate_learning_path(self, topic: str) -> List[Dict[str, Any]]:
        """Ask for a step-by-step learning path: [{title, description, emoji, timeToComplete}]."""
        temperature, max_tokens = LEARNING_PATH_PARAMS
        content = await self.complete(
            LEARNING_PATH_PROMPT.format(topic=topic),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        steps = extract_json(content, expect="array")
        logger.info(f"Generated learning path for {topic!r} with {len(steps)} steps")
        return steps

    async def recommend_video(self, topic: str) -> Dict[str, Any]:
        """Ask the model itself for the single best video: {title, url, description}."""
        temperature, max_tokens = BEST_VIDEO_PARAMS
        content = await self.complete(
            BEST_VIDEO_PROMPT.format(topic=topic),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return extract_json(content, expect="object")

    async def summarize_content(self, transcript: str) -> Dict[str, Any]:
        """Summarize a transcript into {summary, topics}."""
        temperature, max_tokens = SUMMARY_PARAMS
        content = await self.complete(
            SUMMARY_PROMPT.format(transcript=truncate_transcript(transcript)),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        data = extract_json(content, expect="object")
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise NoJsonFound("Summary missing from model response", raw=content[:500])
        topics = data.get("topics") or []
        if not isinstance(topics, list):
            topics = [str(topics)]
        return {"summary": summary.strip(), "topics": [str(t) for t in topics]}

    async def generate_knowledge_check(
        self,
        transcript: str,
        summary: str,
        topics: List[str],
        num_questions: int = DEFAULT_QUESTION_COUNT,
    ) -> Dict[str, Any]:
        """Write a multiple-choice quiz: {questions: [{question, options, answer, explanation}]}."""
        temperature, max_tokens = KNOWLEDGE_CHECK_PARAMS
        content = await self.complete(
            KNOWLEDGE_CHECK_PROMPT.format(
                num_questions=num_questions,
                summary=summary,
                topics=", ".join(topics) or "(none)",
                transcript=truncate_transcript(transcript),
            ),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        data = extract_json(content, expect="object")
        questions = data.get("questions")
        if not isinstance(questions, list) or not questions:
            raise NoJsonFound("Knowledge check has no questions", raw=content[:500])
        return data
