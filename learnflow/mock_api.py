"""
Offline stand-in for the OpenAI chat completions client.

MockOpenAIClient exposes the same `client.chat.completions.create(...)` call
as AsyncOpenAI, so LanguageModelService runs unchanged against it (`--mock`
on the CLI, and every LLM test).

Features:
- Deterministic canned JSON per prompt type (learning path, best video,
  summary, knowledge check)
- Configurable error scenarios raising real openai exception types
- Malformed, truncated and empty replies for JSON extraction paths
- force_failure_count: fail exactly N calls before succeeding
- Call counting for assertions

Thread Safety:
- The module-level config is guarded by _config_lock; a client without its
  own config takes a snapshot at call time
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

import httpx
from openai import APIConnectionError, APITimeoutError, RateLimitError

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4  # rough English average, used for usage numbers
PROMPT_HASH_LENGTH = 8
MOCK_MODEL = "gpt-4o-mock"
_MOCK_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class MockErrorScenario(Enum):
    """Error scenarios that can be simulated by the mock."""

    NONE = auto()  # Normal response
    RATE_LIMIT = auto()  # 429 rate limit error
    QUOTA_EXCEEDED = auto()  # 429 insufficient_quota
    TIMEOUT = auto()  # API timeout
    CONNECTION_ERROR = auto()  # Network connection failed
    EMPTY_RESPONSE = auto()  # Empty content in response
    MALFORMED_JSON = auto()  # Content has no parseable JSON
    TRUNCATED_JSON = auto()  # Content cut off mid-object (max_tokens hit)


@dataclass
class MockOpenAIConfig:
    """
    Configuration for mock OpenAI behavior.

    Attributes:
        error_scenario: which failure to simulate (NONE for success)
        force_failure_count: fail this many calls, then succeed. A forced
            failure uses error_scenario, or CONNECTION_ERROR when that is NONE
        delay_seconds: simulated latency (0 for instant)
        custom_responses: prompt hash -> reply content, see create_custom_response_key()
    """

    error_scenario: MockErrorScenario = MockErrorScenario.NONE
    force_failure_count: int = 0
    delay_seconds: float = 0.0
    model: str = MOCK_MODEL
    custom_responses: Dict[str, str] = field(default_factory=dict)


_mock_config: MockOpenAIConfig = MockOpenAIConfig()
_config_lock = threading.Lock()


def configure_mock_openai(config: MockOpenAIConfig) -> None:
    """
    Configure the default behavior of clients created without a config.

    DO NOT: Access _mock_config directly - always use this function.
    """
    global _mock_config
    with _config_lock:
        _mock_config = config


def reset_mock_openai() -> None:
    global _mock_config
    with _config_lock:
        _mock_config = MockOpenAIConfig()


def create_custom_response_key(prompt: str) -> str:
    """
    Hash key for MockOpenAIConfig.custom_responses.

    Example:
        key = create_custom_response_key(prompt)
        configure_mock_openai(MockOpenAIConfig(custom_responses={key: '[...]'}))
    """
    return hashlib.sha256(prompt.encode()).hexdigest()[:PROMPT_HASH_LENGTH]


# ---------------------------------------------------------------------------
# Response objects (attribute-compatible with openai's ChatCompletion)
# ---------------------------------------------------------------------------


@dataclass
class MockMessage:
    content: Optional[str]
    role: str = "assistant"


@dataclass
class MockChoice:
    message: MockMessage
    index: int = 0
    finish_reason: str = "stop"


@dataclass
class MockUsage:
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class MockChatCompletion:
    id: str
    model: str
    choices: List[MockChoice]
    usage: MockUsage
    created: int = field(default_factory=lambda: int(time.time()))
    object: str = "chat.completion"


# ---------------------------------------------------------------------------
# Canned content
# ---------------------------------------------------------------------------


def _learning_path(topic_hint: str) -> List[Dict[str, str]]:
    return [
        {
            "title": "Get the Big Picture",
            "description": f"Learn what {topic_hint} is and where it is used.",
            "emoji": "🧭",
            "timeToComplete": "1 hour",
        },
        {
            "title": "Core Concepts",
            "description": "Work through the fundamental ideas with short exercises.",
            "emoji": "🧱",
            "timeToComplete": "1 week",
        },
        {
            "title": "Build Something",
            "description": "Apply what you learned in a small end-to-end project.",
            "emoji": "🛠️",
            "timeToComplete": "2 weeks",
        },
    ]


def _canned_content(prompt: str) -> str:
    lowered = prompt.lower()
    if "learning path designer" in lowered:
        topic = prompt.split('"')[1] if prompt.count('"') >= 2 else "the topic"
        return json.dumps(_learning_path(topic), ensure_ascii=False, indent=2)
    if "best educational videos" in lowered:
        return json.dumps(
            {
                "title": "Learn in 20 Minutes - Beginner Crash Course",
                "url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                "description": "A concise, beginner-friendly introduction.",
            },
            indent=2,
        )
    if "knowledge check" in lowered:
        return "```json\n" + json.dumps(
            {
                "questions": [
                    {
                        "question": "What is the main idea of the video?",
                        "options": [
                            "Breaking a topic into small steps",
                            "Memorizing definitions",
                            "Skipping the basics",
                            "Watching at double speed",
                        ],
                        "answer": "Breaking a topic into small steps",
                        "explanation": "The video builds the topic up step by step.",
                    }
                ]
            },
            indent=2,
        ) + "\n```"
    if "summarize the following video transcript" in lowered:
        return json.dumps(
            {
                "summary": "The video introduces the topic and walks through its key ideas.",
                "topics": ["introduction", "key ideas", "examples"],
            }
        )
    return json.dumps({"ok": True})


def _raise_for(scenario: MockErrorScenario) -> None:
    if scenario is MockErrorScenario.RATE_LIMIT:
        raise RateLimitError(
            "Rate limit exceeded",
            response=httpx.Response(429, request=_MOCK_REQUEST),
            body={"message": "Rate limit exceeded", "type": "rate_limit_error"},
        )
    if scenario is MockErrorScenario.QUOTA_EXCEEDED:
        raise RateLimitError(
            "You exceeded your current quota",
            response=httpx.Response(429, request=_MOCK_REQUEST),
            body={
                "message": "You exceeded your current quota",
                "type": "insufficient_quota",
                "code": "insufficient_quota",
            },
        )
    if scenario is MockErrorScenario.TIMEOUT:
        raise APITimeoutError(request=_MOCK_REQUEST)
    if scenario is MockErrorScenario.CONNECTION_ERROR:
        raise APIConnectionError(message="Connection failed", request=_MOCK_REQUEST)


def _scenario_content(scenario: MockErrorScenario, content: str) -> Optional[str]:
    if scenario is MockErrorScenario.EMPTY_RESPONSE:
        return ""
    if scenario is MockErrorScenario.MALFORMED_JSON:
        return "Sure! Here is what you asked for: {not valid json"
    if scenario is MockErrorScenario.TRUNCATED_JSON:
        return content[: max(1, len(content) // 2)]
    return content


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class _MockCompletions:
    def __init__(self, owner: "MockOpenAIClient") -> None:
        self._owner = owner

    async def create(self, **kwargs: Any) -> MockChatCompletion:
        return await self._owner._create(**kwargs)


class _MockChat:
    def __init__(self, owner: "MockOpenAIClient") -> None:
        self.completions = _MockCompletions(owner)


class MockOpenAIClient:
    """
    Mock AsyncOpenAI client.

    Args:
        config: fixed behavior for this client; when None the module-level
            config (configure_mock_openai) is read on every call
    """

    def __init__(self, config: Optional[MockOpenAIConfig] = None) -> None:
        self.config = config
        self.chat = _MockChat(self)
        self.call_count = 0
        self.calls: List[Dict[str, Any]] = []
        self._forced_failures = 0
        self.closed = False

    def _snapshot(self) -> MockOpenAIConfig:
        if self.config is not None:
            return self.config
        with _config_lock:
            return _mock_config

    async def _create(self, **kwargs: Any) -> MockChatCompletion:
        self.call_count += 1
        self.calls.append(kwargs)
        config = self._snapshot()

        messages = kwargs.get("messages")
        if not messages:
            raise ValueError(
                "MockOpenAIClient.chat.completions.create() called without messages. "
                "This indicates a bug in the calling code."
            )
        prompt = str(messages[-1].get("content", ""))

        if config.delay_seconds > 0:
            await asyncio.sleep(config.delay_seconds)

        scenario = config.error_scenario
        if config.force_failure_count > 0:
            if self._forced_failures < config.force_failure_count:
                self._forced_failures += 1
                if scenario is MockErrorScenario.NONE:
                    scenario = MockErrorScenario.CONNECTION_ERROR
                logger.debug(
                    f"[MOCK] forced failure {self._forced_failures}/"
                    f"{config.force_failure_count} -> {scenario.name}"
                )
            else:
                scenario = MockErrorScenario.NONE

        _raise_for(scenario)

        key = create_custom_response_key(prompt)
        content = config.custom_responses.get(key) or _canned_content(prompt)
        content = _scenario_content(scenario, content)
        finish_reason = "length" if scenario is MockErrorScenario.TRUNCATED_JSON else "stop"

        return MockChatCompletion(
            id=f"chatcmpl-mock-{key}",
            model=kwargs.get("model") or config.model,
            choices=[
                MockChoice(
                    message=MockMessage(content=content), finish_reason=finish_reason
                )
            ],
            usage=MockUsage(
                prompt_tokens=len(prompt) // CHARS_PER_TOKEN,
                completion_tokens=len(content or "") // CHARS_PER_TOKEN,
            ),
        )

    async def close(self) -> None:
        self.closed = True
