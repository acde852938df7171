"""
Configuration Module for LearnFlow.

Provides:
- YAML/JSON configuration file support
- OpenAI model configuration with validation
- Environment variable overrides (.env files included)
- Centralized constants for all timeouts, retries, and limits

DESIGN NOTES:
- All magic numbers should be defined here as constants
- Constants are organized by category (session, browser, network, API)
- Precedence is: defaults < environment < config file < CLI overrides

DO NOT:
- Scatter timeout/retry values throughout the codebase
- Add magic numbers to other files - add constants here first
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Final, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# =============================================================================
# CENTRALIZED CONSTANTS - Single source of truth for all configuration values
# =============================================================================

# --- Browser Session Guard ---
# Initialization backoff is exponential: 2s, 4s, 8s... (base ** attempt)
SESSION_INIT_MAX_ATTEMPTS: Final[int] = 3
SESSION_INIT_BACKOFF_BASE: Final[float] = 2.0
SESSION_INIT_MAX_DELAY_SECONDS: Final[float] = 30.0
# Operation retries use a linear schedule: 2s, 4s, 6s... (delay * (attempt + 1))
OPERATION_MAX_RETRIES: Final[int] = 2
OPERATION_RETRY_DELAY_SECONDS: Final[float] = 2.0

# --- Browser Timeouts (milliseconds, Playwright convention) ---
BROWSER_NAVIGATION_TIMEOUT_MS: Final[int] = 30000  # page.goto on Google search
BROWSER_SELECTOR_TIMEOUT_MS: Final[int] = 5000  # wait for first YouTube link

# --- Network Timeouts (seconds) ---
HTTP_REQUEST_TIMEOUT: Final[int] = 10  # oEmbed title lookups
OPENAI_REQUEST_TIMEOUT: Final[float] = 120.0

# --- API Configuration ---
DEFAULT_MODEL: Final[str] = "gpt-4o"
# Internal OpenAI retries are disabled; callers own retry policy
OPENAI_MAX_RETRIES: Final[int] = 0

# --- Search Limits ---
DEFAULT_SEARCH_LIMIT: Final[int] = 5
MAX_SEARCH_LIMIT: Final[int] = 10
BEST_VIDEO_CANDIDATES: Final[int] = 3
MIN_TITLE_LENGTH: Final[int] = 4  # titles of 3 chars or fewer are noise

# --- Transcripts ---
DEFAULT_TRANSCRIPT_LANGUAGE: Final[str] = "en"
MIN_TRANSCRIPT_LENGTH: Final[int] = 10
# Transcripts are cut before being embedded in prompts
MAX_TRANSCRIPT_PROMPT_CHARS: Final[int] = 12000

# --- HTTP Server ---
DEFAULT_HOST: Final[str] = "0.0.0.0"
DEFAULT_PORT: Final[int] = 3000
RETRY_AFTER_SECONDS: Final[int] = 30  # Retry-After header on 503 responses

GOOGLE_VIDEO_SEARCH_URL: Final[str] = "https://www.google.com/search"
YOUTUBE_OEMBED_URL: Final[str] = "https://www.youtube.com/oembed"

DEFAULT_USER_AGENT: Final[str] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_LAUNCH_ARGS: Final[Tuple[str, ...]] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor",
)


# Generation presets per endpoint: (temperature, max_tokens)
LEARNING_PATH_PARAMS: Final[Tuple[float, int]] = (0.7, 700)
BEST_VIDEO_PARAMS: Final[Tuple[float, int]] = (0.5, 400)
SUMMARY_PARAMS: Final[Tuple[float, int]] = (0.3, 600)
KNOWLEDGE_CHECK_PARAMS: Final[Tuple[float, int]] = (0.4, 1500)

SUPPORTED_MODELS: Dict[str, str] = {
    "gpt-4o": "Default model for learning paths and quizzes",
    "gpt-4o-mini": "Cheaper model, good enough for summaries",
    "gpt-4.1": "Higher quality structured output",
    "gpt-4.1-mini": "Balanced cost and quality",
}

LOG_LEVELS: Final[Tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class LearnFlowConfig:
    """
    Main configuration class for LearnFlow.

    Supports loading from YAML files, JSON files, environment variables,
    or direct instantiation.
    """

    # HTTP server
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    # OpenAI settings
    model: str = DEFAULT_MODEL
    api_key: Optional[str] = None  # If None, reads from OPENAI_API_KEY env var

    # Browser session
    headless: bool = True
    init_max_attempts: int = SESSION_INIT_MAX_ATTEMPTS
    operation_max_retries: int = OPERATION_MAX_RETRIES

    # Logging / development
    log_level: str = "INFO"
    mock: bool = False  # Use the offline mock LLM client

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        if self.model not in SUPPORTED_MODELS:
            logger.warning(
                f"Model '{self.model}' not in supported list. "
                f"Supported models: {list(SUPPORTED_MODELS.keys())}. "
                "Proceeding anyway as OpenAI may have new models."
            )

        if not 0 < int(self.port) < 65536:
            raise ValueError("port must be between 1 and 65535")
        self.port = int(self.port)

        if self.init_max_attempts < 1:
            raise ValueError("init_max_attempts must be at least 1")

        if self.operation_max_retries < 0:
            raise ValueError("operation_max_retries must be non-negative")

        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    def get_api_key(self) -> str:
        """Get the OpenAI API key from config or environment."""
        if self.api_key:
            return self.api_key
        env_key = os.environ.get("OPENAI_API_KEY")
        if not env_key:
            raise ValueError(
                "OpenAI API key not found. Set OPENAI_API_KEY environment variable "
                "or provide api_key in configuration."
            )
        return env_key

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (the API key is never serialized)."""
        return {
            "host": self.host,
            "port": self.port,
            "model": self.model,
            "headless": self.headless,
            "init_max_attempts": self.init_max_attempts,
            "operation_max_retries": self.operation_max_retries,
            "log_level": self.log_level,
            "mock": self.mock,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearnFlowConfig":
        """Create config from dictionary, ignoring unknown keys."""
        return cls(**known_settings(data))

    @classmethod
    def from_yaml(cls, path: str | Path) -> "LearnFlowConfig":
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If YAML is invalid or not a mapping
        """
        return cls.from_dict(read_yaml_mapping(path))

    @classmethod
    def from_json(cls, path: str | Path) -> "LearnFlowConfig":
        """Load configuration from a JSON file."""
        return cls.from_dict(read_json_mapping(path))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "LearnFlowConfig":
        """Build configuration from environment variables only."""
        return cls.from_dict(env_overrides(environ))

    def save_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        with open(Path(path), "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


CONFIG_FIELDS: Final[Tuple[str, ...]] = (
    "host",
    "port",
    "model",
    "api_key",
    "headless",
    "init_max_attempts",
    "operation_max_retries",
    "log_level",
    "mock",
)


def known_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the keys LearnFlowConfig understands."""
    return {k: v for k, v in data.items() if k in CONFIG_FIELDS}


def read_yaml_mapping(path: str | Path) -> Dict[str, Any]:
    """Read a YAML config file as a plain mapping (only the keys it sets)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in configuration file: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a YAML mapping/dictionary")
    return data


def read_json_mapping(path: str | Path) -> Dict[str, Any]:
    """Read a JSON config file as a plain mapping (only the keys it sets)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a JSON object")
    return data


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Read configuration overrides from environment variables.

    Recognized: HOST, PORT, OPENAI_API_KEY, LEARNFLOW_MODEL,
    LEARNFLOW_LOG_LEVEL, LEARNFLOW_HEADLESS.
    """
    env = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    if env.get("HOST"):
        overrides["host"] = env["HOST"]
    if env.get("PORT"):
        try:
            overrides["port"] = int(env["PORT"])
        except ValueError:
            logger.warning(f"Ignoring non-numeric PORT value: {env['PORT']!r}")
    if env.get("OPENAI_API_KEY"):
        overrides["api_key"] = env["OPENAI_API_KEY"]
    if env.get("LEARNFLOW_MODEL"):
        overrides["model"] = env["LEARNFLOW_MODEL"]
    if env.get("LEARNFLOW_LOG_LEVEL"):
        overrides["log_level"] = env["LEARNFLOW_LOG_LEVEL"]
    if env.get("LEARNFLOW_HEADLESS"):
        overrides["headless"] = env["LEARNFLOW_HEADLESS"].lower() not in (
            "0",
            "false",
            "no",
        )
    return overrides


def load_config(
    config_path: str | Path | None = None,
    cli_overrides: Dict[str, Any] | None = None,
    use_env: bool = True,
) -> LearnFlowConfig:
    """
    Load configuration with precedence: CLI args > config file > env > defaults.

    Args:
        config_path: Optional path to YAML or JSON config file
        cli_overrides: Optional dictionary of CLI argument overrides
        use_env: Whether to read .env and environment variables

    Returns:
        Merged LearnFlowConfig instance
    """
    config_dict: Dict[str, Any] = {}

    if use_env:
        load_dotenv()
        config_dict.update(env_overrides())

    if config_path:
        path = Path(config_path)
        if path.suffix in (".yml", ".yaml"):
            file_settings = known_settings(read_yaml_mapping(path))
        elif path.suffix == ".json":
            file_settings = known_settings(read_json_mapping(path))
        else:
            raise ValueError(
                f"Unsupported config file format: {path.suffix}. "
                "Use .yaml, .yml, or .json"
            )
        # Keys the file leaves out keep their environment values
        config_dict.update(file_settings)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:  # Only override if explicitly set
                config_dict[key] = value

    return LearnFlowConfig.from_dict(config_dict)


def generate_example_config(path: str | Path = "learnflow_config.yaml") -> None:
    """Generate an example configuration file with comments."""
    example_yaml = """# LearnFlow Configuration File
# ============================
# All settings are optional - defaults will be used if not specified.
# The OpenAI API key is read from OPENAI_API_KEY (or a .env file).

# HTTP server
host: 0.0.0.0
port: 3000

# model: OpenAI model used for learning paths, summaries and quizzes
model: gpt-4o

# Browser session
# headless: run Chromium without a window
headless: true
# init_max_attempts: browser launch attempts before giving up (2s, 4s... between)
init_max_attempts: 3
# operation_max_retries: extra attempts for a scrape after the first one fails
operation_max_retries: 2

# log_level: DEBUG, INFO, WARNING or ERROR
log_level: INFO

# mock: answer LLM requests with the offline mock client
mock: false
"""

    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(example_yaml)
    logger.info(f"Example configuration saved to: {path}")


def clamp_search_limit(limit: Optional[int]) -> int:
    """Clamp a requested result count into [1, MAX_SEARCH_LIMIT]."""
    if limit is None:
        return DEFAULT_SEARCH_LIMIT
    return max(1, min(int(limit), MAX_SEARCH_LIMIT))


def supported_model_names() -> List[str]:
    return list(SUPPORTED_MODELS.keys())
