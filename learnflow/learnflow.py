"""
LearnFlow command-line interface.

Subcommands:
- serve          run the HTTP API under uvicorn
- search         scrape Google videos for a query
- best-video     top scraped video for a query
- transcript     fetch a YouTube transcript
- learning-path  generate a learning path for a topic

Scraper subcommands run through the same SessionGuard as the server, and the
browser is always released before the process exits.
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ._version import version as VERSION
from .config import (
    DEFAULT_SEARCH_LIMIT,
    LOG_LEVELS,
    LearnFlowConfig,
    clamp_search_limit,
    generate_example_config,
    load_config,
    supported_model_names,
)
from .error_handler import LearnFlowError, get_error_description
from .llm import LanguageModelService
from .scraper import (
    GoogleVideoScraper,
    VideoResult,
    build_session_guard,
    guarded_best_video,
    guarded_search,
)
from .transcripts import fetch_transcript

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "urllib3", "asyncio")
EXAMPLE_CONFIG_PATH = "learnflow_config.yaml"
TRANSCRIPT_PREVIEW_CHARS = 1500

console = Console()


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler and quiet chatty third-party loggers."""
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ============================
# Output
# ============================


def render_videos(videos: List[VideoResult], title: str) -> Table:
    table = Table(title=title, show_header=True, box=box.ROUNDED, expand=True)
    table.add_column("#", justify="right", style="dim", width=3)
    table.add_column("Title", style="bold")
    table.add_column("Duration", justify="right", width=9)
    table.add_column("URL", style="cyan", overflow="fold")
    for index, video in enumerate(videos, start=1):
        table.add_row(str(index), video.title, video.duration or "-", video.url)
    return table


def render_learning_path(steps: List[Dict[str, Any]], topic: str) -> Table:
    table = Table(title=f"Learning path: {topic}", show_header=True, box=box.ROUNDED)
    table.add_column("", width=3)
    table.add_column("Step", style="bold")
    table.add_column("Description")
    table.add_column("Time", justify="right", style="green")
    for step in steps:
        table.add_row(
            str(step.get("emoji", "")),
            str(step.get("title", "")),
            str(step.get("description", "")),
            str(step.get("timeToComplete", "")),
        )
    return table


def print_error(error: BaseException) -> None:
    if isinstance(error, LearnFlowError):
        console.print(
            Panel(
                f"{error.message}\n[dim]{get_error_description(error.category)}[/dim]",
                title=f"[bold red]{error.category.name}[/bold red]",
                border_style="red",
            )
        )
    else:
        console.print(f"[bold red]Error:[/bold red] {error}")


# ============================
# Commands
# ============================


async def run_scraper_command(args: argparse.Namespace, config: LearnFlowConfig) -> None:
    scraper = GoogleVideoScraper(headless=config.headless)
    guard = build_session_guard(scraper, config)
    try:
        if args.command == "search":
            limit = clamp_search_limit(args.limit)
            videos = await guarded_search(guard, scraper, args.query, limit)
            console.print(render_videos(videos, f"Videos for {args.query!r}"))
        else:
            video = await guarded_best_video(guard, scraper, args.query)
            body = f"[bold]{video.title}[/bold]\n[cyan]{video.url}[/cyan]\n\n{video.description}"
            console.print(Panel(body, title="Best video", border_style="green"))
    finally:
        await guard.close()


async def run_transcript_command(args: argparse.Namespace) -> None:
    data = await fetch_transcript(args.video, language=args.language)
    text = data.transcript
    if not args.full and len(text) > TRANSCRIPT_PREVIEW_CHARS:
        text = text[:TRANSCRIPT_PREVIEW_CHARS] + " ..."
    title = data.title or data.video_id
    console.print(
        Panel(text, title=f"{title} [{data.language}]", subtitle=f"{len(data.transcript)} chars")
    )


async def run_learning_path_command(
    args: argparse.Namespace, config: LearnFlowConfig
) -> None:
    llm = LanguageModelService.from_config(config)
    try:
        steps = await llm.generate_learning_path(args.topic)
    finally:
        await llm.close()
    console.print(render_learning_path(steps, args.topic))


def run_server(config: LearnFlowConfig) -> None:
    import uvicorn

    from .server import create_app

    app = create_app(config)
    console.print(
        f"[bold green]LearnFlow API[/bold green] v{VERSION} on "
        f"http://{config.host}:{config.port} (model: {config.model}"
        f"{', mock' if config.mock else ''})"
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


# ============================
# Entry point
# ============================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="learnflow",
        description="LearnFlow - learning paths, video search and quizzes for any topic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  Run the HTTP API:
    learnflow serve --port 3000

  Search videos from the terminal:
    learnflow search "python decorators" --limit 5
    learnflow best-video "linear algebra"

  Transcripts and learning paths:
    learnflow transcript https://www.youtube.com/watch?v=dQw4w9WgXcQ
    learnflow --mock learning-path "machine learning"
""",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default=None,
        help="Path to YAML/JSON configuration file (see --generate-config)",
        metavar="FILE",
    )
    parser.add_argument(
        "--generate-config",
        action="store_true",
        default=False,
        help=f"Generate example configuration file ({EXAMPLE_CONFIG_PATH}) and exit",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help=f"OpenAI model to use. Options: {', '.join(supported_model_names())}",
        metavar="MODEL",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        default=False,
        help="Show the Chromium window instead of running headless",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        default=False,
        help="Answer LLM requests with the offline mock client (no API key needed)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable DEBUG logging",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"LearnFlow version {VERSION}",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None, help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Port to listen on")

    search = subparsers.add_parser("search", help="Search Google for YouTube videos")
    search.add_argument("query", type=str)
    search.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_SEARCH_LIMIT,
        help=f"Number of results (default: {DEFAULT_SEARCH_LIMIT})",
    )

    best = subparsers.add_parser("best-video", help="Show the top scraped video")
    best.add_argument("query", type=str)

    transcript = subparsers.add_parser("transcript", help="Fetch a YouTube transcript")
    transcript.add_argument("video", type=str, help="Video URL or 11-character id")
    transcript.add_argument("--language", type=str, default="en")
    transcript.add_argument(
        "--full", action="store_true", default=False, help="Print the whole transcript"
    )

    path = subparsers.add_parser("learning-path", help="Generate a learning path")
    path.add_argument("topic", type=str)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the LearnFlow CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        generate_example_config(EXAMPLE_CONFIG_PATH)
        print(f"Generated example configuration: {EXAMPLE_CONFIG_PATH}")
        print(f"Edit the file and use with: learnflow --config {EXAMPLE_CONFIG_PATH} serve")
        return 0

    if args.command is None:
        parser.print_help()
        return 1

    cli_overrides: Dict[str, Any] = {
        "model": args.model,
        "mock": True if args.mock else None,
        "headless": False if args.headed else None,
        "log_level": "DEBUG" if args.verbose else args.log_level,
        "host": getattr(args, "host", None),
        "port": getattr(args, "port", None),
    }
    try:
        config = load_config(config_path=args.config, cli_overrides=cli_overrides)
    except (OSError, ValueError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2

    configure_logging(config.log_level)
    logger.debug(f"Effective configuration: {config.to_dict()}")

    if args.command == "serve":
        run_server(config)
        return 0

    try:
        if args.command in ("search", "best-video"):
            asyncio.run(run_scraper_command(args, config))
        elif args.command == "transcript":
            asyncio.run(run_transcript_command(args))
        elif args.command == "learning-path":
            asyncio.run(run_learning_path_command(args, config))
    except LearnFlowError as e:
        print_error(e)
        return 1
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
