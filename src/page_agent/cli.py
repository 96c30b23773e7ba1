"""CLI entrypoint for the page agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .config import DEFAULT_BROWSER, DEFAULT_PROVIDER, AgentSettings
from .runner import run_interactive_session


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Control a web page with natural-language commands.")
    parser.add_argument("--url", required=True, help="Page to open before reading commands.")
    parser.add_argument("--headless", action="store_true", help="Run the browser in headless mode.")
    parser.add_argument(
        "--browser",
        default=DEFAULT_BROWSER,
        help="Browser engine to use (chrome, chromium, firefox, or webkit).",
    )
    parser.add_argument(
        "--provider",
        choices=("claude", "openai"),
        default=DEFAULT_PROVIDER if DEFAULT_PROVIDER in ("claude", "openai") else "claude",
        help="Model provider for intent and action generation.",
    )
    parser.add_argument("--max-retries", type=int, help="Maximum regenerate-and-execute cycles per command.")
    parser.add_argument("--timeout-ms", type=int, default=5000, help="Base timeout for element operations.")
    parser.add_argument("--profile-dir", help="Optional user data directory to reuse between runs.")
    parser.add_argument("--log-level", default="INFO", help="Python logging level.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    log_file = _configure_logging(args.log_level)
    logging.info("Log file: %s", log_file)

    try:
        settings = AgentSettings.from_env(provider=args.provider, max_retries=args.max_retries)
    except ValidationError as exc:
        raise SystemExit(f"Invalid settings: {exc}") from exc
    if not settings.api_key:
        logging.warning(
            "No API key configured for %s; only fast-path commands (scroll, navigate, reload...) will work.",
            settings.provider,
        )

    try:
        asyncio.run(
            run_interactive_session(
                url=args.url,
                settings=settings,
                headless=args.headless,
                browser=args.browser,
                profile_dir=args.profile_dir,
                timeout_ms=args.timeout_ms,
            )
        )
    except KeyboardInterrupt:
        logging.info("Interrupted; closing browser.")


def _configure_logging(log_level: str) -> Path:
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)
    log_file = log_dir / f"page-agent-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[stream_handler, file_handler])
    return log_file


if __name__ == "__main__":
    main()
