"""Launch a browser and drive the command pipeline from an interactive prompt."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, async_playwright

from .config import (
    DEFAULT_BROWSER,
    DEFAULT_SURFACE_ID,
    PLAYWRIGHT_CHANNEL,
    PLAYWRIGHT_EXECUTABLE,
    USER_DATA_DIR,
    VIEWPORT,
    AgentSettings,
)
from .executor import PlaywrightSurface
from .models import CommandResult
from .pipeline import CommandPipeline

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit"}
AFFIRMATIVE = {"y", "yes"}

LineReader = Callable[[str], Awaitable[Optional[str]]]
Writer = Callable[[str], None]


async def read_stdin_line(prompt: str) -> Optional[str]:
    """Read one line without blocking the event loop; ``None`` on end of input."""
    try:
        return await asyncio.to_thread(input, prompt)
    except EOFError:
        return None


async def run_interactive_session(
    url: str,
    settings: AgentSettings,
    *,
    headless: bool = False,
    browser: Optional[str] = None,
    profile_dir: Optional[str] = None,
    timeout_ms: int = 5000,
    read_line: LineReader = read_stdin_line,
    write: Writer = print,
) -> None:
    async with async_playwright() as pw:
        context = await _launch_browser(
            pw,
            browser_choice=(browser or DEFAULT_BROWSER).lower(),
            headless=headless,
            profile_dir=profile_dir,
        )
        try:
            page = context.pages[0] if context.pages else await context.new_page()
            await _apply_default_viewport(page)

            surface = PlaywrightSurface(timeout_ms=timeout_ms)
            surface.register(DEFAULT_SURFACE_ID, page)
            if url:
                outcome = await surface.navigate(DEFAULT_SURFACE_ID, url)
                logger.info("Initial navigation: %s", outcome.message or outcome.error)

            pipeline = CommandPipeline(settings, surface)
            write(f"Connected to {page.url}. Type a command, or 'exit' to quit.")
            await command_loop(pipeline, DEFAULT_SURFACE_ID, read_line, write, audio_feedback=settings.audio_feedback)
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                logger.debug("Browser context already closed: %s", exc)


async def command_loop(
    pipeline: CommandPipeline,
    surface_id: str,
    read_line: LineReader,
    write: Writer,
    *,
    audio_feedback: bool = False,
) -> None:
    """Read commands until ``exit``/``quit`` or end of input."""
    while True:
        line = await read_line("> ")
        if line is None:
            break
        text = line.strip()
        if not text:
            continue
        if text.lower() in EXIT_COMMANDS:
            break

        result = await pipeline.process_command(text, surface_id)
        result = await _follow_up(pipeline, surface_id, result, read_line, write)
        if result is None:
            break
        write(format_result(result))
        if audio_feedback:
            write("\a")


async def _follow_up(
    pipeline: CommandPipeline,
    surface_id: str,
    result: CommandResult,
    read_line: LineReader,
    write: Writer,
) -> Optional[CommandResult]:
    """Answer clarification and confirmation prompts until the command settles."""
    while result.requires_clarification or result.requires_confirmation:
        if result.requires_clarification:
            write(result.clarification_question or result.message)
            for index, option in enumerate(result.clarification_options, start=1):
                write(f"  {index}. {option}")
            answer = await read_line("? ")
            if answer is None:
                return None
            result = await pipeline.submit_clarification(surface_id, answer)
        else:
            write(result.confirmation_message or result.message)
            answer = await read_line("[y/N] ")
            if answer is None:
                return None
            result = await pipeline.confirm_pending(surface_id, answer.strip().lower() in AFFIRMATIVE)
    return result


def format_result(result: CommandResult) -> str:
    status = "ok" if result.success else "error"
    text = f"[{status}] {result.message}"
    if result.retry_after:
        text += f" (retry in {result.retry_after:.0f}s)"
    return text


async def _apply_default_viewport(page: Page) -> None:
    try:
        await page.set_viewport_size(VIEWPORT)
    except PlaywrightError:
        pass


async def _launch_browser(
    playwright,
    browser_choice: str,
    headless: bool,
    profile_dir: Optional[str],
) -> BrowserContext:
    user_data_dir = _prepare_user_data_dir(profile_dir, browser_choice)
    launch_kwargs: Dict[str, Any] = {
        "user_data_dir": str(user_data_dir),
        "headless": headless,
        "viewport": VIEWPORT,
    }
    if browser_choice == "chrome":
        if PLAYWRIGHT_EXECUTABLE:
            launch_kwargs["executable_path"] = PLAYWRIGHT_EXECUTABLE
        else:
            launch_kwargs["channel"] = PLAYWRIGHT_CHANNEL
        return await playwright.chromium.launch_persistent_context(**launch_kwargs)

    browser_type = getattr(playwright, browser_choice, None)
    if browser_type is None:
        raise ValueError(f"Unsupported browser engine: {browser_choice}")
    return await browser_type.launch_persistent_context(**launch_kwargs)


def _prepare_user_data_dir(profile_dir: Optional[str], browser_choice: str) -> Path:
    if profile_dir:
        dest = Path(profile_dir).expanduser()
        logger.info("Using provided %s profile directory: %s", browser_choice, dest)
    else:
        dest = USER_DATA_DIR / browser_choice
        logger.info("Using agent-managed %s profile directory: %s", browser_choice, dest)
    dest.mkdir(parents=True, exist_ok=True)
    return dest


__all__ = ["command_loop", "format_result", "read_stdin_line", "run_interactive_session"]
