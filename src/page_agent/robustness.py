"""Robust interaction helpers shared by the Playwright surface."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from playwright.async_api import Error as PlaywrightError, Locator, Page, TimeoutError as PlaywrightTimeoutError

T = TypeVar("T")

DEFAULT_BACKOFFS_MS: Sequence[int] = (300, 700, 1500)
HIGHLIGHT_MS = 300

logger = logging.getLogger(__name__)


class NonFillableElementError(RuntimeError):
    """Raised when a fill action targets something that is not an input or textarea."""


async def wait_for_page_quiet(page: Page, timeout_ms: int) -> None:
    """Best-effort wait for the DOM to stop changing after an action."""
    try:
        await page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
    except PlaywrightError:
        pass

    idle_script = """
        () => {
            const w = window;
            if (!w.__pageAgentMutationIdle) {
                w.__pageAgentMutationIdle = { last: Date.now() };
                const observer = new MutationObserver(() => {
                    w.__pageAgentMutationIdle.last = Date.now();
                });
                observer.observe(document.documentElement, { subtree: true, childList: true, attributes: true });
            }
            return Date.now() - w.__pageAgentMutationIdle.last > 400;
        }
    """
    try:
        await page.wait_for_function(idle_script, timeout=timeout_ms)
    except PlaywrightError:
        pass


async def with_retries(
    async_op: Callable[[], Awaitable[T]],
    retries: int,
    backoffs_ms: Optional[Sequence[int]] = None,
) -> T:
    attempts = max(1, retries)
    delays = list(backoffs_ms or DEFAULT_BACKOFFS_MS)
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        try:
            return await async_op()
        except Exception as exc:  # noqa: BLE001 - re-raised after the last attempt
            last_error = exc
            if attempt == attempts - 1:
                break
            delay = delays[attempt] if attempt < len(delays) else delays[-1]
            await asyncio.sleep(delay / 1000.0)

    if last_error:
        raise last_error
    raise RuntimeError("async_op completed without returning a value")


async def highlight(locator: Locator, duration_ms: int = HIGHLIGHT_MS) -> None:
    """Outline the element briefly so the user sees what is about to be touched."""
    try:
        await locator.evaluate(
            """(el, duration) => {
                const previous = el.style.outline;
                el.style.outline = '3px solid #4CAF50';
                setTimeout(() => { el.style.outline = previous; }, duration);
            }""",
            duration_ms,
        )
    except PlaywrightError:
        pass


async def click_robust(page: Page, locator: Locator, timeout_ms: int, retries: int) -> None:
    """Scroll into view, highlight, then click with mouse and force fallbacks."""

    async def attempt() -> None:
        await locator.wait_for(state="visible", timeout=timeout_ms)
        if not await locator.is_enabled():
            raise RuntimeError("Element is disabled")

        try:
            await locator.scroll_into_view_if_needed(timeout=timeout_ms)
        except PlaywrightError:
            pass
        await highlight(locator)

        box_center = None
        try:
            box = await locator.bounding_box()
            if box:
                box_center = (box["x"] + box["width"] / 2.0, box["y"] + box["height"] / 2.0)
        except PlaywrightError:
            pass

        try:
            await locator.click(timeout=timeout_ms)
            return
        except PlaywrightTimeoutError:
            pass
        except PlaywrightError:
            pass

        if box_center:
            try:
                await page.mouse.click(box_center[0], box_center[1], delay=20)
                return
            except PlaywrightError:
                pass

        await locator.click(timeout=timeout_ms, force=True)

    await with_retries(attempt, retries=retries)


async def fill_robust(locator: Locator, value: str, timeout_ms: int, retries: int) -> None:
    """Set an input or textarea value and emit input and change events."""
    await locator.wait_for(state="visible", timeout=timeout_ms)
    tag = await _tag_name(locator)
    if tag not in {"input", "textarea"}:
        logger.warning("Refusing to fill non-text element <%s>", tag or "unknown")
        raise NonFillableElementError(f"Element <{tag or 'unknown'}> is not an input or textarea")

    async def attempt() -> None:
        try:
            await locator.scroll_into_view_if_needed(timeout=timeout_ms)
        except PlaywrightError:
            pass
        await highlight(locator)
        await locator.evaluate(
            """(el, val) => {
                el.focus();
                el.value = val;
                el.dispatchEvent(new Event('input', { bubbles: true }));
                el.dispatchEvent(new Event('change', { bubbles: true }));
            }""",
            value,
        )
        current = await locator.input_value(timeout=timeout_ms)
        if current.strip() != value.strip():
            raise RuntimeError("Input value did not match expected text")

    await with_retries(attempt, retries=retries)


async def _tag_name(locator: Locator) -> str:
    try:
        tag = await locator.evaluate("(el) => el.tagName ? el.tagName.toLowerCase() : ''")
    except PlaywrightError:
        return ""
    return tag or ""


__all__ = [
    "NonFillableElementError",
    "click_robust",
    "fill_robust",
    "highlight",
    "wait_for_page_quiet",
    "with_retries",
]
