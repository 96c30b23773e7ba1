"""Execute structured actions against a Playwright page and capture snapshots."""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError, Locator, Page

from .errors import ExecutionError
from .models import ElementDescriptor, ExecutionOutcome, GeneratedAction, PageSnapshot
from .perception import ELEMENT_ID_ATTRIBUTE, collect_snapshot_data, element_selector
from .robustness import click_robust, fill_robust, wait_for_page_quiet

logger = logging.getLogger(__name__)

DEFAULT_SCROLL_PX = 400
EXTRACT_LIMIT = 1000
STYLE_ID_PREFIX = "page-agent-"
CLICKABLE_SELECTOR = 'button, a, [role="button"], input[type="submit"], input[type="button"]'

_ELEMENT_ID = re.compile(r"^el-\d+$")
_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


class PageSurface(ABC):
    """What the pipeline needs from a page: snapshots, actions and fast-path primitives."""

    @abstractmethod
    async def capture_snapshot(self, surface_id: str) -> PageSnapshot:
        ...

    @abstractmethod
    async def execute(self, action: GeneratedAction, surface_id: str) -> ExecutionOutcome:
        ...

    @abstractmethod
    async def page_state(self, surface_id: str) -> Tuple[str, bool]:
        """Return the current URL and whether the page is still loading."""

    @abstractmethod
    async def scroll(self, surface_id: str, direction: str, amount: int = DEFAULT_SCROLL_PX) -> ExecutionOutcome:
        ...

    @abstractmethod
    async def go_back(self, surface_id: str) -> ExecutionOutcome:
        ...

    @abstractmethod
    async def go_forward(self, surface_id: str) -> ExecutionOutcome:
        ...

    @abstractmethod
    async def reload(self, surface_id: str) -> ExecutionOutcome:
        ...

    @abstractmethod
    async def navigate(self, surface_id: str, url: str) -> ExecutionOutcome:
        ...

    @abstractmethod
    async def click_by_text(self, surface_id: str, text: str) -> ExecutionOutcome:
        ...


class PlaywrightSurface(PageSurface):
    """Page surface backed by one registered Playwright ``Page`` per surface id."""

    def __init__(self, timeout_ms: int = 5000, retries: int = 2) -> None:
        self.timeout_ms = timeout_ms
        self.retries = retries
        self._pages: Dict[str, Page] = {}

    def register(self, surface_id: str, page: Page) -> None:
        self._pages[surface_id] = page

    def unregister(self, surface_id: str) -> None:
        self._pages.pop(surface_id, None)

    def _page(self, surface_id: str) -> Optional[Page]:
        return self._pages.get(surface_id)

    async def capture_snapshot(self, surface_id: str) -> PageSnapshot:
        page = self._page(surface_id)
        if page is None:
            raise ExecutionError(f"No page registered for surface {surface_id}")
        data = await collect_snapshot_data(page)
        snapshot = PageSnapshot(
            url=data.get("url") or page.url,
            title=data.get("title") or "",
            elements=[ElementDescriptor.model_validate(item) for item in data.get("elements") or []],
            page_text=data.get("page_text") or "",
        )
        logger.debug(
            "Captured snapshot %s for %s: %d elements", snapshot.snapshot_id, surface_id, len(snapshot.elements)
        )
        return snapshot

    async def page_state(self, surface_id: str) -> Tuple[str, bool]:
        page = self._page(surface_id)
        if page is None:
            raise ExecutionError(f"No page registered for surface {surface_id}")
        try:
            ready_state = await page.evaluate("() => document.readyState")
        except PlaywrightError:
            # Evaluation fails mid-navigation.
            return page.url, True
        return page.url, ready_state != "complete"

    async def execute(self, action: GeneratedAction, surface_id: str) -> ExecutionOutcome:
        page = self._page(surface_id)
        if page is None:
            return ExecutionOutcome(success=False, error=f"No page registered for surface {surface_id}")

        logger.info("Executing %s target=%r", action.kind, action.target)
        try:
            if action.kind == "click":
                return await self._click(page, action.target or "")
            if action.kind == "fill":
                return await self._fill(page, action.target or "", action.payload)
            if action.kind == "scroll":
                return await self.scroll(surface_id, action.payload or "down")
            if action.kind == "navigate":
                return await self.navigate(surface_id, action.payload or action.target or "")
            if action.kind == "extract":
                return await self._extract(page, action.target)
            if action.kind == "modify":
                return await self._modify(page, action.payload)
        except Exception as exc:  # noqa: BLE001 - page failures become retryable outcomes
            logger.warning("Action %s failed: %s", action.kind, exc)
            return ExecutionOutcome(success=False, error=str(exc) or "Execution failed", requires_retry=True)

        logger.warning("Refusing unsupported action kind %r", action.kind)
        return ExecutionOutcome(
            success=False,
            error=f"Unsupported action kind: {action.kind}; raw code execution is disabled",
        )

    async def _click(self, page: Page, target: str) -> ExecutionOutcome:
        locator = await _resolve_clickable(page, target)
        if locator is None:
            return ExecutionOutcome(success=False, error=f"Element not found: {target}", requires_retry=True)
        await click_robust(page, locator, timeout_ms=self.timeout_ms, retries=self.retries)
        await wait_for_page_quiet(page, self.timeout_ms)
        return ExecutionOutcome(success=True, message=f"Clicked {target}")

    async def _fill(self, page: Page, target: str, value: str) -> ExecutionOutcome:
        locator = await _resolve_input(page, target)
        if locator is None:
            return ExecutionOutcome(success=False, error=f"Input not found: {target}", requires_retry=True)
        await fill_robust(locator, value, timeout_ms=self.timeout_ms, retries=self.retries)
        return ExecutionOutcome(success=True, message=f"Filled {target}")

    async def _extract(self, page: Page, target: Optional[str]) -> ExecutionOutcome:
        locator = await _resolve_any(page, target) if target else None
        if locator is None:
            locator = page.locator("body")
        text = await locator.inner_text(timeout=self.timeout_ms)
        text = (text or "").strip()[:EXTRACT_LIMIT]
        return ExecutionOutcome(success=True, message=text or "No content extracted")

    async def _modify(self, page: Page, payload: str) -> ExecutionOutcome:
        mode, css = build_style_css(payload)
        if mode == "reset":
            removed = await page.evaluate(
                """(prefix) => {
                    const styles = Array.from(document.querySelectorAll(`style[id^="${prefix}"]`));
                    styles.forEach((el) => el.remove());
                    return styles.length;
                }""",
                STYLE_ID_PREFIX,
            )
            return ExecutionOutcome(success=True, message=f"Removed {removed} applied style(s)")
        if not css:
            return ExecutionOutcome(success=False, error=f"Unknown style preset: {payload}", requires_retry=True)
        style_id = f"{STYLE_ID_PREFIX}style-{int(time.time() * 1000)}"
        await page.evaluate(
            """({ id, css }) => {
                const style = document.createElement('style');
                style.id = id;
                style.textContent = css;
                document.head.appendChild(style);
            }""",
            {"id": style_id, "css": css},
        )
        return ExecutionOutcome(success=True, message="Style applied")

    async def scroll(self, surface_id: str, direction: str, amount: int = DEFAULT_SCROLL_PX) -> ExecutionOutcome:
        page = self._page(surface_id)
        if page is None:
            return ExecutionOutcome(success=False, error=f"No page registered for surface {surface_id}")
        direction = (direction or "").strip().lower()
        if direction not in {"up", "down", "top", "bottom"}:
            return ExecutionOutcome(success=False, error=f"Unknown scroll direction: {direction}", requires_retry=True)
        await page.evaluate(
            """({ direction, amount }) => {
                if (direction === 'down') window.scrollBy({ top: amount, behavior: 'smooth' });
                else if (direction === 'up') window.scrollBy({ top: -amount, behavior: 'smooth' });
                else if (direction === 'top') window.scrollTo({ top: 0, behavior: 'smooth' });
                else window.scrollTo({ top: document.body.scrollHeight, behavior: 'smooth' });
            }""",
            {"direction": direction, "amount": amount},
        )
        return ExecutionOutcome(success=True, message=f"Scrolled {direction}")

    async def go_back(self, surface_id: str) -> ExecutionOutcome:
        page = self._page(surface_id)
        if page is None:
            return ExecutionOutcome(success=False, error=f"No page registered for surface {surface_id}")
        await page.go_back(wait_until="domcontentloaded", timeout=max(self.timeout_ms, 15000))
        return ExecutionOutcome(success=True, message="Went back")

    async def go_forward(self, surface_id: str) -> ExecutionOutcome:
        page = self._page(surface_id)
        if page is None:
            return ExecutionOutcome(success=False, error=f"No page registered for surface {surface_id}")
        await page.go_forward(wait_until="domcontentloaded", timeout=max(self.timeout_ms, 15000))
        return ExecutionOutcome(success=True, message="Went forward")

    async def reload(self, surface_id: str) -> ExecutionOutcome:
        page = self._page(surface_id)
        if page is None:
            return ExecutionOutcome(success=False, error=f"No page registered for surface {surface_id}")
        await page.reload(wait_until="domcontentloaded", timeout=max(self.timeout_ms, 15000))
        return ExecutionOutcome(success=True, message="Page reloaded")

    async def navigate(self, surface_id: str, url: str) -> ExecutionOutcome:
        page = self._page(surface_id)
        if page is None:
            return ExecutionOutcome(success=False, error=f"No page registered for surface {surface_id}")
        target_url = normalize_url(url)
        if not target_url:
            return ExecutionOutcome(success=False, error="navigate requires a url", requires_retry=True)
        await page.goto(target_url, wait_until="domcontentloaded", timeout=max(self.timeout_ms, 15000))
        return ExecutionOutcome(success=True, message=f"Navigating to {target_url}")

    async def click_by_text(self, surface_id: str, text: str) -> ExecutionOutcome:
        page = self._page(surface_id)
        if page is None:
            return ExecutionOutcome(success=False, error=f"No page registered for surface {surface_id}")
        found = await page.evaluate(
            """({ selector, text, marker }) => {
                document.querySelectorAll(`[${marker}]`).forEach((el) => el.removeAttribute(marker));
                const wanted = text.trim().toLowerCase();
                for (const el of document.querySelectorAll(selector)) {
                    const candidates = [el.innerText, el.getAttribute('aria-label'), el.value];
                    if (candidates.some((value) => typeof value === 'string' && value.trim().toLowerCase() === wanted)) {
                        el.setAttribute(marker, '1');
                        return true;
                    }
                }
                return false;
            }""",
            {"selector": CLICKABLE_SELECTOR, "text": text, "marker": _TEXT_MARKER},
        )
        if not found:
            return ExecutionOutcome(success=False, error=f'Could not find element with text "{text}"')
        locator = page.locator(f"[{_TEXT_MARKER}]").first
        await click_robust(page, locator, timeout_ms=self.timeout_ms, retries=self.retries)
        return ExecutionOutcome(success=True, message=f'Clicked "{text}"')


_TEXT_MARKER = "data-page-agent-text-target"


async def _first_present(locator: Locator) -> Optional[Locator]:
    try:
        if await locator.count():
            return locator.first
    except PlaywrightError:
        # Invalid CSS selector text.
        return None
    return None


async def _resolve_any(page: Page, target: str) -> Optional[Locator]:
    if _ELEMENT_ID.match(target):
        return await _first_present(page.locator(element_selector(target)))
    return await _first_present(page.locator(f"css={target}"))


async def _resolve_clickable(page: Page, target: str) -> Optional[Locator]:
    if not target:
        return None
    locator = await _resolve_any(page, target)
    if locator is not None:
        return locator
    return await _first_present(page.locator(CLICKABLE_SELECTOR).filter(has_text=target))


async def _resolve_input(page: Page, target: str) -> Optional[Locator]:
    if not target:
        return None
    locator = await _resolve_any(page, target)
    if locator is not None:
        return locator
    quoted = target.replace("\\", "\\\\").replace('"', '\\"')
    fallback = ", ".join(
        [
            f'input[placeholder*="{quoted}" i]',
            f'input[name*="{quoted}" i]',
            f'input[aria-label*="{quoted}" i]',
            f'textarea[placeholder*="{quoted}" i]',
            f'textarea[name*="{quoted}" i]',
            f'textarea[aria-label*="{quoted}" i]',
        ]
    )
    return await _first_present(page.locator(fallback))


def normalize_url(url: str) -> str:
    """Prefix ``https://`` when the URL carries no scheme."""
    target = (url or "").strip()
    if not target:
        return ""
    if _SCHEME.match(target):
        return target
    return f"https://{target}"


def build_style_css(payload: str) -> Tuple[str, Optional[str]]:
    """Translate a modify payload into ``(mode, css)``.

    ``mode`` is ``"apply"`` or ``"reset"``. JSON presets are recognised first;
    anything that does not parse as JSON is applied as raw CSS.
    """
    text = (payload or "").strip()
    try:
        config = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return "apply", text or None

    if not isinstance(config, dict):
        return "apply", None
    preset = config.get("type")
    if preset == "reset":
        return "reset", None
    if preset == "enlarge-text":
        try:
            scale = float(config.get("scale") or 1.2)
        except (TypeError, ValueError):
            scale = 1.2
        return "apply", f"body * {{ font-size: {scale}em !important; }}"
    if preset == "bold-text":
        return "apply", "body p, body span, body div { font-weight: 600 !important; }"
    if preset == "high-contrast":
        return "apply", "body { filter: contrast(1.2) !important; }"
    if preset == "highlight-links":
        return "apply", "a { outline: 2px solid #FF9800 !important; background: #FFF3E0 !important; }"
    css = config.get("css")
    if isinstance(css, str) and css.strip():
        return "apply", css
    return "apply", None


def alternative_selectors(snapshot: Optional[PageSnapshot], target: Optional[str], limit: int = 5) -> List[str]:
    """Element ids from ``snapshot`` whose text or labels share a word with ``target``."""
    if snapshot is None or not target:
        return []
    description = target
    if _ELEMENT_ID.match(target):
        failed = snapshot.find(target)
        if failed is None:
            return []
        description = " ".join(part for part in (failed.text, failed.attributes.aria_label) if part)
    words = set(re.findall(r"[a-z0-9]{3,}", description.lower()))
    if not words:
        return []
    candidates: List[str] = []
    for element in snapshot.elements:
        attrs = element.attributes
        haystack = " ".join(
            part for part in (element.text, attrs.aria_label, attrs.placeholder, attrs.name, attrs.id) if part
        ).lower()
        if element.id != target and any(word in haystack for word in words):
            candidates.append(element.id)
        if len(candidates) >= limit:
            break
    return candidates


__all__ = [
    "ELEMENT_ID_ATTRIBUTE",
    "PageSurface",
    "PlaywrightSurface",
    "alternative_selectors",
    "build_style_css",
    "normalize_url",
]
