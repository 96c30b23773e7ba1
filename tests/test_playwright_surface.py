from __future__ import annotations

import contextlib
import sys
from pathlib import Path

import pytest
from playwright.async_api import Error as PlaywrightError, async_playwright

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from page_agent.executor import PlaywrightSurface  # noqa: E402
from page_agent.models import GeneratedAction  # noqa: E402
from page_agent.perception import ELEMENT_ID_ATTRIBUTE  # noqa: E402

SURFACE = "tab-1"

CLICK_PAGE = """
<html><body>
  <script>window.clicks = [];</script>
  <a href="#help" onclick="window.clicks.push('help-link')">button help</a>
  <button id="save" onclick="window.clicks.push('save')">Save</button>
  <button onclick="window.clicks.push('subscribe')">Subscribe</button>
  <button onclick="window.clicks.push('sign-in')">Sign In</button>
</body></html>
"""


@contextlib.asynccontextmanager
async def _surface(html: str):
    async with async_playwright() as pw:
        try:
            browser = await pw.chromium.launch(headless=True)
        except PlaywrightError as exc:
            pytest.skip(f"Chromium is not installed for Playwright: {exc}")
        try:
            page = await browser.new_page(viewport={"width": 800, "height": 600})
            await page.set_content(html)
            surface = PlaywrightSurface(timeout_ms=2000, retries=1)
            surface.register(SURFACE, page)
            yield surface, page
        finally:
            await browser.close()


@pytest.mark.asyncio
async def test_click_by_text_reports_missing_text() -> None:
    async with _surface(CLICK_PAGE) as (surface, page):
        outcome = await surface.click_by_text(SURFACE, "Log Out")

        assert not outcome.success
        assert outcome.error == 'Could not find element with text "Log Out"'
        assert await page.evaluate("() => window.clicks") == []


@pytest.mark.asyncio
async def test_click_by_text_matches_case_insensitively() -> None:
    async with _surface(CLICK_PAGE) as (surface, page):
        outcome = await surface.click_by_text(SURFACE, "sign in")

        assert outcome.success
        assert await page.evaluate("() => window.clicks") == ["sign-in"]


@pytest.mark.asyncio
async def test_click_resolves_identifier_then_css_then_text() -> None:
    async with _surface(CLICK_PAGE) as (surface, page):
        snapshot = await surface.capture_snapshot(SURFACE)
        subscribe = next(element.id for element in snapshot.elements if element.text == "Subscribe")

        by_id = await surface.execute(GeneratedAction(kind="click", target=subscribe), SURFACE)
        # "button" is valid CSS, so the <button> wins over the link whose text contains "button".
        by_css = await surface.execute(GeneratedAction(kind="click", target="button"), SURFACE)
        by_text = await surface.execute(GeneratedAction(kind="click", target="Sign In"), SURFACE)

        assert by_id.success and by_css.success and by_text.success
        assert await page.evaluate("() => window.clicks") == ["subscribe", "save", "sign-in"]


@pytest.mark.asyncio
async def test_click_on_missing_element_is_retryable() -> None:
    async with _surface(CLICK_PAGE) as (surface, _page):
        outcome = await surface.execute(GeneratedAction(kind="click", target="el-77"), SURFACE)

        assert not outcome.success
        assert outcome.requires_retry
        assert outcome.error == "Element not found: el-77"


@pytest.mark.asyncio
async def test_fill_sets_value_and_fires_input_and_change() -> None:
    html = """
    <html><body>
      <input id="email" placeholder="Email address">
      <script>
        window.events = [];
        const field = document.getElementById('email');
        field.addEventListener('input', () => window.events.push('input'));
        field.addEventListener('change', () => window.events.push('change'));
      </script>
    </body></html>
    """
    async with _surface(html) as (surface, page):
        outcome = await surface.execute(
            GeneratedAction(kind="fill", target="email address", payload="ada@example.test"), SURFACE
        )

        assert outcome.success
        assert await page.input_value("#email") == "ada@example.test"
        assert await page.evaluate("() => window.events") == ["input", "change"]


@pytest.mark.asyncio
async def test_fill_refuses_non_text_elements() -> None:
    async with _surface(CLICK_PAGE) as (surface, _page):
        outcome = await surface.execute(GeneratedAction(kind="fill", target="#save", payload="x"), SURFACE)

        assert not outcome.success
        assert "not an input or textarea" in outcome.error


@pytest.mark.asyncio
async def test_snapshot_skips_hidden_elements_and_clears_old_ids() -> None:
    html = f"""
    <html><body>
      <p {ELEMENT_ID_ATTRIBUTE}="el-99">Stamped by an earlier snapshot</p>
      <button>Visible</button>
      <button style="display: none">Display none</button>
      <button style="visibility: hidden">Visibility hidden</button>
      <button style="position: absolute; top: -500px">Above the viewport</button>
      <button style="position: absolute; top: 1500px">Below the fold</button>
      <a href="/docs">Docs</a>
    </body></html>
    """
    async with _surface(html) as (surface, page):
        snapshot = await surface.capture_snapshot(SURFACE)

        assert [(element.id, element.text) for element in snapshot.elements] == [
            ("el-0", "Visible"),
            ("el-1", "Docs"),
        ]
        assert snapshot.elements[1].attributes.href == "/docs"
        stamped = await page.evaluate(
            "(attr) => Array.from(document.querySelectorAll(`[${attr}]`)).map((el) => el.getAttribute(attr))",
            ELEMENT_ID_ATTRIBUTE,
        )
        assert stamped == ["el-0", "el-1"]


@pytest.mark.asyncio
async def test_extract_and_style_presets() -> None:
    html = "<html><head></head><body><h1>Breaking news</h1></body></html>"
    async with _surface(html) as (surface, page):
        extracted = await surface.execute(GeneratedAction(kind="extract", target="h1"), SURFACE)
        applied = await surface.execute(
            GeneratedAction(kind="modify", payload='{"type": "high-contrast"}'), SURFACE
        )
        count_styles = "() => document.querySelectorAll('style[id^=\"page-agent-\"]').length"
        after_apply = await page.evaluate(count_styles)
        reset = await surface.execute(GeneratedAction(kind="modify", payload='{"type": "reset"}'), SURFACE)

        assert extracted.message == "Breaking news"
        assert applied.success and reset.success
        assert after_apply == 1
        assert await page.evaluate(count_styles) == 0


@pytest.mark.asyncio
async def test_unregistered_surface_fails_without_retry() -> None:
    surface = PlaywrightSurface()

    outcome = await surface.execute(GeneratedAction(kind="click", target="el-0"), SURFACE)

    assert not outcome.success
    assert not outcome.requires_retry
