from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from page_agent import verifier as verifier_module  # noqa: E402
from page_agent.models import VerificationSpec  # noqa: E402
from page_agent.verifier import Verifier  # noqa: E402


@pytest.mark.asyncio
async def test_kind_none_is_idempotent_success_without_side_effects(monkeypatch) -> None:
    sleep = AsyncMock()
    monkeypatch.setattr(verifier_module.asyncio, "sleep", sleep)
    surface = MagicMock()
    verifier = Verifier()

    outcomes = [await verifier.verify(VerificationSpec(kind="none"), surface, "tab-1") for _ in range(3)]
    outcomes.append(await verifier.verify(None, surface, "tab-1"))

    assert all(outcome.success for outcome in outcomes)
    sleep.assert_not_awaited()
    assert surface.mock_calls == []


@pytest.mark.asyncio
async def test_navigation_matches_url_case_insensitively() -> None:
    surface = MagicMock()
    surface.page_state = AsyncMock(return_value=("https://example.test/About", False))

    outcome = await Verifier(settle_delay=0).verify(
        VerificationSpec(kind="navigation", expected_result="about"), surface, "tab-1"
    )

    assert outcome.success
    assert outcome.observed_result == "https://example.test/About"


@pytest.mark.asyncio
async def test_navigation_mismatch_fails_unless_still_loading() -> None:
    surface = MagicMock()
    surface.page_state = AsyncMock(return_value=("https://example.test/", False))
    spec = VerificationSpec(kind="navigation", expected_result="checkout")

    failed = await Verifier(settle_delay=0).verify(spec, surface, "tab-1")
    surface.page_state = AsyncMock(return_value=("https://example.test/", True))
    loading = await Verifier(settle_delay=0).verify(spec, surface, "tab-1")

    assert not failed.success
    assert loading.success


@pytest.mark.asyncio
async def test_navigation_without_expectation_succeeds() -> None:
    surface = MagicMock()
    surface.page_state = AsyncMock()

    outcome = await Verifier(settle_delay=0).verify(VerificationSpec(kind="navigation"), surface, "tab-1")

    assert outcome.success
    surface.page_state.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["domChange", "styleChange"])
async def test_dom_and_style_changes_are_trusted(kind) -> None:
    outcome = await Verifier(settle_delay=0).verify(VerificationSpec(kind=kind), MagicMock(), "tab-1")

    assert outcome.success
    assert outcome.observed_result == "Verified"


@pytest.mark.asyncio
async def test_errors_while_checking_degrade_to_success() -> None:
    surface = MagicMock()
    surface.page_state = AsyncMock(side_effect=RuntimeError("target closed"))

    outcome = await Verifier(settle_delay=0).verify(
        VerificationSpec(kind="navigation", expected_result="docs"), surface, "tab-1"
    )

    assert outcome.success
    assert outcome.observed_result == "Verification skipped due to error"
