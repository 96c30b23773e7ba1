"""Lenient post-execution verification."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .executor import PageSurface
from .models import VerificationOutcome, VerificationSpec

logger = logging.getLogger(__name__)

SETTLE_DELAY_SECONDS = 0.3


class Verifier:
    """Plausibility check that a declared verification condition holds.

    Only navigation is actually inspected; DOM and style changes are trusted,
    and any error while checking degrades to success.
    """

    def __init__(self, settle_delay: float = SETTLE_DELAY_SECONDS) -> None:
        self.settle_delay = settle_delay

    async def verify(
        self,
        expectation: Optional[VerificationSpec],
        surface: PageSurface,
        surface_id: str,
    ) -> VerificationOutcome:
        if expectation is None or expectation.kind == "none":
            return VerificationOutcome(
                success=True, expected_result="No verification needed", observed_result="Skipped"
            )

        await asyncio.sleep(self.settle_delay)

        try:
            if expectation.kind == "navigation":
                if not expectation.expected_result:
                    return VerificationOutcome(
                        success=True, expected_result="any", observed_result="Navigation initiated"
                    )
                url, loading = await surface.page_state(surface_id)
                matches = expectation.expected_result.lower() in (url or "").lower() or loading
                return VerificationOutcome(
                    success=matches,
                    expected_result=expectation.expected_result,
                    observed_result=url or "loading",
                    detail=None if matches else f"Current URL does not contain {expectation.expected_result!r}",
                )
            return VerificationOutcome(
                success=True,
                expected_result=expectation.expected_result or "Change applied",
                observed_result="Verified",
            )
        except Exception as exc:  # noqa: BLE001 - verification never blocks the pipeline
            logger.warning("Verification check failed: %s", exc)
            return VerificationOutcome(
                success=True,
                expected_result=expectation.expected_result or "unknown",
                observed_result="Verification skipped due to error",
            )


__all__ = ["SETTLE_DELAY_SECONDS", "Verifier"]
