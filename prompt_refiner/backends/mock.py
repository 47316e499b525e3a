"""Offline mock backend — always available, no network."""

from __future__ import annotations

import asyncio

from prompt_refiner.backends.base import BackendOptions, RefineBackend

MOCK_BACKEND_ID = "mock"

_MOCK_TEMPLATE = """\
[MOCK REFINEMENT]
Refined version of: "{text}"

[Objective]
Clean up the user input.

[Context]
Using the offline mock backend.

[Constraints]
- Offline mode
- No real AI processing{strict_line}

[Expected Output]
A demonstrated refined prompt structure.
"""


class MockBackend(RefineBackend):
    """Deterministic offline backend used as the registry's safe fallback.

    Args:
        latency: Simulated network latency in seconds.
    """

    backend_id = MOCK_BACKEND_ID
    name = "Mock Backend (Offline)"

    def __init__(self, latency: float = 0.0) -> None:
        self._latency = latency

    async def refine(self, user_text: str, system_template: str, options: BackendOptions) -> str:
        if self._latency > 0:
            await asyncio.sleep(self._latency)
        strict_line = "\n- Strict output format" if options.strict else ""
        return _MOCK_TEMPLATE.format(text=user_text, strict_line=strict_line)
