from __future__ import annotations

from typing import Callable, Protocol

from netwatch.models import Sample


class Probe(Protocol):
    """A single network check. Failures may be raised; the orchestrator turns them into failed samples."""

    id: str

    async def execute(self) -> Sample: ...


ProbeFactory = Callable[[str], Probe]
