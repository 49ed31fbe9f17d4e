"""
Protocol interfaces for the collaborators the job core consumes.

The worker pool, monitor and service depend on these shapes only, so tests
and alternative deployments can pass in-memory fakes without touching the
default adapters.
"""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from quantjobs.constants import QuantizationMethod
from quantjobs.types.job import EngineConfig, EngineResult, FileMetadata

# Async callback receiving a progress percentage in [0, 100]
ProgressCallback = Callable[[int], Awaitable[None]]


@runtime_checkable
class QuantizationEngine(Protocol):
    """
    Opaque engine turning an input model into a quantized one.

    Raises EngineError on failure. The engine has no cooperative
    cancellation channel; callers bound it with a deadline.
    """

    async def run(
        self,
        input_path: Path,
        method: QuantizationMethod,
        config: EngineConfig,
        deadline: float,
        progress: ProgressCallback | None = None,
    ) -> EngineResult: ...


@runtime_checkable
class FileStorage(Protocol):
    """Where uploaded inputs live and quantized outputs are kept."""

    async def metadata(self, file_ref: str) -> FileMetadata: ...

    async def fetch(self, file_ref: str) -> Path: ...

    async def store(self, local_path: Path) -> str: ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget owner notifications."""

    async def notify(
        self,
        owner_id: str,
        event: str,
        payload: dict[str, Any],
    ) -> None: ...


@runtime_checkable
class CreditLedger(Protocol):
    """Per-owner credit balance."""

    async def available(self, owner_id: str) -> int: ...

    async def consume(
        self,
        owner_id: str,
        amount: int,
        job_id: UUID | None = None,
        description: str | None = None,
    ) -> None: ...
