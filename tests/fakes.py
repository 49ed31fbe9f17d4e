"""
Collaborator doubles shared by the test suite.
"""

import asyncio
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

from quantjobs.collaborators.interfaces import ProgressCallback
from quantjobs.constants import ModelFormat, QuantizationMethod
from quantjobs.errors import FileNotFound, StorageError
from quantjobs.types.job import EngineConfig, EngineResult, FileMetadata


class FakeEngine:
    """Engine double that records calls and concurrency."""

    def __init__(
        self,
        output_size: int = 250_000_000,
        delay: float = 0.0,
        error: BaseException | None = None,
    ):
        self.output_size = output_size
        self.delay = delay
        self.error = error
        self.calls: list[UUID | str] = []
        self.active = 0
        self.max_active = 0

    async def run(
        self,
        input_path: Path,
        method: QuantizationMethod,
        config: EngineConfig,
        deadline: float,
        progress: ProgressCallback | None = None,
    ) -> EngineResult:
        self.calls.append(config.work_dir.name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if progress is not None:
                await progress(50)
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            output_path = config.work_dir / "output.bin"
            output_path.write_bytes(b"quantized")
            return EngineResult(output_path=output_path, output_size_bytes=self.output_size)
        finally:
            self.active -= 1


class FakeStorage:
    """In-memory file registry; sizes are declared, not written."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.files: dict[str, FileMetadata] = {}
        self.stored: list[str] = []
        self.fail_fetch = False
        self.fail_store = False
        self.store_delay = 0.0

    def add(
        self,
        owner_id: str,
        name: str = "model.onnx",
        format: ModelFormat = ModelFormat.ONNX,
        size_bytes: int = 1_000_000_000,
    ) -> str:
        file_ref = f"{owner_id}/{name}"
        self.files[file_ref] = FileMetadata(
            file_ref=file_ref,
            owner_id=owner_id,
            format=format,
            size_bytes=size_bytes,
        )
        return file_ref

    async def metadata(self, file_ref: str) -> FileMetadata:
        if file_ref not in self.files:
            raise FileNotFound(f"File {file_ref} not found")
        return self.files[file_ref]

    async def fetch(self, file_ref: str) -> Path:
        if self.fail_fetch:
            raise StorageError("bucket unavailable")
        path = self.root / file_ref.replace("/", "_")
        path.write_bytes(b"model")
        return path

    async def store(self, local_path: Path) -> str:
        await asyncio.sleep(self.store_delay)
        if self.fail_store:
            raise StorageError("bucket unavailable")
        file_ref = f"results/{uuid4()}{local_path.suffix}"
        self.stored.append(file_ref)
        return file_ref


class RecordingNotifier:
    """Notifier double that records events, or raises when told to."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    async def notify(self, owner_id: str, event: str, payload: dict[str, Any]) -> None:
        await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("notification service down")
        self.events.append((owner_id, event, payload))

    def event_types(self) -> list[str]:
        return [event for _, event, _ in self.events]

