"""
Quantization engine adapters and the method dispatch table.

The worker pool never looks at method-specific parameters: it asks
build_engine_config() for an EngineConfig and hands it to the engine.
"""

import asyncio
import logging
import shlex
from collections.abc import Callable
from pathlib import Path

from quantjobs.collaborators.interfaces import ProgressCallback
from quantjobs.constants import FORMAT_EXTENSIONS, ModelFormat, QuantizationMethod
from quantjobs.errors import EngineError, EngineTimeout
from quantjobs.types.job import EngineConfig, EngineProfile, EngineResult

logger = logging.getLogger(__name__)

# Stderr kept in an engine error message
MAX_ERROR_OUTPUT = 500

ENGINE_PROFILES: dict[QuantizationMethod, EngineProfile] = {
    QuantizationMethod.INT8: EngineProfile(backend="onnx", bits=8),
    QuantizationMethod.INT4: EngineProfile(backend="pytorch", bits=4),
    QuantizationMethod.GPTQ: EngineProfile(backend="gptq", bits=4),
    QuantizationMethod.AWQ: EngineProfile(backend="awq", bits=4),
    QuantizationMethod.GGUF_Q4_0: EngineProfile(backend="gguf", bits=4),
    QuantizationMethod.GGUF_Q5_0: EngineProfile(backend="gguf", bits=5),
}


def build_engine_config(
    method: QuantizationMethod,
    output_format: ModelFormat,
    work_dir: Path,
) -> EngineConfig:
    """Look up the engine profile of a method and bind it to one job."""
    return EngineConfig(
        profile=ENGINE_PROFILES[method],
        output_format=output_format,
        work_dir=work_dir,
    )


def output_path_for(config: EngineConfig) -> Path:
    """Where an engine should write its output inside the job's work dir."""
    return config.work_dir / f"output{FORMAT_EXTENSIONS[config.output_format][0]}"


class CommandEngine:
    """
    Runs an external quantization command per job.

    The command template is formatted per argument with input, output,
    backend, bits and group_size. The process is killed when the deadline
    passes or the caller is cancelled.
    """

    def __init__(self, command: str):
        self._argv = shlex.split(command)
        if not self._argv:
            raise ValueError("engine command is empty")

    async def run(
        self,
        input_path: Path,
        method: QuantizationMethod,
        config: EngineConfig,
        deadline: float,
        progress: ProgressCallback | None = None,
    ) -> EngineResult:
        output_path = output_path_for(config)
        profile = config.profile
        argv = [
            arg.format(
                input=input_path,
                output=output_path,
                backend=profile.backend,
                bits=profile.bits,
                group_size=profile.group_size,
                method=method.value,
            )
            for arg in self._argv
        ]

        logger.info(
            "Starting engine process",
            extra={"method": method.value, "backend": profile.backend}
        )
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(config.work_dir),
        )

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=deadline)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise EngineTimeout(f"engine exceeded {deadline:g}s deadline")
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:MAX_ERROR_OUTPUT]
            raise EngineError(f"exit code {process.returncode}: {detail}")
        if not output_path.is_file():
            raise EngineError(f"engine produced no output at {output_path.name}")

        if progress is not None:
            await progress(90)
        return EngineResult(
            output_path=output_path,
            output_size_bytes=output_path.stat().st_size,
        )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            process.kill()
            await process.wait()
        logger.warning("Engine process killed", extra={"pid": process.pid})


# Blocking engine callable: (input_path, method, config, progress) -> EngineResult
BlockingEngineFn = Callable[
    [Path, QuantizationMethod, EngineConfig, Callable[[int], None]],
    EngineResult,
]


class BlockingEngineAdapter:
    """
    Runs a synchronous engine function in a worker thread.

    Threads cannot be killed, so a run that outlives its deadline keeps its
    thread until the function returns; the job itself is already failed.
    """

    def __init__(self, fn: BlockingEngineFn):
        self._fn = fn

    async def run(
        self,
        input_path: Path,
        method: QuantizationMethod,
        config: EngineConfig,
        deadline: float,
        progress: ProgressCallback | None = None,
    ) -> EngineResult:
        loop = asyncio.get_running_loop()

        def progress_callback(pct: int) -> None:
            if progress is not None:
                asyncio.run_coroutine_threadsafe(progress(pct), loop)

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._fn, input_path, method, config, progress_callback),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            raise EngineTimeout(f"engine exceeded {deadline:g}s deadline")
