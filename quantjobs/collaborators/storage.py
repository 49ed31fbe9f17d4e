"""
Local filesystem storage for uploaded models and quantized results.

Layout under the storage root:
    <owner_id>/<file name>      uploaded inputs, referenced as "<owner_id>/<file name>"
    results/<uuid><suffix>      quantized outputs, referenced as "results/<uuid><suffix>"
"""

import asyncio
import logging
import shutil
from pathlib import Path
from uuid import uuid4

from quantjobs.constants import FORMAT_EXTENSIONS, ModelFormat
from quantjobs.errors import FileNotFound, InvalidCombination, StorageError
from quantjobs.types.job import FileMetadata

logger = logging.getLogger(__name__)

RESULTS_DIR = "results"


def format_for_path(path: Path) -> ModelFormat | None:
    """Model format implied by a file extension."""
    suffix = path.suffix.lower()
    for model_format, extensions in FORMAT_EXTENSIONS.items():
        if suffix in extensions:
            return model_format
    return None


class LocalFileStorage:
    """FileStorage backed by a directory."""

    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, file_ref: str) -> Path:
        path = (self._root / file_ref).resolve()
        if not path.is_relative_to(self._root):
            raise FileNotFound(f"File {file_ref} not found")
        return path

    async def metadata(self, file_ref: str) -> FileMetadata:
        """
        Describe an uploaded file.

        Raises:
            FileNotFound: If the reference does not point at a file.
            InvalidCombination: If the extension is not a known model format.
        """
        path = self._resolve(file_ref)
        if not path.is_file():
            raise FileNotFound(f"File {file_ref} not found")

        model_format = format_for_path(path)
        if model_format is None:
            raise InvalidCombination(f"Unsupported model file type: {path.suffix}")

        owner_id = Path(file_ref).parts[0]
        return FileMetadata(
            file_ref=file_ref,
            owner_id=owner_id,
            format=model_format,
            size_bytes=path.stat().st_size,
        )

    async def fetch(self, file_ref: str) -> Path:
        """
        Local path of a stored file; files are read in place.

        Raises:
            StorageError: If the file is gone.
        """
        try:
            path = self._resolve(file_ref)
        except FileNotFound as e:
            raise StorageError(str(e)) from e
        if not path.is_file():
            raise StorageError(f"File {file_ref} not found")
        return path

    async def store(self, local_path: Path) -> str:
        """
        Copy a result file into storage.

        Returns:
            The stored reference.

        Raises:
            StorageError: If the copy fails.
        """
        file_ref = f"{RESULTS_DIR}/{uuid4()}{local_path.suffix}"
        target = self._root / file_ref
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, local_path, target)
        except OSError as e:
            raise StorageError(f"Could not store {local_path.name}: {e}") from e

        logger.info(
            "Stored result file",
            extra={"file_ref": file_ref, "size": target.stat().st_size}
        )
        return file_ref
