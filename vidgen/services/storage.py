"""
Storage Service
Local filesystem layout and naming for every media artifact.

File names follow ``{YYYYMMDD}_{projectName}_{type}_{index}[_{jobId}].{ext}`` and
live under ``STORAGE_PATH/<folder>/<projectName>``. Artifacts written by a job
carry its id so two jobs never share a file.
"""

import logging
import re
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

from vidgen.core.config import settings
from vidgen.core.exceptions import FileSystemError, ValidationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class FileType:
    """Artifact kinds and the folder each is stored in."""
    CLIP = "clip"
    THUMB = "thumb"
    MERGED = "merged"
    UPSCALED = "upscaled"
    INTERPOLATED = "interpolated"
    FINAL = "final"

    FOLDERS = {
        CLIP: "clips",
        THUMB: "thumbnails",
        MERGED: "processing",
        UPSCALED: "processing",
        INTERPOLATED: "processing",
        FINAL: "exports",
    }


HANGUL = re.compile(r"[가-힣]")


def to_camel_case(text: str) -> str:
    """``"My Cool Project!"`` -> ``"myCoolProject"``. Hangul names just lose their spaces."""
    cleaned = re.sub(r"[^a-zA-Z0-9가-힣\s]", "", text or "")
    words = cleaned.split()
    if not words:
        return "untitled"
    if HANGUL.search(cleaned):
        return "".join(words)
    return words[0].lower() + "".join(w.lower().capitalize() for w in words[1:])


class StorageService:
    """Service for local file storage operations."""

    def __init__(self, base_path: PathLike = None):
        self.base_path = Path(base_path or settings.STORAGE_PATH)

    def file_name(
        self, project_name: str, file_type: str, index: int, extension: str = "mp4", job_id: Optional[str] = None
    ) -> str:
        if file_type not in FileType.FOLDERS:
            raise ValidationError(f"Unknown file type: {file_type}")
        date = datetime.now().strftime("%Y%m%d")
        stem = f"{date}_{to_camel_case(project_name)}_{file_type}_{index:03d}"
        if job_id:
            stem = f"{stem}_{job_id}"
        return f"{stem}.{extension}"

    def folder(self, project_name: str, file_type: str) -> Path:
        return self.base_path / FileType.FOLDERS[file_type] / to_camel_case(project_name)

    def full_path(
        self, project_name: str, file_type: str, index: int, extension: str = "mp4", job_id: Optional[str] = None
    ) -> Path:
        """Absolute-or-relative path for a new artifact; parent directory is created."""
        folder = self.folder(project_name, file_type)
        self._mkdir(folder)
        return folder / self.file_name(project_name, file_type, index, extension, job_id)

    def path_by_id(self, project_id: str, subfolder: str) -> Path:
        folder = self.base_path / subfolder / project_id
        self._mkdir(folder)
        return folder

    @staticmethod
    def _mkdir(folder: Path):
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Cannot create directory {folder}: {e}")

    def write_bytes(self, path: PathLike, data: bytes) -> Path:
        path = Path(path)
        self._mkdir(path.parent)
        try:
            path.write_bytes(data)
        except OSError as e:
            raise FileSystemError(f"Cannot write {path}: {e}")
        logger.debug(f"[Storage] Wrote {len(data)} bytes to {path}")
        return path

    def read_bytes(self, path: PathLike) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise FileSystemError(f"Cannot read {path}: {e}")

    def require_file(self, path: PathLike) -> Path:
        """Fail with ``FileSystemError`` unless ``path`` is an existing non-empty file."""
        path = Path(path)
        if not path.is_file() or path.stat().st_size == 0:
            raise FileSystemError(f"File is missing or empty: {path}")
        return path

    def delete_file(self, path: Optional[PathLike]) -> bool:
        """Best-effort delete. Missing files are ignored."""
        if not path:
            return False
        path = Path(path)
        try:
            path.unlink()
            logger.info(f"[Storage] Deleted file: {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"[Storage] Could not delete {path}: {e}")
            return False

    def delete_folder(self, folder: PathLike):
        shutil.rmtree(folder, ignore_errors=True)

    @contextmanager
    def scratch_dir(self, prefix: str) -> Iterator[Path]:
        """Temporary working directory removed on exit, success or not."""
        root = self.base_path / "temp"
        self._mkdir(root)
        path = Path(tempfile.mkdtemp(prefix=f"{prefix}_", dir=root))
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"[Storage] Removed scratch dir {path}")
