"""
Filesystem storage for uploaded PDF attachments.

Uploads are streamed into a staging directory first. The records service
moves a staged file into the permanent upload directory only once the row
that references it has been inserted, and deletes it on any failure.
"""

import os
import re
import shutil
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from starlette.datastructures import UploadFile

from config_manager import StorageConfig
from errors import ValidationError
from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192
DEFAULT_ATTACHMENT_NAME = "documento.pdf"
MAX_NAME_ATTEMPTS = 5


def attachment_filename(original_name: str, now: Optional[datetime] = None) -> str:
    """Build the stored name for an upload: ``<epoch-millis>-<original name>``.

    Only the base name of the client-supplied path is kept, and characters
    outside ``[A-Za-z0-9._-]`` are replaced so the result is a single safe
    path component.
    """
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)

    base = Path((original_name or "").replace("\\", "/")).name
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", base).strip("._")
    if not safe:
        safe = DEFAULT_ATTACHMENT_NAME
    return f"{millis}-{safe}"


@dataclass
class StagedFile:
    """An upload accepted into staging, not yet referenced by any row."""
    temp_path: Path
    filename: str
    original_name: str
    size_bytes: int
    content_type: Optional[str] = None


class BlobStore:
    """Upload directory plus its staging area."""

    def __init__(
        self,
        upload_dir: str,
        temp_dir: str,
        max_upload_bytes: int = 10 * 1024 * 1024,
        allowed_content_types: Optional[Iterable[str]] = None,
    ):
        self.upload_dir = Path(upload_dir)
        self.temp_dir = Path(temp_dir)
        self.max_upload_bytes = max_upload_bytes
        if allowed_content_types is None:
            allowed_content_types = StorageConfig().allowed_content_types
        self.allowed_content_types = {c.lower() for c in allowed_content_types}

    @classmethod
    def from_config(cls, config: StorageConfig) -> 'BlobStore':
        return cls(
            upload_dir=config.upload_dir,
            temp_dir=config.temp_dir,
            max_upload_bytes=config.max_upload_bytes,
            allowed_content_types=config.allowed_content_types,
        )

    def ensure_dirs(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, filename: str) -> Path:
        """Resolve a stored basename inside the upload directory."""
        path = (self.upload_dir / filename).resolve()
        if not path.is_relative_to(self.upload_dir.resolve()):
            raise ValidationError("Nombre de archivo adjunto inválido", fields=["filename"])
        return path

    def _check_upload(self, upload: UploadFile, field_name: str) -> None:
        content_type = (upload.content_type or "").lower()
        is_pdf_name = (upload.filename or "").lower().endswith(".pdf")
        if content_type == "application/pdf":
            return
        if is_pdf_name and (not content_type or content_type in self.allowed_content_types):
            return
        raise ValidationError(
            "El archivo adjunto debe ser un PDF",
            fields=[field_name],
        )

    async def stage(self, upload: UploadFile, field_name: str = "archivo") -> StagedFile:
        """Stream an upload into the staging directory.

        Raises:
            ValidationError: If the file is not a PDF or exceeds the size limit
        """
        self._check_upload(upload, field_name)
        self.ensure_dirs()

        temp_path = self.temp_dir / f"{uuid.uuid4().hex}.part"
        total_size = 0
        try:
            with open(temp_path, "wb") as file_handle:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    total_size += len(chunk)
                    if total_size > self.max_upload_bytes:
                        raise ValidationError(
                            "El archivo excede el tamaño máximo de "
                            f"{self.max_upload_bytes // (1024 * 1024)}MB",
                            fields=[field_name],
                        )
                    file_handle.write(chunk)
        except BaseException:
            self._unlink(temp_path)
            raise

        staged = StagedFile(
            temp_path=temp_path,
            filename=attachment_filename(upload.filename),
            original_name=upload.filename or "",
            size_bytes=total_size,
            content_type=upload.content_type,
        )
        logger.debug(
            "Staged upload: name=%s size=%d temp=%s",
            sanitize_for_logging(staged.original_name), total_size, temp_path.name,
        )
        return staged

    def promote(self, staged: StagedFile) -> str:
        """Move a staged file into permanent storage.

        Returns:
            The basename the file was stored under. It differs from
            ``staged.filename`` only when that name is already taken.
        """
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        destination = self.path_for(staged.filename)
        for _ in range(MAX_NAME_ATTEMPTS):
            try:
                self._claim(staged.temp_path, destination)
                break
            except FileExistsError:
                stem, _, rest = staged.filename.partition("-")
                destination = self.path_for(f"{stem}-{uuid.uuid4().hex[:8]}-{rest}")
        else:
            raise FileExistsError(f"No free attachment name for {staged.filename}")

        self._unlink(staged.temp_path)
        staged.filename = destination.name
        logger.info("Attachment stored: %s", destination.name)
        return destination.name

    def _claim(self, source: Path, destination: Path) -> None:
        """Create ``destination`` with the content of ``source``.

        The name is claimed atomically: FileExistsError if it is taken,
        and an existing file is never replaced.
        """
        try:
            os.link(source, destination)
            return
        except FileExistsError:
            raise
        except OSError as e:
            # no hard links here (different filesystems, or unsupported)
            logger.debug("Hard link failed, copying attachment: %s", e)

        with open(source, "rb") as src, open(destination, "xb") as dst:
            try:
                shutil.copyfileobj(src, dst)
            except OSError:
                dst.close()
                self._unlink(destination)
                raise

    def discard(self, staged: StagedFile) -> None:
        """Delete a staged file that will not be kept."""
        if self._unlink(staged.temp_path):
            logger.info(
                "Discarded staged upload: %s", sanitize_for_logging(staged.original_name)
            )

    def remove(self, filename: str) -> None:
        """Delete a promoted file whose row was never committed."""
        if self._unlink(self.path_for(filename)):
            logger.warning("Removed attachment of rolled back record: %s", filename)

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete file: path=%s error=%s", path, e)
            return False
