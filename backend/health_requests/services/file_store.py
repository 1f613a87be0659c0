"""
File store for patient ID photos and request documents.
"""
import logging
import mimetypes
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple

from health_requests.config import get_settings
from health_requests.exceptions import CollaboratorError, NotFoundError, ValidationError
from health_requests.models.document import StoredFile

logger = logging.getLogger(__name__)


class FileStore(ABC):
    """Interface used by the lifecycle services; implementations own the bytes."""

    @abstractmethod
    def store(self, data: bytes, filename: str, mime_type: str, folder: Optional[str] = None) -> StoredFile:
        """Persist ``data`` and return a reference to it."""

    @abstractmethod
    def fetch(self, reference: str) -> Tuple[bytes, str]:
        """Return ``(data, mime_type)`` for a stored reference."""

    @abstractmethod
    def delete(self, reference: str) -> None:
        """Remove a stored file. Missing files are ignored."""


class LocalFileStore(FileStore):
    """Stores files under ``settings.upload_dir`` with uuid filenames."""

    def __init__(self, root: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.upload_dir)
        self.max_file_size = settings.max_file_size
        self.allowed_extensions = [ext.lower() for ext in settings.allowed_extensions]

    def _validate(self, data: bytes, filename: str) -> str:
        if not filename:
            raise ValidationError("Nenhum arquivo foi enviado")
        if not data:
            raise ValidationError(f"Arquivo vazio: {filename}")

        ext = filename.lower().rsplit('.', 1)[-1] if '.' in filename else ""
        if ext not in self.allowed_extensions:
            raise ValidationError(
                f"Tipo de arquivo não suportado: {ext or filename}. "
                f"Permitidos: {', '.join(self.allowed_extensions)}"
            )

        if len(data) > self.max_file_size:
            raise ValidationError(
                f"Arquivo muito grande. Máximo: {self.max_file_size // (1024 * 1024)}MB"
            )
        return ext

    def _path(self, reference: str) -> Path:
        path = (self.root / reference).resolve()
        if self.root.resolve() not in path.parents:
            raise NotFoundError("Arquivo não encontrado")
        return path

    def store(self, data: bytes, filename: str, mime_type: str, folder: Optional[str] = None) -> StoredFile:
        ext = self._validate(data, filename)
        unique_filename = f"{uuid.uuid4()}.{ext}"
        reference = f"{folder}/{unique_filename}" if folder else unique_filename

        file_path = self.root / reference
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'wb') as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Failed to store {filename}: {e}")
            raise CollaboratorError("Falha ao salvar arquivo") from e

        logger.info(f"Stored {filename} as {reference} ({len(data)} bytes)")
        return StoredFile(
            reference=reference,
            filename=filename,
            mime_type=mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream",
            size=len(data)
        )

    def fetch(self, reference: str) -> Tuple[bytes, str]:
        path = self._path(reference)
        if not path.exists():
            raise NotFoundError("Arquivo não encontrado")
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read {reference}: {e}")
            raise CollaboratorError("Falha ao ler arquivo") from e
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return data, mime_type

    def delete(self, reference: str) -> None:
        if not reference:
            return
        try:
            path = self._path(reference)
        except NotFoundError:
            return
        try:
            if path.exists():
                path.unlink()
                logger.info(f"Deleted stored file {reference}")
        except OSError as e:
            logger.error(f"Failed to delete {reference}: {e}")
            raise CollaboratorError("Falha ao remover arquivo") from e


def get_file_store() -> FileStore:
    """Dependency returning the configured file store."""
    return LocalFileStore()
