import base64
import binascii
import logging
import mimetypes
from datetime import datetime
from pathlib import PurePosixPath
from typing import Callable
from uuid import uuid4

from taskapi.models import FileSummary, FileUpload
from taskapi.repository import StorageError, to_iso, utc_now
from taskapi.results import Failure, Result, Success, not_found, upstream_failure, validation_error
from taskapi.storage import DEFAULT_CONTENT_TYPE, BlobInfo, BlobNotFoundError, BlobStore
from taskapi.tasks import TaskService

logger = logging.getLogger(__name__)

NAMESPACE = "tasks/"
FILES_SEGMENT = "files"
REQUIRED_METADATA = frozenset({"task_id", "file_id", "file_name", "uploaded_at"})

UPLOAD_EXAMPLE = {
    "file_name": "notes.txt",
    "file_content": "aGVsbG8gd29ybGQ=",
    "description": "optional description",
}


def task_prefix(task_id: str) -> str:
    return f"{NAMESPACE}{task_id}/{FILES_SEGMENT}/"


def storage_key(task_id: str, file_id: str, file_name: str) -> str:
    return f"{task_prefix(task_id)}{file_id}/{file_name}"


def safe_file_name(file_name: str) -> str:
    """Reduce a client-supplied name to its last path component."""
    name = PurePosixPath(file_name.replace("\\", "/")).name
    return "" if name in (".", "..") else name


class FileService:
    def __init__(
        self,
        blobs: BlobStore,
        tasks: TaskService,
        *,
        max_upload_size_bytes: int,
        public_base_url: str = "",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.blobs = blobs
        self.tasks = tasks
        self.max_upload_size_bytes = max_upload_size_bytes
        self.public_base_url = public_base_url.rstrip("/")
        self.clock = clock

    def download_url(self, file_id: str) -> str:
        return f"{self.public_base_url}/files/{file_id}"

    def _summary(self, info: BlobInfo) -> FileSummary:
        metadata = info.metadata
        return FileSummary(
            file_id=metadata["file_id"],
            task_id=metadata["task_id"],
            file_name=metadata["file_name"],
            description=metadata.get("description", ""),
            file_size=info.size,
            content_type=info.content_type,
            uploaded_at=metadata["uploaded_at"],
            download_url=self.download_url(metadata["file_id"]),
        )

    def _read_metadata(self, key: str) -> BlobInfo | None:
        try:
            info = self.blobs.head(key)
        except StorageError as exc:
            logger.warning("Skipping %s: cannot read metadata (%s)", key, exc)
            return None
        missing = REQUIRED_METADATA.difference(info.metadata)
        if missing:
            logger.warning("Skipping %s: metadata lacks %s", key, ", ".join(sorted(missing)))
            return None
        return info

    def _locate(self, file_id: str) -> BlobInfo | Failure:
        """Scan the whole attachment namespace for the object holding ``file_id``."""
        try:
            keys = self.blobs.list_keys(NAMESPACE)
        except StorageError as exc:
            logger.error("Failed to list attachments: %s", exc)
            return upstream_failure(f"Failed to list files: {exc}")
        for key in keys:
            info = self._read_metadata(key)
            if info is not None and info.metadata["file_id"] == file_id:
                return info
        return not_found("File not found", file_id=file_id)

    def upload_file(self, task_id: str, payload: FileUpload | None) -> Result:
        found = self.tasks.find_task(task_id)
        if isinstance(found, Failure):
            return found

        payload = payload or FileUpload()
        if not payload.file_name or not payload.file_content:
            return validation_error("file_name and file_content are required", example=UPLOAD_EXAMPLE)
        key_name = safe_file_name(payload.file_name)
        if not key_name:
            return validation_error("file_name must name a file", example=UPLOAD_EXAMPLE)
        try:
            data = base64.b64decode("".join(payload.file_content.split()), validate=True)
        except (binascii.Error, ValueError):
            return validation_error("file_content must be valid base64", example=UPLOAD_EXAMPLE)
        if len(data) > self.max_upload_size_bytes:
            return validation_error(f"file exceeds max upload size of {self.max_upload_size_bytes} bytes")

        file_id = str(uuid4())
        key = storage_key(task_id, file_id, key_name)
        content_type = mimetypes.guess_type(key_name)[0] or DEFAULT_CONTENT_TYPE
        metadata = {
            "task_id": task_id,
            "file_id": file_id,
            "file_name": payload.file_name,
            "description": payload.description or "",
            "uploaded_at": to_iso(self.clock()),
        }
        try:
            info = self.blobs.put(key, data, metadata=metadata, content_type=content_type)
        except StorageError as exc:
            logger.error("Failed to store file for task %s: %s", task_id, exc)
            return upstream_failure(f"Failed to upload file: {exc}")

        logger.info("Uploaded file %s (%d bytes) to task %s", file_id, info.size, task_id)
        return Success({"message": "File uploaded successfully", "file": self._summary(info)}, status_code=201)

    def list_files(self, task_id: str) -> Result:
        found = self.tasks.find_task(task_id)
        if isinstance(found, Failure):
            return found

        try:
            keys = self.blobs.list_keys(task_prefix(task_id))
        except StorageError as exc:
            logger.error("Failed to list files for task %s: %s", task_id, exc)
            return upstream_failure(f"Failed to list files: {exc}")

        files = []
        for key in keys:
            info = self._read_metadata(key)
            if info is not None:
                files.append(self._summary(info))
        return Success(
            {
                "message": "Files retrieved successfully",
                "task_id": task_id,
                "count": len(files),
                "files": files,
            }
        )

    def download_file(self, file_id: str) -> Result:
        located = self._locate(file_id)
        if isinstance(located, Failure):
            return located

        key = located.key
        try:
            data, info = self.blobs.get(key)
        except BlobNotFoundError:
            return not_found("File not found", file_id=file_id)
        except StorageError as exc:
            logger.error("Failed to read file %s: %s", file_id, exc)
            return upstream_failure(f"Failed to download file: {exc}")

        return Success(
            {
                "message": "File retrieved successfully",
                "file_id": file_id,
                "task_id": info.metadata.get("task_id"),
                "file_name": info.metadata.get("file_name"),
                "file_size": info.size,
                "content_type": info.content_type,
                "file_content": base64.b64encode(data).decode("ascii"),
            }
        )

    def delete_file(self, file_id: str) -> Result:
        located = self._locate(file_id)
        if isinstance(located, Failure):
            return located

        key = located.key
        try:
            self.blobs.delete(key)
        except StorageError as exc:
            logger.error("Failed to delete file %s: %s", file_id, exc)
            return upstream_failure(f"Failed to delete file: {exc}")
        logger.info("Deleted file %s", file_id)
        return Success({"message": "File deleted successfully", "file_id": file_id})
