import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from taskapi.repository import StorageError

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class BlobNotFoundError(StorageError):
    """No object is stored under the requested key."""


@dataclass(frozen=True)
class BlobInfo:
    key: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    metadata: dict[str, str] = field(default_factory=dict)


class BlobStore(Protocol):
    def init(self) -> None: ...

    def put(
        self,
        key: str,
        data: bytes,
        *,
        metadata: dict[str, str],
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> BlobInfo: ...

    def get(self, key: str) -> tuple[bytes, BlobInfo]: ...

    def head(self, key: str) -> BlobInfo: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str = "") -> list[str]: ...


class LocalBlobStore:
    """Object store on the local filesystem.

    Payloads live under ``<root>/objects/<key>`` and their metadata under
    ``<root>/metadata/<key>.json``. Keys are ``/``-separated like object-store
    keys and must stay inside the root.
    """

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)
        self.objects_root = self.root / "objects"
        self.metadata_root = self.root / "metadata"

    def init(self) -> None:
        self.objects_root.mkdir(parents=True, exist_ok=True)
        self.metadata_root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, base: Path, key: str, suffix: str = "") -> Path:
        parts = key.split("/")
        if not key or key.startswith("/") or any(part in ("", ".", "..") for part in parts):
            raise StorageError(f"invalid object key: {key!r}")
        target = base.joinpath(*parts[:-1], parts[-1] + suffix)
        if not target.resolve().is_relative_to(base.resolve()):
            raise StorageError(f"invalid object key: {key!r}")
        return target

    def _object_path(self, key: str) -> Path:
        return self._resolve(self.objects_root, key)

    def _metadata_path(self, key: str) -> Path:
        return self._resolve(self.metadata_root, key, ".json")

    def put(
        self,
        key: str,
        data: bytes,
        *,
        metadata: dict[str, str],
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> BlobInfo:
        object_path = self._object_path(key)
        metadata_path = self._metadata_path(key)
        info = BlobInfo(key=key, size=len(data), content_type=content_type, metadata=dict(metadata))
        try:
            object_path.parent.mkdir(parents=True, exist_ok=True)
            metadata_path.parent.mkdir(parents=True, exist_ok=True)
            object_path.write_bytes(data)
            metadata_path.write_text(
                json.dumps({"content_type": content_type, "metadata": info.metadata}),
                encoding="utf-8",
            )
        except OSError as exc:
            object_path.unlink(missing_ok=True)
            raise StorageError(f"cannot write object {key}: {exc}") from exc
        return info

    def head(self, key: str) -> BlobInfo:
        object_path = self._object_path(key)
        metadata_path = self._metadata_path(key)
        if not object_path.is_file():
            raise BlobNotFoundError(f"object not found: {key}")
        try:
            size = object_path.stat().st_size
            document = json.loads(metadata_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise StorageError(f"metadata missing for object {key}") from exc
        except (OSError, ValueError) as exc:
            raise StorageError(f"cannot read metadata for object {key}: {exc}") from exc
        return BlobInfo(
            key=key,
            size=size,
            content_type=document.get("content_type", DEFAULT_CONTENT_TYPE),
            metadata=document.get("metadata", {}),
        )

    def get(self, key: str) -> tuple[bytes, BlobInfo]:
        info = self.head(key)
        try:
            data = self._object_path(key).read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"object not found: {key}") from exc
        except OSError as exc:
            raise StorageError(f"cannot read object {key}: {exc}") from exc
        return data, info

    def delete(self, key: str) -> None:
        try:
            self._object_path(key).unlink(missing_ok=True)
            self._metadata_path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot delete object {key}: {exc}") from exc

    def list_keys(self, prefix: str = "") -> list[str]:
        if not self.objects_root.is_dir():
            return []
        keys = []
        try:
            for dirpath, _, filenames in os.walk(self.objects_root):
                for filename in filenames:
                    relative = (Path(dirpath) / filename).relative_to(self.objects_root)
                    key = relative.as_posix()
                    if key.startswith(prefix):
                        keys.append(key)
        except OSError as exc:
            raise StorageError(f"cannot list objects under {prefix!r}: {exc}") from exc
        return sorted(keys)
