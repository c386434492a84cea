"""
apihost — Blob Storage Client
=============================

What:  Async client for a blob store kept on the local file system.
How:   Blobs live under ``STORAGE_ROOT/<container>/<full path>``; their
       metadata (content type, MD5 digest, size) is kept in a JSON file
       under ``STORAGE_ROOT/<container>.meta/<full path>.json``. All I/O
       goes through aiofiles.
Who:   Applications built on an ApiHost that need to persist uploads.

Paths:
    Callers always pass logical paths ("reports/2024/summary.pdf").
    Each path is trimmed and then resolved to a full path by the
    ``full_path_resolver``; the default prefixes it with the sanitized,
    lower-cased APP_ENV, or "prod" when APP_ENV is empty:

        "reports/a.pdf"  →  "prod/reports/a.pdf"

    save_with_unique_name() returns a logical path, so its result can be
    handed straight back to load() / exists().

Pluggable behavior (each callable may be sync or async):
    container_provider()           → container name
    content_type_detector(path)    → MIME type
    full_path_resolver(path)       → full blob path
    unique_name_creator(path)      → unique logical path
"""

import base64
import hashlib
import json
import logging
import mimetypes
import posixpath
import re
import secrets
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

import aiofiles
from pydantic import BaseModel, Field

from apihost.config import Settings
from apihost.exceptions import BlobNotFoundError, BlobStorageError
from apihost.utils import maybe_await, normalize_string, to_str_safe

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_PATH_PREFIX = "prod"

StrProvider = Callable[[], Union[str, Awaitable[str]]]
PathMapper = Callable[[str], Union[str, Awaitable[str]]]

_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x80-\x9f/\\?<>:*|"]')


class BlobInfo(BaseModel):
    """What exists() reports about a stored blob."""

    name: str = Field(description="Logical path as given by the caller")
    full_path: str = Field(description="Path inside the container")
    size: int
    content_type: str
    content_md5: str = Field(description="Base64 encoded MD5 digest of the payload")
    last_modified: datetime


def normalize_blob_path(path: Any) -> str:
    return to_str_safe(path).strip()


def sanitize_filename(value: str) -> str:
    """Strip characters and names that are not valid as a single path segment."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", value).rstrip(". ")
    if cleaned in ("", ".", ".."):
        return ""
    return cleaned[:255]


def to_full_blob_path(path: str, app_env: str = "") -> str:
    """Prefix a logical path with the deployment environment tag."""
    prefix = sanitize_filename(normalize_string(app_env)) or DEFAULT_PATH_PREFIX
    return f"{prefix}/{normalize_blob_path(path)}"


def create_unique_blob_name(path: str) -> str:
    """
    Collision-resistant variant of ``path``.

    Keeps the directory and the extension:
        "docs/report.pdf" → "docs/1f0c…e9_48213077.pdf"
    """
    directory = posixpath.dirname(path)
    extension = posixpath.splitext(path)[1]
    name = f"{uuid.uuid4().hex}_{secrets.randbelow(1_000_000_000)}{extension}"
    return posixpath.join(directory, name) if directory else name


def detect_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or DEFAULT_CONTENT_TYPE


class BlobStorageClient:
    """
    Async blob store client.

    Args:
        settings:               Source of STORAGE_ROOT, STORAGE_CONTAINER and
                                APP_ENV. ``None`` loads from the environment.
        storage_root:           Override of settings.storage_root.
        container_provider:     Override of the container name lookup.
        content_type_detector:  Override of the extension-based MIME lookup.
        full_path_resolver:     Override of the APP_ENV prefixing.
        unique_name_creator:    Override of create_unique_blob_name.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        storage_root: Optional[str] = None,
        container_provider: Optional[StrProvider] = None,
        content_type_detector: Optional[PathMapper] = None,
        full_path_resolver: Optional[PathMapper] = None,
        unique_name_creator: Optional[PathMapper] = None,
    ):
        self.settings = settings if settings is not None else Settings()
        self.storage_root = Path(storage_root or self.settings.storage_root).resolve()
        self.container_provider = container_provider
        self.content_type_detector = content_type_detector or detect_content_type
        self.full_path_resolver = full_path_resolver
        self.unique_name_creator = unique_name_creator or create_unique_blob_name

    @classmethod
    def from_environment(cls) -> "BlobStorageClient":
        return cls(Settings())

    # ── Public API ────────────────────────────────────────────────────────

    async def exists(self, path: str) -> Union[BlobInfo, bool]:
        """
        Information about a blob, or False if it does not exist.
        """
        full_path = await self.to_full_path(path)
        blob_file, meta_file = await self._locate(full_path)
        if not blob_file.is_file():
            return False

        try:
            stat = blob_file.stat()
            meta = await self._read_meta(meta_file)
            if meta is None:
                meta = {
                    "content_type": str(await maybe_await(self.content_type_detector(full_path))),
                    "content_md5": await self._digest_file(blob_file),
                }
        except OSError as e:
            raise BlobStorageError(
                message="Could not read blob information",
                context={"path": full_path, "os_error": str(e)},
            ) from e

        return BlobInfo(
            name=normalize_blob_path(path),
            full_path=full_path,
            size=stat.st_size,
            content_type=meta["content_type"],
            content_md5=meta["content_md5"],
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    async def load(self, path: str) -> bytes:
        """
        Read a blob.

        Raises:
            BlobNotFoundError: the blob does not exist.
        """
        full_path = await self.to_full_path(path)
        blob_file, _ = await self._locate(full_path)
        if not blob_file.is_file():
            raise BlobNotFoundError(normalize_blob_path(path), context={"full_path": full_path})

        try:
            async with aiofiles.open(blob_file, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.error("Failed to load blob %s: %s", full_path, str(e))
            raise BlobStorageError(
                message="Failed to load blob",
                context={"path": full_path, "os_error": str(e)},
            ) from e

    async def save(self, path: str, data: Any) -> None:
        """
        Write a blob.

        ``data`` may be bytes-like, text (stored as UTF-8), a readable
        byte stream (sync or async ``read()``, or an async iterator of
        chunks) or None (empty blob). The content type is taken from the
        path's extension; an MD5 digest of the payload is stored with it.
        """
        full_path = await self.to_full_path(path)
        content_type = to_str_safe(await maybe_await(self.content_type_detector(full_path)))
        payload = await self._to_bytes(data)
        digest = base64.b64encode(hashlib.md5(payload).digest()).decode("ascii")

        blob_file, meta_file = await self._locate(full_path)
        try:
            blob_file.parent.mkdir(parents=True, exist_ok=True)
            meta_file.parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(blob_file, "wb") as f:
                await f.write(payload)
            async with aiofiles.open(meta_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps({
                    "content_type": content_type,
                    "content_md5": digest,
                    "size": len(payload),
                }))
        except OSError as e:
            logger.error("Failed to store blob %s: %s", full_path, str(e))
            raise BlobStorageError(
                message="Failed to save blob",
                context={"path": full_path, "os_error": str(e)},
            ) from e

        logger.info("Blob stored: %s (%d bytes, %s)", full_path, len(payload), content_type)

    async def save_with_unique_name(self, path: str, data: Any) -> str:
        """
        Write a blob under a generated, collision-resistant name.

        Returns:
            The logical path the data was stored under.
        """
        unique_path = normalize_blob_path(
            await maybe_await(self.unique_name_creator(normalize_blob_path(path)))
        )
        await self.save(unique_path, data)
        return unique_path

    async def to_full_path(self, path: str) -> str:
        path = normalize_blob_path(path)
        if self.full_path_resolver is not None:
            return normalize_blob_path(await maybe_await(self.full_path_resolver(path)))
        return to_full_blob_path(path, self.settings.app_env)

    # ── Internals ─────────────────────────────────────────────────────────

    async def _container(self) -> str:
        if self.container_provider is not None:
            container = to_str_safe(await maybe_await(self.container_provider())).strip()
        else:
            container = self.settings.storage_container.strip()

        container = sanitize_filename(container)
        if not container:
            raise BlobStorageError(message="No blob container configured")
        return container

    async def _locate(self, full_path: str):
        """(blob file, metadata file) for a full path."""
        segments = [s for s in full_path.split("/") if s]
        if not segments or any(s in (".", "..") for s in segments):
            raise BlobStorageError(
                message=f"Invalid blob path '{full_path}'",
                context={"path": full_path},
            )

        container = await self._container()
        blob_file = self.storage_root.joinpath(container, *segments)
        meta_file = self.storage_root.joinpath(f"{container}.meta", *segments[:-1], segments[-1] + ".json")
        return blob_file, meta_file

    @staticmethod
    async def _read_meta(meta_file: Path) -> Optional[dict]:
        """Stored metadata, or None when missing or unreadable (recomputed by the caller)."""
        if not meta_file.is_file():
            return None
        try:
            async with aiofiles.open(meta_file, "r", encoding="utf-8") as f:
                meta = json.loads(await f.read())
        except ValueError as e:
            logger.warning("Ignoring corrupt blob metadata %s: %s", meta_file, str(e))
            return None
        if not isinstance(meta, dict) or not {"content_type", "content_md5"} <= meta.keys():
            logger.warning("Ignoring incomplete blob metadata %s", meta_file)
            return None
        return meta

    @staticmethod
    async def _digest_file(blob_file: Path) -> str:
        async with aiofiles.open(blob_file, "rb") as f:
            content = await f.read()
        return base64.b64encode(hashlib.md5(content).digest()).decode("ascii")

    @staticmethod
    async def _to_bytes(data: Any) -> bytes:
        if data is None:
            return b""
        if isinstance(data, (bytes, bytearray, memoryview)):
            return bytes(data)
        if isinstance(data, str):
            return data.encode("utf-8")

        try:
            if hasattr(data, "read"):
                chunk = await maybe_await(data.read())
                return chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
            if hasattr(data, "__aiter__"):
                chunks = []
                async for chunk in data:
                    chunks.append(chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk))
                return b"".join(chunks)
        except OSError as e:
            raise BlobStorageError(
                message="Could not read blob data from stream",
                context={"error": str(e)},
            ) from e

        return to_str_safe(data).encode("utf-8")
