"""
apihost — Blob Storage Tests
============================

What:  Tests for BlobStorageClient and its path helpers.
Why:   Stored blobs must round-trip byte for byte and land under the
       environment prefix; unique names must never overwrite each other.
How:   Uses pytest's tmp_path as STORAGE_ROOT; no mocks needed.

What we test:
    ✅ save → load round trip for bytes, text, streams
    ✅ exists() → False or BlobInfo (content type, MD5, size)
    ✅ Corrupt or incomplete metadata is recomputed, not raised
    ✅ Full path prefixing: "prod" by default, APP_ENV otherwise
    ✅ save_with_unique_name keeps directory and extension
    ✅ Missing blobs and unsafe paths raise
    ✅ Pluggable container / resolver / detector (sync and async)
"""

import base64
import hashlib
import io

import pytest

from apihost.config import Settings
from apihost.exceptions import BlobNotFoundError, BlobStorageError
from apihost.storage import (
    BlobInfo,
    BlobStorageClient,
    create_unique_blob_name,
    sanitize_filename,
    to_full_blob_path,
)


@pytest.fixture
def storage(settings):
    return BlobStorageClient(settings)


def md5_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


class TestPathHelpers:

    def test_default_prefix(self):
        assert to_full_blob_path("reports/a.pdf") == "prod/reports/a.pdf"

    def test_environment_prefix(self):
        assert to_full_blob_path("  reports/a.pdf ", " Staging ") == "staging/reports/a.pdf"

    def test_unique_name_keeps_directory_and_extension(self):
        first = create_unique_blob_name("docs/report.pdf")
        second = create_unique_blob_name("docs/report.pdf")

        assert first != second
        assert first.startswith("docs/")
        assert first.endswith(".pdf")

    def test_unique_name_without_directory(self):
        name = create_unique_blob_name("photo.jpg")
        assert "/" not in name
        assert name.endswith(".jpg")

    def test_sanitize_filename(self):
        assert sanitize_filename('bad<>:"|?*name') == "badname"
        assert sanitize_filename("..") == ""


class TestSaveAndLoad:

    @pytest.mark.asyncio
    async def test_round_trip_bytes(self, storage, tmp_path):
        payload = b"\x89PNG\r\n\x1a\n fake image"

        await storage.save("images/logo.png", payload)

        assert await storage.load("images/logo.png") == payload
        assert (tmp_path / "storage" / "blobs" / "prod" / "images" / "logo.png").read_bytes() == payload

    @pytest.mark.asyncio
    async def test_text_is_stored_as_utf8(self, storage):
        await storage.save("notes/hello.txt", "héllo wörld")
        assert await storage.load("notes/hello.txt") == "héllo wörld".encode("utf-8")

    @pytest.mark.asyncio
    async def test_sync_stream(self, storage):
        await storage.save("data/blob.bin", io.BytesIO(b"streamed"))
        assert await storage.load("data/blob.bin") == b"streamed"

    @pytest.mark.asyncio
    async def test_async_iterator(self, storage):
        async def chunks():
            yield b"part-1,"
            yield "part-2"

        await storage.save("data/chunks.csv", chunks())
        assert await storage.load("data/chunks.csv") == b"part-1,part-2"

    @pytest.mark.asyncio
    async def test_none_is_empty_blob(self, storage):
        await storage.save("empty.txt", None)
        assert await storage.load("empty.txt") == b""

    @pytest.mark.asyncio
    async def test_overwrite(self, storage):
        await storage.save("a.txt", b"one")
        await storage.save("a.txt", b"two")
        assert await storage.load("a.txt") == b"two"

    @pytest.mark.asyncio
    async def test_paths_are_trimmed(self, storage):
        await storage.save("  docs/a.txt  ", b"x")
        assert await storage.load("docs/a.txt") == b"x"

    @pytest.mark.asyncio
    async def test_missing_blob(self, storage):
        with pytest.raises(BlobNotFoundError) as exc_info:
            await storage.load("nope/missing.txt")
        assert exc_info.value.context["full_path"] == "prod/nope/missing.txt"

    @pytest.mark.asyncio
    async def test_parent_segments_rejected(self, storage):
        with pytest.raises(BlobStorageError):
            await storage.save("../escape.txt", b"x")

    @pytest.mark.asyncio
    async def test_environment_prefix_applied(self, tmp_path):
        settings = Settings(_env_file=None, app_env="Staging", storage_root=str(tmp_path))
        storage = BlobStorageClient(settings)

        await storage.save("a.txt", b"x")

        assert (tmp_path / "blobs" / "staging" / "a.txt").is_file()
        assert await storage.to_full_path("a.txt") == "staging/a.txt"


class TestUniqueNames:

    @pytest.mark.asyncio
    async def test_save_with_unique_name_round_trip(self, storage):
        path = await storage.save_with_unique_name("uploads/photo.jpg", b"jpeg bytes")

        assert path != "uploads/photo.jpg"
        assert path.startswith("uploads/")
        assert path.endswith(".jpg")
        assert await storage.load(path) == b"jpeg bytes"

    @pytest.mark.asyncio
    async def test_unique_names_do_not_collide(self, storage):
        first = await storage.save_with_unique_name("uploads/a.txt", b"1")
        second = await storage.save_with_unique_name("uploads/a.txt", b"2")

        assert first != second
        assert await storage.load(first) == b"1"
        assert await storage.load(second) == b"2"

    @pytest.mark.asyncio
    async def test_custom_unique_name_creator(self, settings):
        storage = BlobStorageClient(settings, unique_name_creator=lambda path: "fixed/" + path)

        path = await storage.save_with_unique_name("x.txt", b"x")

        assert path == "fixed/x.txt"


class TestExists:

    @pytest.mark.asyncio
    async def test_missing_returns_false(self, storage):
        assert await storage.exists("nope.txt") is False

    @pytest.mark.asyncio
    async def test_info_for_stored_blob(self, storage):
        payload = b'{"a": 1}'
        await storage.save("docs/data.json", payload)

        info = await storage.exists("docs/data.json")

        assert isinstance(info, BlobInfo)
        assert info.name == "docs/data.json"
        assert info.full_path == "prod/docs/data.json"
        assert info.size == len(payload)
        assert info.content_type == "application/json"
        assert info.content_md5 == md5_b64(payload)

    @pytest.mark.asyncio
    async def test_unknown_extension_is_octet_stream(self, storage):
        await storage.save("blob.zzz-unknown", b"x")
        info = await storage.exists("blob.zzz-unknown")
        assert info.content_type == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_info_without_metadata_file(self, storage, tmp_path):
        blob_file = tmp_path / "storage" / "blobs" / "prod" / "raw.txt"
        blob_file.parent.mkdir(parents=True)
        blob_file.write_bytes(b"written elsewhere")

        info = await storage.exists("raw.txt")

        assert info.content_type == "text/plain"
        assert info.content_md5 == md5_b64(b"written elsewhere")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("meta_content", [b"{not json", b'["a list"]', b'{"size": 3}', b"\xff\xfe"])
    async def test_corrupt_metadata_is_recomputed(self, storage, tmp_path, meta_content):
        await storage.save("docs/report.txt", b"abc")
        meta_file = tmp_path / "storage" / "blobs.meta" / "prod" / "docs" / "report.txt.json"
        assert meta_file.is_file()
        meta_file.write_bytes(meta_content)

        info = await storage.exists("docs/report.txt")

        assert isinstance(info, BlobInfo)
        assert info.content_type == "text/plain"
        assert info.content_md5 == md5_b64(b"abc")


class TestPluggableBehavior:

    @pytest.mark.asyncio
    async def test_async_container_and_resolver(self, settings, tmp_path):
        async def container():
            return "tenant-a"

        async def resolver(path):
            return "custom/" + path

        storage = BlobStorageClient(settings, container_provider=container, full_path_resolver=resolver)
        await storage.save("a.bin", b"x")

        assert (tmp_path / "storage" / "tenant-a" / "custom" / "a.bin").is_file()

    @pytest.mark.asyncio
    async def test_content_type_detector(self, settings):
        storage = BlobStorageClient(settings, content_type_detector=lambda path: "application/x-custom")
        await storage.save("a.bin", b"x")

        info = await storage.exists("a.bin")

        assert info.content_type == "application/x-custom"

    @pytest.mark.asyncio
    async def test_empty_container_rejected(self, settings):
        storage = BlobStorageClient(settings, container_provider=lambda: "  ")
        with pytest.raises(BlobStorageError):
            await storage.save("a.bin", b"x")
