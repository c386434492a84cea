"""
apihost — Body Parser Middleware
================================

What:  Parses JSON, url-encoded and text request bodies before routing.
How:   Pure ASGI middleware. It drains the request body, inflates
       gzip/deflate payloads, parses them by content type and stores the
       result on ``request.state.body``. The (inflated) bytes are then
       replayed to the downstream app, so route handlers can still read
       the raw body themselves.

Content types:
    application/json, application/*+json   → dict / list
    application/x-www-form-urlencoded      → dict (extended: bracket keys nest)
    text/*                                 → str
    anything else                          → untouched, no state.body

Rejections (JSON error payload, downstream app is not called):
    400  malformed JSON, strict-mode violation, corrupt compressed data
    413  body larger than ``limit`` (checked before and after inflating)
    415  compressed body with inflate disabled, unknown encoding/charset
"""

import codecs
import gzip
import json
import logging
import re
import zlib
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

from pydantic import BaseModel, Field
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from apihost.exceptions import BodyParseError
from apihost.schemas import ErrorResponse

logger = logging.getLogger(__name__)

JSON = "json"
URLENCODED = "urlencoded"
TEXT = "text"


class BodyParserOptions(BaseModel):
    """
    Body parsing options.

    The field defaults are the host defaults; overrides given to a host are
    merged over them field by field.
    """

    default_charset: str = Field(default="utf-8")
    inflate: bool = Field(default=True)
    strict: bool = Field(default=True)
    extended: bool = Field(default=True)
    limit: int = Field(default=100 * 1024, ge=0)

    model_config = {"extra": "forbid"}


def body_kind(content_type: str) -> Optional[str]:
    """Map a Content-Type media type onto the parser that handles it."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/json" or (
        media_type.startswith("application/") and media_type.endswith("+json")
    ):
        return JSON
    if media_type == "application/x-www-form-urlencoded":
        return URLENCODED
    if media_type.startswith("text/"):
        return TEXT
    return None


def content_charset(content_type: str) -> Optional[str]:
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset":
            return value.strip().strip('"').lower() or None
    return None


_BRACKET_SEGMENT = re.compile(r"\[([^\[\]]*)\]")


def _append_value(existing: Any, value: Any) -> list:
    if isinstance(existing, list):
        existing.append(value)
        return existing
    return [existing, value]


def flat_form_fields(pairs: List[Tuple[str, str]]) -> Dict[str, Any]:
    """
    ``a=1&b=2&b=3`` → ``{"a": "1", "b": ["2", "3"]}``.

    Repeated keys collect into a list; brackets in keys are not interpreted.
    """
    fields: Dict[str, Any] = {}
    for key, value in pairs:
        fields[key] = _append_value(fields[key], value) if key in fields else value
    return fields


def split_form_key(key: str) -> List[str]:
    """``"a[b][]"`` → ``["a", "b", ""]``. Malformed bracket syntax stays one literal key."""
    head, sep, tail = key.partition("[")
    if not sep or not head:
        return [key]

    rest = sep + tail
    segments = [head]
    pos = 0
    for match in _BRACKET_SEGMENT.finditer(rest):
        if match.start() != pos:
            return [key]
        segments.append(match.group(1))
        pos = match.end()
    if pos != len(rest):
        return [key]
    return segments


def _insert_form_value(container: Dict[str, Any], segments: List[str], value: str) -> None:
    key, rest = segments[0], segments[1:]
    if not rest:
        container[key] = _append_value(container[key], value) if key in container else value
        return

    if rest == [""]:
        container[key] = _append_value(container[key], value) if key in container else [value]
        return

    child = container.get(key)
    if not isinstance(child, dict):
        child = {}
        container[key] = child
    _insert_form_value(child, rest, value)


def nest_form_fields(pairs: List[Tuple[str, str]]) -> Dict[str, Any]:
    """
    Bracket-aware form parsing:

        a=1&a=2            → {"a": ["1", "2"]}
        user[name]=x       → {"user": {"name": "x"}}
        tags[]=a&tags[]=b  → {"tags": ["a", "b"]}
    """
    fields: Dict[str, Any] = {}
    for key, value in pairs:
        _insert_form_value(fields, split_form_key(key), value)
    return fields


class BodyParserMiddleware:
    """Parses request bodies into ``request.state.body``."""

    def __init__(self, app: ASGIApp, options: Optional[BodyParserOptions] = None) -> None:
        self.app = app
        self.options = options or BodyParserOptions()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        content_type = headers.get("content-type", "")
        kind = body_kind(content_type)
        if kind is None:
            await self.app(scope, receive, send)
            return

        try:
            raw = await self._read_body(receive)
            body, inflated = self._inflate(raw, headers.get("content-encoding", ""))
            parsed = self._parse(kind, body, content_charset(content_type))
        except BodyParseError as exc:
            logger.info(
                "Rejected %s body for %s %s: %s",
                kind, scope.get("method", ""), scope.get("path", ""), exc.message,
            )
            response = JSONResponse(
                status_code=exc.status_code,
                content=ErrorResponse(error=exc.error, message=exc.message).model_dump(exclude_none=True),
            )
            await response(scope, receive, send)
            return

        scope.setdefault("state", {})["body"] = parsed

        if inflated:
            mutable = MutableHeaders(scope=scope)
            del mutable["content-encoding"]
            mutable["content-length"] = str(len(body))

        await self.app(scope, self._replay(body, receive), send)

    # ── Reading ───────────────────────────────────────────────────────────

    async def _read_body(self, receive: Receive) -> bytes:
        chunks = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.options.limit:
                raise BodyParseError(
                    f"Request body exceeds the limit of {self.options.limit} bytes",
                    status_code=413,
                    error="body_too_large",
                    context={"limit": self.options.limit},
                )
            chunks.append(chunk)
            more_body = message.get("more_body", False)
        return b"".join(chunks)

    @staticmethod
    def _replay(body: bytes, receive: Receive) -> Receive:
        sent = False

        async def replay() -> Message:
            nonlocal sent
            if not sent:
                sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        return replay

    # ── Decoding ──────────────────────────────────────────────────────────

    def _inflate(self, raw: bytes, encoding: str) -> Tuple[bytes, bool]:
        encoding = encoding.strip().lower()
        if encoding in ("", "identity"):
            return raw, False

        if not self.options.inflate:
            raise BodyParseError(
                f"Content encoding '{encoding}' is not accepted",
                status_code=415,
                error="unsupported_content_encoding",
            )

        try:
            if encoding == "gzip":
                body = gzip.decompress(raw)
            elif encoding == "deflate":
                body = zlib.decompress(raw)
            else:
                raise BodyParseError(
                    f"Unsupported content encoding '{encoding}'",
                    status_code=415,
                    error="unsupported_content_encoding",
                )
        except (OSError, EOFError, zlib.error) as e:
            raise BodyParseError(
                "Compressed request body could not be inflated",
                context={"encoding": encoding, "error": str(e)},
            ) from e

        if len(body) > self.options.limit:
            raise BodyParseError(
                f"Request body exceeds the limit of {self.options.limit} bytes",
                status_code=413,
                error="body_too_large",
                context={"limit": self.options.limit},
            )
        return body, True

    def _decode(self, body: bytes, charset: Optional[str]) -> str:
        charset = charset or self.options.default_charset
        try:
            codecs.lookup(charset)
        except LookupError:
            raise BodyParseError(
                f"Unsupported charset '{charset}'",
                status_code=415,
                error="unsupported_charset",
            )
        try:
            return body.decode(charset)
        except UnicodeDecodeError as e:
            raise BodyParseError(
                f"Request body is not valid {charset}",
                context={"error": str(e)},
            ) from e

    def _parse(self, kind: str, body: bytes, charset: Optional[str]) -> Any:
        text = self._decode(body, charset)

        if kind == TEXT:
            return text

        if kind == URLENCODED:
            pairs = parse_qsl(text, keep_blank_values=True)
            if self.options.extended:
                return nest_form_fields(pairs)
            return flat_form_fields(pairs)

        stripped = text.strip()
        if not stripped:
            return {}
        if self.options.strict and stripped[0] not in "{[":
            raise BodyParseError("JSON body must be an object or an array")
        try:
            return json.loads(stripped)
        except ValueError as e:
            raise BodyParseError(
                f"Malformed JSON body: {e}",
                context={"error": str(e)},
            ) from e
