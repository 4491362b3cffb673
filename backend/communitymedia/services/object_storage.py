from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import AsyncIterator
from urllib.parse import quote

import httpx

from ..config import settings


class ObjectStorageError(RuntimeError):
    """Raised when the object store returns an error or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class ObjectNotFoundError(ObjectStorageError):
    """Raised when the object store reports an object is missing."""


STREAM_CHUNK_SIZE = 1024 * 1024


def guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


class ObjectStream:
    """An open GET against the object store whose body has not been read yet.

    ``iter_bytes`` yields the body chunk by chunk and closes the connection
    when it is exhausted; ``aclose`` releases it early and is safe to repeat.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, key: str) -> None:
        self._client = client
        self._response = response
        self._closed = False
        self.content_type = response.headers.get("content-type") or guess_content_type(key)
        length = response.headers.get("content-length")
        self.content_length = int(length) if length and length.isdigit() else None

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_bytes(self, chunk_size: int = STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes(chunk_size=chunk_size):
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class ObjectStorageClient:
    """Thin client for the bucket store addressed as ``{base}/{bucket}/{key}``."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = (base_url or settings.object_storage_base_url or "").rstrip("/")
        self._token = token if token is not None else settings.object_storage_token
        self._timeout = timeout or settings.object_storage_timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    def object_url(self, bucket: str, key: str) -> str:
        if not bucket or not key:
            raise ObjectStorageError("bucket and key are required")
        if not self._base_url:
            raise ObjectStorageError("Object storage is not configured")
        quoted_key = quote(key.lstrip("/"), safe="/")
        return f"{self._base_url}/{quote(bucket.strip('/'), safe='')}/{quoted_key}"

    def _headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def upload_file(
        self,
        bucket: str,
        key: str,
        path: Path,
        *,
        content_type: str | None = None,
    ) -> str:
        request_url = self.object_url(bucket, key)
        try:
            payload = Path(path).read_bytes()
        except OSError as exc:
            raise ObjectStorageError(f"Unable to read {Path(path).name}") from exc

        headers = self._headers()
        headers["Content-Type"] = content_type or guess_content_type(Path(path).name)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.put(request_url, content=payload, headers=headers)
            except httpx.HTTPError as exc:  # pragma: no cover - network failure path
                raise ObjectStorageError("Failed to call object storage") from exc

        if response.status_code >= 400:
            raise ObjectStorageError(
                f"Object storage upload failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return request_url

    async def object_exists(self, bucket: str, key: str) -> bool:
        request_url = self.object_url(bucket, key)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.head(request_url, headers=self._headers())
            except httpx.HTTPError as exc:  # pragma: no cover - network failure path
                raise ObjectStorageError("Failed to call object storage") from exc

        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise ObjectStorageError(
                f"Object storage lookup failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return True

    async def open_object(self, bucket: str, key: str) -> ObjectStream:
        """Start a streamed GET; the caller owns the returned stream and must drain or close it."""

        request_url = self.object_url(bucket, key)
        client = httpx.AsyncClient(timeout=self._timeout)
        try:
            request = client.build_request("GET", request_url, headers=self._headers())
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:  # pragma: no cover - network failure path
            await client.aclose()
            raise ObjectStorageError("Failed to call object storage") from exc

        if response.status_code >= 400:
            await response.aclose()
            await client.aclose()
            if response.status_code == 404:
                raise ObjectNotFoundError(
                    "Object storage object not found", status_code=response.status_code
                )
            raise ObjectStorageError(
                f"Object storage download failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return ObjectStream(client, response, key)


_client: ObjectStorageClient | None = None


def get_object_storage() -> ObjectStorageClient:
    global _client
    if _client is None:
        _client = ObjectStorageClient()
    return _client


__all__ = [
    "ObjectNotFoundError",
    "ObjectStorageClient",
    "ObjectStorageError",
    "ObjectStream",
    "STREAM_CHUNK_SIZE",
    "get_object_storage",
    "guess_content_type",
]
