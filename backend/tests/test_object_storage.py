import pytest

from communitymedia.services import object_storage as storage_module
from communitymedia.services.object_storage import (
    ObjectNotFoundError,
    ObjectStorageClient,
    ObjectStorageError,
    STREAM_CHUNK_SIZE,
)


class DummyResponse:
    def __init__(self, status_code, content=b"", headers=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.chunk_sizes = []
        self.closed = False

    async def aiter_bytes(self, chunk_size=None):
        self.chunk_sizes.append(chunk_size)
        for start in range(0, len(self.content), 2):
            yield self.content[start : start + 2]

    async def aclose(self):
        self.closed = True


def _dummy_client(captured, response):
    class DummyAsyncClient:
        def __init__(self, *args, **kwargs):
            captured["init"] = {"args": args, "kwargs": kwargs}

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def put(self, url, content, headers):
            captured["request"] = {"method": "PUT", "url": url, "content": content, "headers": headers}
            return response

        async def head(self, url, headers):
            captured["request"] = {"method": "HEAD", "url": url, "headers": headers}
            return response

        def build_request(self, method, url, headers):
            return {"method": method, "url": url, "headers": headers}

        async def send(self, request, stream=False):
            captured["request"] = dict(request, stream=stream)
            return response

        async def aclose(self):
            captured["client_closed"] = True

    return DummyAsyncClient


def _client():
    return ObjectStorageClient(
        base_url="https://storage.example.com/",
        token="secret-token",
        timeout=5,
    )


@pytest.mark.anyio
async def test_upload_file_puts_bytes_with_content_type(monkeypatch, tmp_path):
    captured: dict[str, dict] = {}
    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client(captured, DummyResponse(200)))
    source = tmp_path / "slide 1.jpg"
    source.write_bytes(b"jpeg-bytes")

    url = await _client().upload_file("BANNER", "banner-slides/slide 1.jpg", source)

    assert url == "https://storage.example.com/BANNER/banner-slides/slide%201.jpg"
    request = captured["request"]
    assert request["method"] == "PUT"
    assert request["content"] == b"jpeg-bytes"
    assert request["headers"]["Content-Type"] == "image/jpeg"
    assert request["headers"]["Authorization"] == "Bearer secret-token"
    assert captured["init"]["kwargs"]["timeout"] == 5


@pytest.mark.anyio
async def test_upload_failure_raises_typed_error(monkeypatch, tmp_path):
    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client({}, DummyResponse(503)))
    source = tmp_path / "a.png"
    source.write_bytes(b"x")

    with pytest.raises(ObjectStorageError) as excinfo:
        await _client().upload_file("FORUM", "forum/a.png", source)
    assert excinfo.value.status_code == 503


@pytest.mark.anyio
async def test_upload_missing_file_raises_typed_error(tmp_path):
    with pytest.raises(ObjectStorageError):
        await _client().upload_file("FORUM", "forum/a.png", tmp_path / "missing.png")


@pytest.mark.anyio
async def test_object_exists_maps_404_to_false(monkeypatch):
    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client({}, DummyResponse(404)))
    assert await _client().object_exists("FORUM", "forum/a.png") is False

    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client({}, DummyResponse(200)))
    assert await _client().object_exists("FORUM", "forum/a.png") is True


@pytest.mark.anyio
async def test_open_object_streams_body_and_closes(monkeypatch):
    captured: dict[str, dict] = {}
    response = DummyResponse(200, b"png-bytes", {"content-type": "image/png", "content-length": "9"})
    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client(captured, response))

    stream = await _client().open_object("CALENDAR", "events/a.png")

    assert captured["request"]["method"] == "GET"
    assert captured["request"]["url"] == "https://storage.example.com/CALENDAR/events/a.png"
    assert captured["request"]["stream"] is True
    assert stream.content_type == "image/png"
    assert stream.content_length == 9
    assert response.chunk_sizes == []

    chunks = [chunk async for chunk in stream.iter_bytes()]

    assert b"".join(chunks) == b"png-bytes"
    assert len(chunks) == 5
    assert response.chunk_sizes == [STREAM_CHUNK_SIZE]
    assert response.closed is True
    assert captured["client_closed"] is True
    assert stream.closed is True


@pytest.mark.anyio
async def test_open_object_guesses_content_type_without_header(monkeypatch):
    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client({}, DummyResponse(200, b"x")))

    stream = await _client().open_object("FORUM", "forum/a.gif")
    await stream.aclose()
    await stream.aclose()

    assert stream.content_type == "image/gif"
    assert stream.content_length is None
    assert stream.closed is True


@pytest.mark.anyio
async def test_open_missing_object_raises_not_found_and_releases_connection(monkeypatch):
    captured: dict[str, dict] = {}
    response = DummyResponse(404)
    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client(captured, response))

    with pytest.raises(ObjectNotFoundError):
        await _client().open_object("CALENDAR", "events/missing.png")
    assert response.closed is True
    assert captured["client_closed"] is True


@pytest.mark.anyio
async def test_open_object_server_error_raises_typed_error(monkeypatch):
    monkeypatch.setattr(storage_module.httpx, "AsyncClient", _dummy_client({}, DummyResponse(502)))

    with pytest.raises(ObjectStorageError) as excinfo:
        await _client().open_object("CALENDAR", "events/a.png")
    assert excinfo.value.status_code == 502
    assert not isinstance(excinfo.value, ObjectNotFoundError)


def test_object_url_requires_bucket_and_key():
    with pytest.raises(ObjectStorageError):
        _client().object_url("", "key")
