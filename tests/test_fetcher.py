import os
import sys
# 添加项目根目录到PYTHONPATH
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import asyncio
import aiohttp
import pytest
from unittest.mock import AsyncMock, patch

from app.exceptions import BadContentType, BadStatus, InvalidUrlError, TooLarge, TransientFetchError
from app.fetcher import ImageFetcher, build_request_headers, referer_for, validate_url


class FakeContent:
    def __init__(self, chunks):
        self._chunks = chunks

    async def iter_chunked(self, size):
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    def __init__(self, status=200, headers=None, chunks=()):
        self.status = status
        self.headers = headers or {}
        self.content = FakeContent(list(chunks))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """按顺序返回预置的响应（或抛出预置的异常），并记录每次请求的请求头。"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        outcome = self.responses.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def head(self, url, **kwargs):
        return self._next("HEAD", url, kwargs)


PNG_HEADERS = {"Content-Type": "image/png", "Content-Length": "6"}


def make_fetcher(session, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    return ImageFetcher(session, **kwargs)


def test_validate_url():
    assert validate_url(" https://a.com/x.png ") == "https://a.com/x.png"
    for bad in ["ftp://a.com/x.png", "not-a-url", "", "https://", None]:
        with pytest.raises(InvalidUrlError):
            validate_url(bad)


def test_build_request_headers_degrade():
    """测试：请求头逐次精简"""
    url = "https://wx1.sinaimg.cn/large/a.jpg"
    first = build_request_headers(url, 1)
    second = build_request_headers(url, 2)
    third = build_request_headers(url, 3)

    assert first["Referer"] == "https://weibo.com/"
    assert "Accept" in first
    assert "Referer" not in second
    assert "Accept" in second
    assert list(third) == ["User-Agent"]


def test_referer_default_is_own_origin():
    assert referer_for("https://img.example.com/a.png") == "https://img.example.com/"
    assert referer_for("https://i0.hdslb.com/bfs/a.jpg") == "https://www.bilibili.com/"


@pytest.mark.asyncio
async def test_download_retries_without_referer_after_403(tmp_path):
    """测试：第 1 次 403，第 2 次（不带 Referer）成功"""
    session = FakeSession([
        FakeResponse(status=403),
        FakeResponse(headers=PNG_HEADERS, chunks=[b"\x89PNG", b"\r\n"]),
    ])

    result = await make_fetcher(session).download("https://cdn.example.com/a.png", tmp_path)

    assert result.size == 6
    assert result.content_type == "image/png"
    assert result.path.read_bytes() == b"\x89PNG\r\n"
    assert len(session.calls) == 2
    assert "Referer" in session.calls[0][2]["headers"]
    assert "Referer" not in session.calls[1][2]["headers"]


@pytest.mark.asyncio
async def test_download_gives_up_after_three_attempts(tmp_path):
    session = FakeSession([FakeResponse(status=500), FakeResponse(status=502), FakeResponse(status=503)])

    with pytest.raises(BadStatus) as exc_info:
        await make_fetcher(session).download("https://cdn.example.com/a.png", tmp_path)

    assert exc_info.value.status == 503
    assert len(session.calls) == 3
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_download_retry_delay_is_linear(tmp_path):
    """测试：重试前等待 attempt * retry_delay 秒"""
    session = FakeSession([asyncio.TimeoutError(), FakeResponse(status=500), FakeResponse(status=500)])

    with patch("app.fetcher.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        with pytest.raises(BadStatus):
            await make_fetcher(session, retry_delay=1.5).download("https://cdn.example.com/a.png", tmp_path)

    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.5, 3.0]


@pytest.mark.asyncio
async def test_transport_errors_surface_as_transient_fetch_error(tmp_path):
    """测试：连接错误重试耗尽后抛出 TransientFetchError，保留原始异常"""
    session = FakeSession([aiohttp.ClientConnectionError("reset")] * 3)

    with pytest.raises(TransientFetchError) as exc_info:
        await make_fetcher(session).fetch("https://cdn.example.com/a.png")

    assert str(exc_info.value) == "下载失败: reset"
    assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)
    assert len(session.calls) == 3


@pytest.mark.asyncio
async def test_declared_length_over_limit_is_not_retried(tmp_path):
    """测试：声明的 Content-Length 超过上限直接失败，不重试，也不留下临时文件"""
    session = FakeSession([
        FakeResponse(headers={"Content-Type": "image/jpeg", "Content-Length": "104857601"}, chunks=[b"x"]),
    ])

    with pytest.raises(TooLarge):
        await make_fetcher(session).download("https://cdn.example.com/big.jpg", tmp_path)

    assert len(session.calls) == 1
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_streamed_size_over_limit_removes_partial_file(tmp_path):
    """测试：未声明长度时按实际字节数中止，残留文件被删除"""
    session = FakeSession([FakeResponse(headers={"Content-Type": "image/png"}, chunks=[b"x" * 8, b"x" * 8])])

    with pytest.raises(TooLarge):
        await make_fetcher(session, max_bytes=10).download("https://cdn.example.com/a.png", tmp_path)

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_bad_content_type_is_not_retried(tmp_path):
    session = FakeSession([FakeResponse(headers={"Content-Type": "text/html; charset=utf-8"})])

    with pytest.raises(BadContentType) as exc_info:
        await make_fetcher(session).download("https://example.com/page", tmp_path)

    assert exc_info.value.reason == "bad_content_type"
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_invalid_url_makes_no_request(tmp_path):
    session = FakeSession([])
    with pytest.raises(InvalidUrlError):
        await make_fetcher(session).download("javascript:alert(1)", tmp_path)
    assert session.calls == []


@pytest.mark.asyncio
async def test_fetch_into_memory():
    session = FakeSession([FakeResponse(headers=PNG_HEADERS, chunks=[b"abc", b"def"])])
    result = await make_fetcher(session).fetch("https://cdn.example.com/a.png")
    assert result.content == b"abcdef"
    assert result.content_length == 6


@pytest.mark.asyncio
async def test_check_uses_head_and_never_raises():
    """测试：URL 预检只发 HEAD 请求，失败时返回 valid=False"""
    session = FakeSession([
        FakeResponse(headers={"Content-Type": "image/webp", "Content-Length": "1024"}),
        FakeResponse(status=404, headers={"Content-Type": "text/html"}),
    ])
    fetcher = make_fetcher(session)

    ok = await fetcher.check("https://cdn.example.com/a.webp")
    missing = await fetcher.check("https://cdn.example.com/missing.webp")
    invalid = await fetcher.check("not-a-url")

    assert ok.valid is True
    assert ok.content_length == 1024
    assert missing.valid is False
    assert "404" in missing.error
    assert invalid.valid is False
    assert [c[0] for c in session.calls] == ["HEAD", "HEAD"]
    assert session.calls[0][2]["allow_redirects"] is True
