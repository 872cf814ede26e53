"""远程图片下载。

每个 URL 最多尝试 3 次，请求头逐次精简：
第 1 次带完整浏览器头和 Referer，第 2 次去掉 Referer，第 3 次只保留 User-Agent。
重试前等待 `attempt * retry_delay` 秒。内容类型不对、体积超限、URL 非法不重试。
"""

import asyncio
import logging
import random
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple, TypeVar, Union
from urllib.parse import urlparse

import aiofiles
import aiohttp
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_incrementing

from .config import get_settings
from .exceptions import (
    BadContentType,
    BadStatus,
    FetchError,
    InvalidUrlError,
    TooLarge,
    TransientFetchError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

CHUNK_SIZE = 64 * 1024


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


# 常用的 User-Agent 列表
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# 图片 CDN 域名与主站不同的网站，Referer 需要指向主站
REFERER_OVERRIDES = {
    "sinaimg.cn": "https://weibo.com/",
    "hdslb.com": "https://www.bilibili.com/",
    "zhimg.com": "https://www.zhihu.com/",
    "doubanio.com": "https://www.douban.com/",
    "alicdn.com": "https://www.taobao.com/",
    "360buyimg.com": "https://www.jd.com/",
}

BROWSER_HEADERS = {
    "Accept": "image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "image",
    "Sec-Fetch-Mode": "no-cors",
    "Sec-Fetch-Site": "cross-site",
}


@dataclass(frozen=True)
class FetchResult:
    content: bytes
    content_type: str
    content_length: Optional[int]


@dataclass(frozen=True)
class DownloadResult:
    path: Path
    content_type: str
    content_length: Optional[int]
    size: int


@dataclass(frozen=True)
class UrlCheck:
    url: str
    valid: bool
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    error: Optional[str] = None


def validate_url(url: str) -> str:
    """只接受带主机名的 http/https 绝对地址。"""
    candidate = (url or "").strip() if isinstance(url, str) else ""
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidUrlError(str(url))
    return candidate


def get_random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def referer_for(url: str) -> Optional[str]:
    host = urlparse(url).hostname
    if not host:
        return None
    for suffix, referer in REFERER_OVERRIDES.items():
        if host == suffix or host.endswith(f".{suffix}"):
            return referer
    return f"https://{host}/"


def build_request_headers(url: str, attempt: int) -> Dict[str, str]:
    """第 `attempt` 次（从 1 开始）请求使用的请求头。"""
    user_agent = get_random_user_agent()
    if attempt >= 3:
        return {"User-Agent": user_agent}

    headers = {"User-Agent": user_agent, **BROWSER_HEADERS}
    if attempt == 1:
        referer = referer_for(url)
        if referer:
            headers["Referer"] = referer
    return headers


def _parse_length(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def check_response(response: aiohttp.ClientResponse, max_bytes: int) -> Tuple[str, Optional[int]]:
    """校验状态码、Content-Type 与声明的 Content-Length，返回 (content_type, content_length)。"""
    if response.status != 200:
        raise BadStatus(response.status)

    raw_type = response.headers.get("Content-Type") or ""
    content_type = raw_type.split(";")[0].strip().lower()
    if not content_type.startswith("image/"):
        raise BadContentType(raw_type or None)

    content_length = _parse_length(response.headers.get("Content-Length"))
    if content_length is not None and content_length > max_bytes:
        raise TooLarge(max_bytes)
    return content_type, content_length


Consumer = Callable[[aiohttp.ClientResponse, str, Optional[int]], Awaitable[T]]


class ImageFetcher:
    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        max_bytes: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        validate_timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._session = session
        self.timeout = settings.FETCH_TIMEOUT if timeout is None else timeout
        self.max_redirects = settings.FETCH_MAX_REDIRECTS if max_redirects is None else max_redirects
        self.max_bytes = settings.FETCH_MAX_BYTES if max_bytes is None else max_bytes
        self.max_attempts = settings.FETCH_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.retry_delay = settings.FETCH_RETRY_DELAY if retry_delay is None else retry_delay
        self.validate_timeout = settings.VALIDATE_TIMEOUT if validate_timeout is None else validate_timeout

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    async def fetch(self, url: str) -> FetchResult:
        """下载到内存，逐块累计字节数，超过上限立即中止。"""

        async def consume(response, content_type, content_length) -> FetchResult:
            buffer = bytearray()
            async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                buffer.extend(chunk)
                if len(buffer) > self.max_bytes:
                    raise TooLarge(self.max_bytes)
            return FetchResult(bytes(buffer), content_type, content_length)

        return await self._request_with_retry(url, consume)

    async def download(self, url: str, directory: Union[str, Path]) -> DownloadResult:
        """流式写入 `directory` 下的临时文件；任何失败（包括超限）都会删除残留文件。"""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        async def consume(response, content_type, content_length) -> DownloadResult:
            path = directory / f"{uuid.uuid4().hex}.part"
            size = 0
            try:
                async with aiofiles.open(path, "wb") as sink:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        size += len(chunk)
                        if size > self.max_bytes:
                            raise TooLarge(self.max_bytes)
                        await sink.write(chunk)
            except BaseException:
                path.unlink(missing_ok=True)
                raise
            return DownloadResult(path, content_type, content_length, size)

        return await self._request_with_retry(url, consume)

    async def _request_with_retry(self, url: str, consume: Consumer) -> T:
        url = validate_url(url)

        def log_retry(state: RetryCallState) -> None:
            logger.warning(
                "下载失败 (尝试 %d/%d) %s: %s",
                state.attempt_number, self.max_attempts, url, state.outcome.exception(),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=log_retry,
            sleep=_sleep,
            reraise=True,
        )
        async with self._session_scope() as session:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt(session, url, attempt.retry_state.attempt_number, consume)
        return result

    async def _attempt(self, session: aiohttp.ClientSession, url: str, attempt: int, consume: Consumer) -> T:
        try:
            async with session.get(
                url,
                headers=build_request_headers(url, attempt),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                max_redirects=self.max_redirects,
            ) as response:
                content_type, content_length = check_response(response, self.max_bytes)
                return await consume(response, content_type, content_length)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(f"下载失败: {str(e) or type(e).__name__}") from e

    async def check(self, url: str) -> UrlCheck:
        """只请求头部信息，判断 URL 是否是可访问的图片；不抛异常。"""
        try:
            url = validate_url(url)
            async with self._session_scope() as session:
                async with session.head(
                    url,
                    headers=build_request_headers(url, 1),
                    timeout=aiohttp.ClientTimeout(total=self.validate_timeout),
                    allow_redirects=True,
                    max_redirects=self.max_redirects,
                ) as response:
                    content_type = response.headers.get("Content-Type") or None
                    valid = response.status == 200 and bool(content_type) and content_type.lower().startswith("image/")
                    return UrlCheck(
                        url=url,
                        valid=valid,
                        content_type=content_type,
                        content_length=_parse_length(response.headers.get("Content-Length")),
                        error=None if valid else f"HTTP {response.status}, Content-Type: {content_type}",
                    )
        except (FetchError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return UrlCheck(url=str(url), valid=False, error=str(e) or type(e).__name__)
