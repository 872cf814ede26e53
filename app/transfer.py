"""网络图片批量转存、批量上传到对象存储、批量 URL 预检。

三类批处理都按固定大小分组：组内并发执行并等待全部结束（单项失败不影响同组其他任务），
整组结束后才开始下一组。转存在组与组之间额外暂停，降低对第三方站点的请求频率。
每个输入都对应结果列表中同一位置的一条记录。
"""

import asyncio
import io
import logging
import re
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar, Union
from urllib.parse import unquote, urlparse

import aiofiles
import aiofiles.os
from PIL import Image as PILImage

from .config import get_settings
from .exceptions import (
    EmptyBatchError,
    FetchError,
    NoDefaultStorageConfigured,
    NoValidUrlError,
    PersistenceError,
    StorageConfigNotFound,
)
from .fetcher import ImageFetcher, UrlCheck, validate_url
from .schemas import StorageFile
from .storage import dispatcher
from .storage.base import decode_payload


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

TRANSFER_PREFIX = "transfer"

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/svg+xml": ".svg",
}

_URL_EXTENSION = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp|svg)$", re.IGNORECASE)


class TransferStage(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    FETCH_FAILED = "fetch_failed"
    FETCHED = "fetched"
    STORING = "storing"
    STORE_FAILED = "store_failed"
    STORED = "stored"
    PERSISTING_METADATA = "persisting_metadata"
    METADATA_FAILED = "metadata_failed"
    DONE = "done"


# 处理中的阶段 -> 在该阶段失败时的终态
FAILED_STAGE = {
    TransferStage.PENDING: TransferStage.FETCH_FAILED,
    TransferStage.FETCHING: TransferStage.FETCH_FAILED,
    TransferStage.FETCHED: TransferStage.STORE_FAILED,
    TransferStage.STORING: TransferStage.STORE_FAILED,
    TransferStage.STORED: TransferStage.METADATA_FAILED,
    TransferStage.PERSISTING_METADATA: TransferStage.METADATA_FAILED,
}


@dataclass
class TransferItemResult:
    original_url: str
    success: bool
    stage: TransferStage
    new_url: Optional[str] = None
    object_key: Optional[str] = None
    filename: Optional[str] = None
    size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    image_id: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class UploadItemResult:
    original_name: str
    success: bool
    mime_type: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None
    object_key: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    image_id: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    items: List[Any] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed_count(self) -> int:
        return self.total - self.success_count

    @property
    def total_size(self) -> int:
        return sum(item.size or 0 for item in self.items if item.success)

    def summary(self) -> dict:
        return {
            "total": self.total,
            "success": self.success_count,
            "failed": self.failed_count,
            "total_size": self.total_size,
        }

    def to_list(self) -> List[dict]:
        return [asdict(item) for item in self.items]


TransferBatchResult = BatchResult
UploadBatchResult = BatchResult


async def run_in_windows(
    items: Sequence[T],
    window: int,
    worker: Callable[[T], Awaitable[R]],
    *,
    on_error: Callable[[T, BaseException], R],
    pause: float = 0.0,
) -> List[R]:
    """按 `window` 分组并发执行，组内等待全部完成（成功或失败）后再进入下一组，结果保持输入顺序。"""
    window = max(1, window)
    groups = [items[i:i + window] for i in range(0, len(items), window)]
    results: List[R] = []

    for index, group in enumerate(groups):
        settled = await asyncio.gather(*(worker(item) for item in group), return_exceptions=True)
        for item, outcome in zip(group, settled):
            if isinstance(outcome, BaseException):
                outcome = on_error(item, outcome)
            results.append(outcome)

        if pause > 0 and index < len(groups) - 1:
            await asyncio.sleep(pause)
    return results


def transfer_filename(url: str, content_type: Optional[str] = None) -> str:
    """`transfer-{毫秒}-{随机}.{ext}`，扩展名优先取自 Content-Type，其次 URL，默认 .jpg。"""
    ext = MIME_EXTENSIONS.get((content_type or "").lower())
    if ext is None:
        match = _URL_EXTENSION.search(urlparse(url).path)
        ext = f".{match.group(1).lower()}" if match else ".jpg"
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"transfer-{millis}-{secrets.token_hex(3)}{ext}"


def original_name_from_url(url: str, fallback: str) -> str:
    name = unquote(urlparse(url).path).rstrip("/").rsplit("/", 1)[-1]
    return name or fallback


def read_dimensions(source: Union[str, Path, io.BytesIO]) -> Tuple[Optional[int], Optional[int]]:
    """读取图片宽高，读取失败不影响转存，返回 (None, None)。"""
    try:
        with PILImage.open(source) as img:
            width, height = img.size
            return width, height
    except (OSError, ValueError, PILImage.DecompressionBombError) as e:
        logger.warning("获取图片元数据失败: %s", e)
        return None, None


def utc_today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _is_valid_url(url: Any) -> bool:
    try:
        validate_url(url)
        return True
    except FetchError:
        return False


class TransferService:
    """批处理编排。`repository` 需提供 `create_image_record` / `get_default_storage` /
    `get_storage` / `increment_daily_stats`。"""

    def __init__(
        self,
        repository: Any,
        fetcher: Optional[ImageFetcher] = None,
        *,
        upload_dir: Optional[Union[str, Path]] = None,
        concurrency: Optional[int] = None,
        batch_pause: Optional[float] = None,
        upload_concurrency: Optional[int] = None,
        validate_concurrency: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.repository = repository
        self.fetcher = fetcher or ImageFetcher()
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.concurrency = concurrency or settings.TRANSFER_CONCURRENCY
        self.batch_pause = settings.TRANSFER_BATCH_PAUSE if batch_pause is None else batch_pause
        self.upload_concurrency = upload_concurrency or settings.UPLOAD_CONCURRENCY
        self.validate_concurrency = validate_concurrency or settings.VALIDATE_CONCURRENCY

    # ---- 网络图片转存 ----

    async def transfer_batch(self, urls: Sequence[str], user_id: Optional[int] = None) -> BatchResult:
        if not urls:
            raise EmptyBatchError()
        if not any(_is_valid_url(url) for url in urls):
            raise NoValidUrlError()

        items = await run_in_windows(
            list(urls),
            self.concurrency,
            lambda url: self.transfer_one(url, user_id),
            on_error=lambda url, exc: TransferItemResult(
                original_url=str(url),
                success=False,
                stage=TransferStage.FETCH_FAILED,
                reason="unexpected_error",
                error=str(exc) or type(exc).__name__,
            ),
            pause=self.batch_pause,
        )
        result = BatchResult(items)
        if result.success_count:
            self._record_stats(upload_count=0, total_size=result.total_size, transfer_count=result.success_count)
        logger.info("批量转存完成：成功 %d 张，失败 %d 张", result.success_count, result.failed_count)
        return result

    async def transfer_one(self, url: str, user_id: Optional[int] = None) -> TransferItemResult:
        stage = TransferStage.PENDING
        temp_path: Optional[Path] = None
        try:
            stage = TransferStage.FETCHING
            url = validate_url(url)
            downloaded = await self.fetcher.download(url, self.upload_dir)
            temp_path = downloaded.path

            stage = TransferStage.FETCHED
            filename = transfer_filename(url, downloaded.content_type)
            width, height = await asyncio.to_thread(read_dimensions, temp_path)

            stage = TransferStage.STORING
            storage = self.repository.get_default_storage()
            if storage is None:
                raise NoDefaultStorageConfigured()
            logger.info("使用存储配置: %s (%s)", storage.name, storage.type)

            async with aiofiles.open(temp_path, "rb") as f:
                data = await f.read()
            file = StorageFile(name=filename, data=data, size=downloaded.size, type=downloaded.content_type)
            upload = await dispatcher.upload_file(storage, file, TRANSFER_PREFIX)
            if not upload.success:
                logger.error("图片转存失败 %s: %s", url, upload.error)
                return TransferItemResult(
                    original_url=url,
                    success=False,
                    stage=TransferStage.STORE_FAILED,
                    reason="provider_error",
                    error=upload.error or "对象存储上传失败",
                )

            stage = TransferStage.STORED
            await self._discard(temp_path)
            temp_path = None

            stage = TransferStage.PERSISTING_METADATA
            try:
                record = self.repository.create_image_record(
                    filename=filename,
                    original_name=original_name_from_url(url, filename),
                    file_path=upload.object_key,
                    file_url=upload.url,
                    file_size=downloaded.size,
                    mime_type=downloaded.content_type,
                    width=width,
                    height=height,
                    upload_type="transfer",
                    original_url=url,
                    user_id=user_id,
                    storage_id=storage.id,
                )
            except Exception as exc:
                raise PersistenceError(
                    f"图片已上传到 {upload.object_key}，但保存记录失败: {exc}",
                    object_key=upload.object_key,
                    url=upload.url,
                ) from exc

            logger.info("转存成功: %s -> %s", url, upload.url)
            return TransferItemResult(
                original_url=url,
                success=True,
                stage=TransferStage.DONE,
                new_url=upload.url,
                object_key=upload.object_key,
                filename=filename,
                size=downloaded.size,
                width=width,
                height=height,
                image_id=getattr(record, "id", None),
            )
        except Exception as exc:
            failed = FAILED_STAGE.get(stage, TransferStage.FETCH_FAILED)
            if isinstance(exc, PersistenceError):
                logger.error("图片记录保存失败，需要对账 %s: %s", url, exc)
            else:
                logger.error("图片转存失败 %s [%s]: %s", url, failed.value, exc)
            return TransferItemResult(
                original_url=str(url),
                success=False,
                stage=failed,
                object_key=getattr(exc, "object_key", None),
                reason=getattr(exc, "reason", "unexpected_error"),
                error=str(exc) or type(exc).__name__,
            )
        finally:
            if temp_path is not None:
                await self._discard(temp_path)

    # ---- 上传到指定对象存储 ----

    async def upload_files(
        self, files: Sequence[StorageFile], storage_id: int, user_id: Optional[int] = None
    ) -> BatchResult:
        if not files:
            raise EmptyBatchError("没有提供文件数据")
        storage = self.repository.get_storage(storage_id)
        if storage is None:
            raise StorageConfigNotFound(storage_id)
        path_prefix = (storage.config or {}).get("pathPrefix", "")

        items = await run_in_windows(
            list(files),
            self.upload_concurrency,
            lambda file: self.upload_one(file, storage, path_prefix, user_id),
            on_error=lambda file, exc: UploadItemResult(
                original_name=file.name,
                success=False,
                reason="unexpected_error",
                error=str(exc) or type(exc).__name__,
            ),
        )
        result = BatchResult(items)
        if result.success_count:
            self._record_stats(upload_count=result.success_count, total_size=result.total_size, transfer_count=0)
        return result

    async def upload_one(
        self, file: StorageFile, storage: Any, path_prefix: str = "", user_id: Optional[int] = None
    ) -> UploadItemResult:
        try:
            data = decode_payload(file.data)
            width, height = await asyncio.to_thread(read_dimensions, io.BytesIO(data))
            upload = await dispatcher.upload_file(
                storage, StorageFile(name=file.name, data=data, size=len(data), type=file.type), path_prefix
            )
            if not upload.success:
                logger.error("文件上传失败: %s - %s", file.name, upload.error)
                return UploadItemResult(
                    original_name=file.name,
                    success=False,
                    mime_type=file.type,
                    size=len(data),
                    reason="provider_error",
                    error=upload.error,
                )

            try:
                record = self.repository.create_image_record(
                    filename=upload.object_key.rsplit("/", 1)[-1],
                    original_name=file.name,
                    file_path=upload.object_key,
                    file_url=upload.url,
                    file_size=len(data),
                    mime_type=file.type,
                    width=width,
                    height=height,
                    upload_type="cloud",
                    user_id=user_id,
                    storage_id=storage.id,
                )
            except Exception as exc:
                raise PersistenceError(
                    f"文件已上传到 {upload.object_key}，但保存记录失败: {exc}",
                    object_key=upload.object_key,
                    url=upload.url,
                ) from exc

            return UploadItemResult(
                original_name=file.name,
                success=True,
                mime_type=file.type,
                size=len(data),
                url=upload.url,
                object_key=upload.object_key,
                width=width,
                height=height,
                image_id=getattr(record, "id", None),
            )
        except Exception as exc:
            logger.error("处理文件时出错: %s - %s", file.name, exc)
            return UploadItemResult(
                original_name=file.name,
                success=False,
                mime_type=file.type,
                object_key=getattr(exc, "object_key", None),
                reason=getattr(exc, "reason", "unexpected_error"),
                error=str(exc) or type(exc).__name__,
            )

    # ---- URL 预检 ----

    async def validate_urls(self, urls: Sequence[str]) -> List[UrlCheck]:
        if not urls:
            raise EmptyBatchError("请提供URL列表")
        return await run_in_windows(
            [str(url).strip() for url in urls],
            self.validate_concurrency,
            self.fetcher.check,
            on_error=lambda url, exc: UrlCheck(url=url, valid=False, error=str(exc) or type(exc).__name__),
        )

    # ---- 内部 ----

    def _record_stats(self, *, upload_count: int, total_size: int, transfer_count: int) -> None:
        try:
            self.repository.increment_daily_stats(utc_today(), upload_count, total_size, transfer_count)
        except Exception:
            logger.exception("更新统计数据失败")

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("清理临时文件失败 %s: %s", path, e)
