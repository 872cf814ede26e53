"""对象存储的统一契约与公共工具。

所有服务商适配器都实现 `upload` / `delete` 两个协程：
配置解析失败抛 `ConfigurationError`，SDK 报错统一包装成带服务商前缀的 `ProviderError`。
"""

import asyncio
import base64
import binascii
import logging
import mimetypes
import re
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import ConfigurationError, InvalidPayload, ProviderError


logger = logging.getLogger(__name__)


class StorageType(str, Enum):
    S3 = "s3"
    MINIO = "minio"
    COS = "cos"
    OSS = "oss"
    QINIU = "qiniu"
    UPYUN = "upyun"


@dataclass(frozen=True)
class UploadResult:
    success: bool
    object_key: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class DeleteResult:
    success: bool
    error: Optional[str] = None


class ProviderConfig(BaseModel):
    """各服务商配置的公共字段。"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bucket: str = Field(..., min_length=1)
    custom_domain: Optional[str] = Field(None, alias="customDomain")
    path_prefix: str = Field("", alias="pathPrefix")


_COS_REGION = re.compile(r"cos\.([^.]+)\.myqcloud\.com")
_OSS_REGION = re.compile(r"(oss-[a-z0-9-]+?)(?:-internal)?\.aliyuncs\.com")

DEFAULT_REGIONS = {
    StorageType.COS: "ap-beijing",
    StorageType.OSS: "oss-cn-hangzhou",
}


def extract_region(endpoint: Optional[str], storage_type: Union[StorageType, str]) -> str:
    """从 endpoint 主机名中解析 region，解析失败返回该服务商的默认值，从不抛异常。"""
    try:
        kind = StorageType(storage_type)
    except ValueError:
        kind = None
    default = DEFAULT_REGIONS.get(kind, "default")
    if not isinstance(endpoint, str) or not endpoint:
        return default
    if kind is StorageType.COS:
        match = _COS_REGION.search(endpoint)
        return match.group(1) if match else default
    if kind is StorageType.OSS:
        match = _OSS_REGION.search(endpoint)
        return match.group(1) if match else default
    return default


def normalize_endpoint(endpoint: str) -> str:
    endpoint = endpoint.strip().rstrip("/")
    # "minio.local:9000" 这类带端口的地址会被 urlparse 误判为 scheme
    if "://" not in endpoint:
        endpoint = f"https://{endpoint}"
    return endpoint


def public_url(config: ProviderConfig, object_key: str, default_base: str) -> str:
    """配置了自定义域名时统一使用 `customDomain/key`，否则使用服务商默认地址。"""
    if config.custom_domain:
        return f"{config.custom_domain.rstrip('/')}/{object_key}"
    return f"{default_base.rstrip('/')}/{object_key}"


def guess_extension(original_name: Optional[str], mime_type: Optional[str] = None) -> str:
    if original_name and "." in original_name:
        ext = original_name.rsplit(".", 1)[-1].lower()
        if ext.isalnum():
            return ext
    if mime_type:
        guessed = mimetypes.guess_extension(mime_type.split(";")[0].strip())
        if guessed:
            return guessed.lstrip(".")
    return "bin"


def generate_object_key(
    original_name: Optional[str],
    mime_type: Optional[str] = None,
    path_prefix: str = "",
    now: Optional[datetime] = None,
) -> str:
    """生成对象 key：`{prefix}/` 或 `images/YYYY/MM/DD/`，再加 `{毫秒时间戳}-{16位随机hex}.{ext}`。"""
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    base_name = f"{millis}-{secrets.token_hex(8)}.{guess_extension(original_name, mime_type)}"

    prefix = (path_prefix or "").strip("/")
    if prefix:
        return f"{prefix}/{base_name}"
    # 按日期组织目录
    return f"images/{now:%Y/%m/%d}/{base_name}"


_DATA_URL_PREFIX = re.compile(r"^data:[\w.+-]+/[\w.+-]+;base64,")
_WHITESPACE = re.compile(r"\s+")


def decode_payload(data: Union[str, bytes, bytearray]) -> bytes:
    """base64 文本（可带 `data:image/png;base64,` 前缀）解码为字节，原始字节直接返回。"""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    body = _WHITESPACE.sub("", _DATA_URL_PREFIX.sub("", data.strip()))
    # 补齐被截掉的 "=" 填充
    body += "=" * (-len(body) % 4)
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidPayload(f"文件内容不是有效的 base64 数据: {exc}") from exc


class StorageAdapter(ABC):
    """服务商适配器基类。

    子类只需实现同步的 `_put` / `_remove`（直接调用官方 SDK）和 `_default_base`，
    基类负责配置解析、线程池调度、异常包装与公共 URL 拼接。
    """

    storage_type: StorageType
    label: str
    config_model: Type[ProviderConfig]

    def parse_config(self, raw: Mapping[str, Any]) -> ProviderConfig:
        try:
            return self.config_model.model_validate(dict(raw or {}))
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise ConfigurationError(f"{self.label}存储配置不完整: {fields}") from exc

    async def upload(self, raw_config: Mapping[str, Any], object_key: str, data: bytes, mime_type: str) -> UploadResult:
        config = self.parse_config(raw_config)
        try:
            await asyncio.to_thread(self._put, config, object_key, data, mime_type)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self.storage_type.value, f"{self.label}上传错误", str(exc)) from exc
        url = public_url(config, object_key, self._default_base(config))
        logger.info("[%s] uploaded %s (%d bytes)", self.label, object_key, len(data))
        return UploadResult(success=True, object_key=object_key, url=url)

    async def delete(self, raw_config: Mapping[str, Any], object_key: str) -> DeleteResult:
        config = self.parse_config(raw_config)
        try:
            await asyncio.to_thread(self._remove, config, object_key)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self.storage_type.value, f"{self.label}删除错误", str(exc)) from exc
        logger.info("[%s] deleted %s", self.label, object_key)
        return DeleteResult(success=True)

    @abstractmethod
    def _put(self, config: ProviderConfig, object_key: str, data: bytes, mime_type: str) -> None:
        ...

    @abstractmethod
    def _remove(self, config: ProviderConfig, object_key: str) -> None:
        ...

    @abstractmethod
    def _default_base(self, config: ProviderConfig) -> str:
        """未配置自定义域名时，对象 URL 的前缀。"""
