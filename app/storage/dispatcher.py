"""按存储配置的 `type` 选择适配器，负责生成对象 key、解码文件内容。"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import unquote, urlparse

from ..exceptions import InvalidPayload, ProviderError, UnsupportedStorageType
from .base import DeleteResult, StorageAdapter, StorageType, UploadResult, decode_payload, generate_object_key
from .cos import CosAdapter
from .oss import OssAdapter
from .qiniu_kodo import QiniuAdapter
from .s3 import MinioAdapter, S3Adapter
from .upyun_uss import UpyunAdapter


logger = logging.getLogger(__name__)


ADAPTERS: Dict[StorageType, StorageAdapter] = {
    StorageType.S3: S3Adapter(),
    StorageType.MINIO: MinioAdapter(),
    StorageType.COS: CosAdapter(),
    StorageType.OSS: OssAdapter(),
    StorageType.QINIU: QiniuAdapter(),
    StorageType.UPYUN: UpyunAdapter(),
}

SUPPORTED_TYPES = tuple(t.value for t in StorageType)


def _storage_parts(storage: Any) -> Tuple[Any, Mapping[str, Any]]:
    """兼容 ORM 对象与 dict 两种存储配置。"""
    if isinstance(storage, Mapping):
        return storage.get("type"), storage.get("config") or {}
    return storage.type, storage.config or {}


def resolve_adapter(storage_type: Any) -> StorageAdapter:
    try:
        return ADAPTERS[StorageType(storage_type)]
    except (ValueError, KeyError):
        raise UnsupportedStorageType(storage_type)


def _field(file: Any, name: str, default: Any = None) -> Any:
    if isinstance(file, Mapping):
        return file.get(name, default)
    return getattr(file, name, default)


async def upload_file(storage: Any, file: Any, path_prefix: str = "") -> UploadResult:
    """上传单个文件到指定存储。

    `file` 需包含 `name` / `data` / `type`，`data` 可以是 base64 文本或原始字节。
    存储类型不受支持时在任何网络请求之前抛 `UnsupportedStorageType`；
    服务商错误和内容解码错误收敛为 `UploadResult(success=False)`。
    """
    storage_type, config = _storage_parts(storage)
    adapter = resolve_adapter(storage_type)

    name = _field(file, "name") or ""
    mime_type = _field(file, "type") or "application/octet-stream"
    object_key = generate_object_key(name, mime_type, path_prefix)

    try:
        data = decode_payload(_field(file, "data") or b"")
        return await adapter.upload(config, object_key, data, mime_type)
    except (ProviderError, InvalidPayload) as e:
        logger.error("存储服务上传失败: %s", e)
        return UploadResult(success=False, error=str(e))


async def delete_file(storage: Any, object_key: str) -> DeleteResult:
    storage_type, config = _storage_parts(storage)
    adapter = resolve_adapter(storage_type)
    try:
        return await adapter.delete(config, object_key)
    except ProviderError as e:
        logger.error("存储服务删除失败: %s", e)
        return DeleteResult(success=False, error=str(e))


def extract_object_key(file_url: Optional[str], storage: Any) -> Optional[str]:
    """从保存的公共 URL 反推对象 key。"""
    if not file_url:
        return None
    storage_type, config = _storage_parts(storage)
    parsed = urlparse(file_url)
    if not parsed.scheme or not parsed.netloc:
        return None

    path = unquote(parsed.path).lstrip("/")

    custom_domain = config.get("customDomain")
    if custom_domain:
        domain_path = urlparse(custom_domain if "://" in custom_domain else f"https://{custom_domain}").path.strip("/")
        if domain_path and path.startswith(f"{domain_path}/"):
            path = path[len(domain_path) + 1:]
        return path or None

    # 路径样式的 endpoint 会把 bucket 放在第一段
    path_style = storage_type == StorageType.MINIO.value or (storage_type == StorageType.S3.value and config.get("endpoint"))
    if path_style and "/" in path:
        head, rest = path.split("/", 1)
        if head == config.get("bucket"):
            path = rest
    return path or None


def validate_config(storage_type: Any, config: Mapping[str, Any]) -> None:
    """只在本地校验配置是否完整，不发起任何网络请求；不通过时抛 `ConfigurationError`。"""
    resolve_adapter(storage_type).parse_config(config)
