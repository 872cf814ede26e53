from urllib.parse import urlparse

import oss2
from pydantic import Field

from .base import ProviderConfig, StorageAdapter, StorageType, normalize_endpoint


class OssConfig(ProviderConfig):
    access_key_id: str = Field(..., alias="accessKeyId", min_length=1)
    access_key_secret: str = Field(..., alias="accessKeySecret", min_length=1)
    endpoint: str = Field(..., min_length=1)


def get_bucket(config: OssConfig) -> oss2.Bucket:
    auth = oss2.Auth(config.access_key_id, config.access_key_secret)
    return oss2.Bucket(auth, normalize_endpoint(config.endpoint), config.bucket)


class OssAdapter(StorageAdapter):
    """阿里云 OSS。"""

    storage_type = StorageType.OSS
    label = "OSS"
    config_model = OssConfig

    def _put(self, config: OssConfig, object_key: str, data: bytes, mime_type: str) -> None:
        headers = {}
        if mime_type:
            headers["Content-Type"] = mime_type
        try:
            result = get_bucket(config).put_object(object_key, data, headers=headers)
        except oss2.exceptions.OssError as e:
            raise RuntimeError(f"{e.message} (错误码: {e.code})") from e
        if result.status != 200:
            raise RuntimeError(f"OSS上传失败: {result.status}")

    def _remove(self, config: OssConfig, object_key: str) -> None:
        try:
            get_bucket(config).delete_object(object_key)
        except oss2.exceptions.OssError as e:
            raise RuntimeError(f"{e.message} (错误码: {e.code})") from e

    def _default_base(self, config: OssConfig) -> str:
        """根据 endpoint 推断公有读URL：`{scheme}://{bucket}.{endpoint host}`。"""
        parsed = urlparse(normalize_endpoint(config.endpoint))
        return f"{parsed.scheme}://{config.bucket}.{parsed.netloc}"
