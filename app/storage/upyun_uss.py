import upyun
from pydantic import Field

from .base import ProviderConfig, StorageAdapter, StorageType


class UpyunConfig(ProviderConfig):
    # bucket 即又拍云的服务名
    operator: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


def create_client(config: UpyunConfig) -> upyun.UpYun:
    return upyun.UpYun(config.bucket, username=config.operator, password=config.password)


class UpyunAdapter(StorageAdapter):
    """又拍云 USS。"""

    storage_type = StorageType.UPYUN
    label = "又拍云"
    config_model = UpyunConfig

    def _put(self, config: UpyunConfig, object_key: str, data: bytes, mime_type: str) -> None:
        headers = {"Content-Type": mime_type} if mime_type else None
        create_client(config).put(f"/{object_key}", data, headers=headers)

    def _remove(self, config: UpyunConfig, object_key: str) -> None:
        create_client(config).delete(f"/{object_key}")

    def _default_base(self, config: UpyunConfig) -> str:
        return f"https://{config.bucket}.b0.upaiyun.com"
