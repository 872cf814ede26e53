from pydantic import Field
from qiniu import Auth, BucketManager, put_data

from .base import ProviderConfig, StorageAdapter, StorageType


class QiniuConfig(ProviderConfig):
    access_key: str = Field(..., alias="accessKey", min_length=1)
    secret_key: str = Field(..., alias="secretKey", min_length=1)


class QiniuAdapter(StorageAdapter):
    """七牛云 Kodo，表单上传。"""

    storage_type = StorageType.QINIU
    label = "七牛云"
    config_model = QiniuConfig

    def _put(self, config: QiniuConfig, object_key: str, data: bytes, mime_type: str) -> None:
        auth = Auth(config.access_key, config.secret_key)
        token = auth.upload_token(config.bucket, object_key)
        _, info = put_data(token, object_key, data, mime_type=mime_type or "application/octet-stream")
        if info.status_code != 200:
            raise RuntimeError(f"七牛云上传失败: {info.status_code} {info.error or ''}".strip())

    def _remove(self, config: QiniuConfig, object_key: str) -> None:
        manager = BucketManager(Auth(config.access_key, config.secret_key))
        _, info = manager.delete(config.bucket, object_key)
        if info.status_code != 200:
            raise RuntimeError(f"七牛云删除失败: {info.status_code} {info.error or ''}".strip())

    def _default_base(self, config: QiniuConfig) -> str:
        # 七牛没有固定的公网域名，生产环境应配置 customDomain
        return "https://cdn.qiniu.com"
