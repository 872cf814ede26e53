from pydantic import Field
from qcloud_cos import CosConfig as CosClientConfig
from qcloud_cos import CosS3Client
from qcloud_cos.cos_exception import CosClientError, CosServiceError

from .base import ProviderConfig, StorageAdapter, StorageType, extract_region, normalize_endpoint


class CosConfig(ProviderConfig):
    secret_id: str = Field(..., alias="secretId", min_length=1)
    secret_key: str = Field(..., alias="secretKey", min_length=1)
    # 形如 https://<bucket>.cos.ap-guangzhou.myqcloud.com，region 从中解析
    endpoint: str = Field(..., min_length=1)


def create_client(config: CosConfig) -> CosS3Client:
    region = extract_region(config.endpoint, StorageType.COS)
    return CosS3Client(CosClientConfig(Region=region, SecretId=config.secret_id, SecretKey=config.secret_key))


def _describe(e: Exception) -> str:
    if isinstance(e, CosServiceError):
        return f"{e.get_error_msg()} (错误码: {e.get_error_code()})"
    return str(e)


class CosAdapter(StorageAdapter):
    """腾讯云 COS。"""

    storage_type = StorageType.COS
    label = "COS"
    config_model = CosConfig

    def _put(self, config: CosConfig, object_key: str, data: bytes, mime_type: str) -> None:
        try:
            create_client(config).put_object(
                Bucket=config.bucket,
                Key=object_key,
                Body=data,
                ContentType=mime_type or "application/octet-stream",
            )
        except (CosClientError, CosServiceError) as e:
            raise RuntimeError(_describe(e)) from e

    def _remove(self, config: CosConfig, object_key: str) -> None:
        try:
            create_client(config).delete_object(Bucket=config.bucket, Key=object_key)
        except (CosClientError, CosServiceError) as e:
            raise RuntimeError(_describe(e)) from e

    def _default_base(self, config: CosConfig) -> str:
        return normalize_endpoint(config.endpoint)
