from typing import Optional

import boto3
from botocore.client import Config as BotoConfig
from pydantic import AliasChoices, Field

from .base import ProviderConfig, StorageAdapter, StorageType, normalize_endpoint


class S3Config(ProviderConfig):
    access_key_id: str = Field(..., validation_alias=AliasChoices("accessKeyId", "accessKey"), min_length=1)
    secret_access_key: str = Field(
        ..., validation_alias=AliasChoices("secretAccessKey", "secretKey"), min_length=1
    )
    region: str = Field(..., min_length=1)
    endpoint: Optional[str] = None


class MinioConfig(S3Config):
    # MinIO 必须提供 endpoint，region 任意
    region: str = "us-east-1"
    endpoint: str = Field(..., min_length=1)


def create_client(config: S3Config):
    kwargs = {
        "aws_access_key_id": config.access_key_id,
        "aws_secret_access_key": config.secret_access_key,
        "region_name": config.region,
    }
    if config.endpoint:
        # 自定义 endpoint 使用路径样式
        kwargs["endpoint_url"] = normalize_endpoint(config.endpoint)
        kwargs["config"] = BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"})
    return boto3.client("s3", **kwargs)


class S3Adapter(StorageAdapter):
    """Amazon S3 及兼容服务。"""

    storage_type = StorageType.S3
    label = "S3"
    config_model = S3Config

    def _put(self, config: S3Config, object_key: str, data: bytes, mime_type: str) -> None:
        create_client(config).put_object(
            Bucket=config.bucket,
            Key=object_key,
            Body=data,
            ContentType=mime_type or "application/octet-stream",
        )

    def _remove(self, config: S3Config, object_key: str) -> None:
        create_client(config).delete_object(Bucket=config.bucket, Key=object_key)

    def _default_base(self, config: S3Config) -> str:
        if config.endpoint:
            return f"{normalize_endpoint(config.endpoint)}/{config.bucket}"
        return f"https://{config.bucket}.s3.{config.region}.amazonaws.com"


class MinioAdapter(S3Adapter):
    """MinIO，走 S3 协议。"""

    storage_type = StorageType.MINIO
    label = "MinIO"
    config_model = MinioConfig
