"""图床核心的异常定义。

批量接口内部的单项失败都会被收集进结果，不会跨批次抛出；
只有预检失败（空列表、没有有效URL、存储配置缺失）才会直接抛给调用方。
"""

from typing import Optional


class ImageBedError(Exception):
    """所有业务异常的基类，`reason` 为机器可读的错误码。"""

    reason = "error"

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason

    def __str__(self) -> str:
        return self.message


# ---- 配置错误：立即失败，不重试 ----

class ConfigurationError(ImageBedError):
    reason = "configuration_error"


class UnsupportedStorageType(ConfigurationError):
    reason = "unsupported_storage_type"

    def __init__(self, storage_type: object) -> None:
        super().__init__(f"不支持的存储类型: {storage_type}")
        self.storage_type = storage_type


class NoDefaultStorageConfigured(ConfigurationError):
    reason = "no_default_storage"

    def __init__(self) -> None:
        super().__init__("未找到默认存储配置，请先配置对象存储")


class StorageConfigNotFound(ConfigurationError):
    reason = "storage_config_not_found"

    def __init__(self, storage_id: object) -> None:
        super().__init__(f"存储配置不存在或已被禁用: {storage_id}")
        self.storage_id = storage_id


# ---- 远程下载 ----

class FetchError(ImageBedError):
    reason = "fetch_error"
    retryable = False


class TransientFetchError(FetchError):
    """超时、连接中断、5xx 等，可以换请求头重试。"""

    reason = "transient"
    retryable = True


class BadStatus(TransientFetchError):
    reason = "bad_status"

    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}: 下载失败")
        self.status = status


class FetchValidationError(FetchError):
    reason = "validation_error"


class InvalidUrlError(FetchValidationError):
    reason = "invalid_url"

    def __init__(self, url: str) -> None:
        super().__init__(f"无效的URL格式: {url}")
        self.url = url


class BadContentType(FetchValidationError):
    reason = "bad_content_type"

    def __init__(self, content_type: Optional[str]) -> None:
        super().__init__(f"无效的内容类型: {content_type}")
        self.content_type = content_type


class TooLarge(FetchValidationError):
    reason = "too_large"

    def __init__(self, limit: int) -> None:
        super().__init__(f"文件大小超过限制 ({limit // (1024 * 1024)}MB)")
        self.limit = limit


# ---- 对象存储服务商 ----

class ProviderError(ImageBedError):
    """服务商 SDK / API 返回的错误，消息以服务商前缀开头，如 `COS上传错误: ...`。"""

    reason = "provider_error"

    def __init__(self, provider: str, label: str, message: str) -> None:
        super().__init__(f"{label}: {message}")
        self.provider = provider


class InvalidPayload(ImageBedError):
    reason = "invalid_payload"


# ---- 元数据持久化 ----

class PersistenceError(ImageBedError):
    """对象已经上传成功，但数据库记录写入失败，需要人工对账。"""

    reason = "persistence_error"

    def __init__(self, message: str, object_key: Optional[str] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.object_key = object_key
        self.url = url


# ---- 批次预检 ----

class BatchError(ImageBedError):
    reason = "batch_error"


class EmptyBatchError(BatchError):
    reason = "empty_batch"

    def __init__(self, message: str = "请提供有效的图片URL列表") -> None:
        super().__init__(message)


class NoValidUrlError(BatchError):
    reason = "no_valid_url"

    def __init__(self) -> None:
        super().__init__("没有有效的图片URL")
