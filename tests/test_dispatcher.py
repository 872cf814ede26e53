import os
import sys
# 添加项目根目录到PYTHONPATH
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from app.exceptions import ProviderError, UnsupportedStorageType
from app.storage import dispatcher
from app.storage.base import DeleteResult, StorageType, UploadResult

OSS_STORAGE = {
    "type": "oss",
    "config": {"bucket": "pics", "accessKeyId": "ak", "accessKeySecret": "sk", "endpoint": "oss-cn-hangzhou.aliyuncs.com"},
}
FILE = {"name": "cat.png", "data": "aGVsbG8=", "type": "image/png"}


def test_resolve_adapter_known_types():
    for storage_type in dispatcher.SUPPORTED_TYPES:
        assert dispatcher.resolve_adapter(storage_type).storage_type == StorageType(storage_type)


@pytest.mark.asyncio
async def test_upload_unsupported_type_raises_before_network():
    """测试：不支持的存储类型在任何上传调用之前抛出"""
    with patch.object(dispatcher.ADAPTERS[StorageType.OSS], "upload", new=AsyncMock()) as mock_upload:
        with pytest.raises(UnsupportedStorageType) as exc_info:
            await dispatcher.upload_file({"type": "ftp", "config": {}}, FILE)

    assert exc_info.value.storage_type == "ftp"
    mock_upload.assert_not_called()


@pytest.mark.asyncio
async def test_upload_decodes_and_generates_key():
    """测试：base64 内容解码后交给适配器，key 带前缀"""
    adapter = dispatcher.ADAPTERS[StorageType.OSS]

    async def fake_upload(config, object_key, data, mime_type):
        return UploadResult(success=True, object_key=object_key, url=f"https://cdn/{object_key}")

    with patch.object(adapter, "upload", side_effect=fake_upload) as mock_upload:
        result = await dispatcher.upload_file(OSS_STORAGE, FILE, "avatars")

    assert result.success is True
    assert result.object_key.startswith("avatars/")
    assert result.object_key.endswith(".png")
    config, object_key, data, mime_type = mock_upload.call_args.args
    assert config == OSS_STORAGE["config"]
    assert data == b"hello"
    assert mime_type == "image/png"


@pytest.mark.asyncio
async def test_upload_provider_error_becomes_failed_result():
    """测试：服务商错误收敛为失败结果，错误信息保留服务商前缀"""
    adapter = dispatcher.ADAPTERS[StorageType.OSS]
    error = ProviderError("oss", "OSS上传错误", "AccessDenied")
    with patch.object(adapter, "upload", new=AsyncMock(side_effect=error)):
        result = await dispatcher.upload_file(OSS_STORAGE, FILE)

    assert result.success is False
    assert result.error == "OSS上传错误: AccessDenied"


@pytest.mark.asyncio
async def test_upload_invalid_payload_becomes_failed_result():
    adapter = dispatcher.ADAPTERS[StorageType.OSS]
    with patch.object(adapter, "upload", new=AsyncMock()) as mock_upload:
        result = await dispatcher.upload_file(OSS_STORAGE, {"name": "x.png", "data": "@@@", "type": "image/png"})

    assert result.success is False
    mock_upload.assert_not_called()


@pytest.mark.asyncio
async def test_delete_accepts_orm_like_object():
    storage = SimpleNamespace(type="oss", config=OSS_STORAGE["config"])
    adapter = dispatcher.ADAPTERS[StorageType.OSS]
    with patch.object(adapter, "delete", new=AsyncMock(return_value=DeleteResult(success=True))) as mock_delete:
        result = await dispatcher.delete_file(storage, "images/a.png")

    assert result.success is True
    mock_delete.assert_awaited_once_with(OSS_STORAGE["config"], "images/a.png")


@pytest.mark.asyncio
async def test_delete_provider_error_becomes_failed_result():
    adapter = dispatcher.ADAPTERS[StorageType.OSS]
    error = ProviderError("oss", "OSS删除错误", "NoSuchKey")
    with patch.object(adapter, "delete", new=AsyncMock(side_effect=error)):
        result = await dispatcher.delete_file(OSS_STORAGE, "images/a.png")
    assert result.success is False
    assert result.error == "OSS删除错误: NoSuchKey"


@pytest.mark.parametrize(
    "storage, url, expected",
    [
        (OSS_STORAGE, "https://pics.oss-cn-hangzhou.aliyuncs.com/images/2024/01/01/a.png", "images/2024/01/01/a.png"),
        (
            {"type": "minio", "config": {"bucket": "pics", "endpoint": "http://minio:9000"}},
            "http://minio:9000/pics/transfer/a.png",
            "transfer/a.png",
        ),
        (
            {"type": "s3", "config": {"bucket": "pics", "endpoint": "https://s3.example.com"}},
            "https://s3.example.com/pics/a.png",
            "a.png",
        ),
        (
            {"type": "qiniu", "config": {"bucket": "pics", "customDomain": "https://img.example.com/static"}},
            "https://img.example.com/static/images/a%20b.png",
            "images/a b.png",
        ),
        (OSS_STORAGE, "not a url", None),
        (OSS_STORAGE, None, None),
    ],
)
def test_extract_object_key(storage, url, expected):
    assert dispatcher.extract_object_key(url, storage) == expected
