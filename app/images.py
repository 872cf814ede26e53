"""图片彻底删除：先删对象存储中的文件，成功后才删除数据库记录。"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .exceptions import StorageConfigNotFound
from .storage import dispatcher


logger = logging.getLogger(__name__)

REMOTE_UPLOAD_TYPES = ("cloud", "transfer")


@dataclass(frozen=True)
class PurgeResult:
    image_id: int
    success: bool
    storage_deleted: bool = False
    object_key: Optional[str] = None
    error: Optional[str] = None


async def purge_image(repository: Any, image_id: int) -> Optional[PurgeResult]:
    """彻底删除图片（含已软删除的记录），图片不存在返回 None。

    对象存储删除失败时保留数据库记录，便于后续重试或人工对账。
    """
    record = repository.get_image(image_id, include_deleted=True)
    if record is None:
        return None

    if record.upload_type not in REMOTE_UPLOAD_TYPES or record.storage_id is None:
        repository.hard_delete_image(image_id)
        return PurgeResult(image_id=image_id, success=True)

    storage = repository.get_storage(record.storage_id, include_inactive=True)
    if storage is None:
        error = str(StorageConfigNotFound(record.storage_id))
        logger.warning("图片 %s 彻底删除失败: %s", image_id, error)
        return PurgeResult(image_id=image_id, success=False, error=error)

    object_key = record.file_path or dispatcher.extract_object_key(record.file_url, storage)
    if not object_key:
        return PurgeResult(image_id=image_id, success=False, error="无法从文件URL中解析对象 key")

    deleted = await dispatcher.delete_file(storage, object_key)
    if not deleted.success:
        logger.warning("图片 %s 对象存储删除失败: %s", image_id, deleted.error)
        return PurgeResult(image_id=image_id, success=False, object_key=object_key, error=deleted.error)

    repository.hard_delete_image(image_id)
    logger.info("图片 %s 已彻底删除 (%s)", image_id, object_key)
    return PurgeResult(image_id=image_id, success=True, storage_deleted=True, object_key=object_key)
