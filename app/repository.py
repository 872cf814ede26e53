"""图片记录、存储配置、每日统计的数据库访问。

统计计数使用 `INSERT ... ON CONFLICT DO UPDATE` 累加，多个批次并发写入同一天也不会互相覆盖；
默认存储的切换在同一个事务里先清空再设置，保证同一时刻最多只有一个默认存储。
"""

from datetime import date as date_type
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, or_
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import ConfigurationError, UnsupportedStorageType
from .models import Image, StorageConfig, UploadStat
from .storage.base import StorageType


_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


def _check_type(storage_type: str) -> str:
    try:
        return StorageType(storage_type).value
    except ValueError:
        raise UnsupportedStorageType(storage_type)


class ImageRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # ---- 图片 ----

    def create_image_record(self, **fields: Any) -> Image:
        record = Image(**fields)
        self.db.add(record)
        self._commit()
        self.db.refresh(record)
        return record

    def get_image(self, image_id: int, include_deleted: bool = False) -> Optional[Image]:
        record = self.db.get(Image, image_id)
        if record is None or (record.is_deleted and not include_deleted):
            return None
        return record

    def list_images(
        self,
        *,
        page: int = 1,
        size: int = 20,
        upload_type: Optional[str] = None,
        user_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> Tuple[int, List[Image]]:
        q = self.db.query(Image).filter(Image.is_deleted.is_(False))
        if upload_type:
            q = q.filter(Image.upload_type == upload_type)
        if user_id is not None:
            q = q.filter(Image.user_id == user_id)
        if search:
            pattern = f"%{search}%"
            q = q.filter(or_(Image.original_name.ilike(pattern), Image.filename.ilike(pattern)))

        total = q.count()
        items = q.order_by(Image.created_at.desc(), Image.id.desc()).offset((page - 1) * size).limit(size).all()
        return total, items

    def update_image(
        self, image_id: int, tags: Optional[List[str]] = None, description: Optional[str] = None
    ) -> Optional[Image]:
        record = self.get_image(image_id)
        if record is None:
            return None
        if tags is not None:
            record.tags = list(tags)
        if description is not None:
            record.description = description
        self._commit()
        return record

    def soft_delete_image(self, image_id: int) -> Optional[Image]:
        record = self.get_image(image_id)
        if record is None:
            return None
        record.is_deleted = True
        self._commit()
        return record

    def hard_delete_image(self, image_id: int) -> bool:
        record = self.db.get(Image, image_id)
        if record is None:
            return False
        self.db.delete(record)
        self._commit()
        return True

    # ---- 存储配置 ----

    def list_storages(self) -> List[StorageConfig]:
        return (
            self.db.query(StorageConfig)
            .filter(StorageConfig.is_active.is_(True))
            .order_by(StorageConfig.is_default.desc(), StorageConfig.created_at.asc(), StorageConfig.id.asc())
            .all()
        )

    def get_storage(self, storage_id: int, include_inactive: bool = False) -> Optional[StorageConfig]:
        q = self.db.query(StorageConfig).filter(StorageConfig.id == storage_id)
        if not include_inactive:
            q = q.filter(StorageConfig.is_active.is_(True))
        return q.one_or_none()

    def get_default_storage(self) -> Optional[StorageConfig]:
        return (
            self.db.query(StorageConfig)
            .filter(StorageConfig.is_default.is_(True), StorageConfig.is_active.is_(True))
            .order_by(StorageConfig.id.asc())
            .first()
        )

    def create_storage(self, name: str, storage_type: str, config: Dict[str, Any]) -> StorageConfig:
        storage = StorageConfig(name=name, type=_check_type(storage_type), config=dict(config))
        self.db.add(storage)
        self._commit()
        self.db.refresh(storage)
        return storage

    def update_storage(
        self, storage_id: int, name: str, storage_type: str, config: Dict[str, Any]
    ) -> Optional[StorageConfig]:
        storage = self.get_storage(storage_id)
        if storage is None:
            return None
        storage.name = name
        storage.type = _check_type(storage_type)
        storage.config = dict(config)
        self._commit()
        self.db.refresh(storage)
        return storage

    def set_default_storage(self, storage_id: int) -> Optional[StorageConfig]:
        storage = self.get_storage(storage_id)
        if storage is None:
            return None
        others = self.db.query(StorageConfig).filter(
            StorageConfig.is_default.is_(True), StorageConfig.id != storage_id
        )
        for other in others:
            other.is_default = False
        storage.is_default = True
        self._commit()
        self.db.refresh(storage)
        return storage

    def deactivate_storage(self, storage_id: int) -> Optional[StorageConfig]:
        """停用存储配置（软删除），默认存储不能被停用。"""
        storage = self.get_storage(storage_id)
        if storage is None or storage.is_default:
            return None
        storage.is_active = False
        self._commit()
        return storage

    # ---- 统计 ----

    def increment_daily_stats(
        self,
        date: Union[str, date_type],
        upload_count: int = 0,
        total_size: int = 0,
        transfer_count: int = 0,
    ) -> UploadStat:
        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise ConfigurationError(f"不支持的数据库类型: {dialect}")

        day = str(date)
        now = datetime.utcnow()
        stmt = insert(UploadStat).values(
            date=day,
            upload_count=upload_count,
            total_size=total_size,
            transfer_count=transfer_count,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UploadStat.date],
            set_={
                "upload_count": UploadStat.upload_count + stmt.excluded.upload_count,
                "total_size": UploadStat.total_size + stmt.excluded.total_size,
                "transfer_count": UploadStat.transfer_count + stmt.excluded.transfer_count,
                "updated_at": now,
            },
        )
        try:
            self.db.execute(stmt)
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self._commit()
        return self.db.query(UploadStat).populate_existing().filter(UploadStat.date == day).one()

    def overall_stats(self) -> Dict[str, int]:
        alive = self.db.query(Image).filter(Image.is_deleted.is_(False))
        month_start = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        total_images = alive.count()
        total_size = (
            self.db.query(func.coalesce(func.sum(Image.file_size), 0)).filter(Image.is_deleted.is_(False)).scalar()
            or 0
        )
        monthly_uploads = alive.filter(Image.created_at >= month_start).count()
        total_transfers = alive.filter(Image.upload_type == "transfer").count()
        return {
            "total_images": int(total_images),
            "total_size": int(total_size),
            "monthly_uploads": int(monthly_uploads),
            "total_transfers": int(total_transfers),
        }

    def upload_trend(self, days: int = 30) -> List[UploadStat]:
        start = (datetime.utcnow().date() - timedelta(days=days)).isoformat()
        return (
            self.db.query(UploadStat)
            .filter(UploadStat.date >= start)
            .order_by(UploadStat.date.desc())
            .all()
        )
