from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from .database import Base


class StorageConfig(Base):
    __tablename__ = "storage_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False)
    type = Column(String(16), nullable=False)
    # 各服务商的凭证 / bucket / endpoint / customDomain 等，原样保存
    config = Column(JSON, nullable=False, default=dict)
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Image(Base):
    __tablename__ = "images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    # 对象存储中的 key
    file_path = Column(String(512), nullable=False)
    file_url = Column(String(1024), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    mime_type = Column(String(128), nullable=False)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    upload_type = Column(String(16), nullable=False, default="local", index=True)
    original_url = Column(String(2048), nullable=True)
    storage_id = Column(Integer, ForeignKey("storage_configs.id", ondelete="SET NULL"), nullable=True)

    tags = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_images_created_at", "created_at"),
    )


class UploadStat(Base):
    __tablename__ = "upload_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # YYYY-MM-DD（UTC）
    date = Column(String(10), nullable=False, unique=True)
    upload_count = Column(Integer, nullable=False, default=0)
    total_size = Column(BigInteger, nullable=False, default=0)
    transfer_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
