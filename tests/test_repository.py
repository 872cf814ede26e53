import os
import sys
# 添加项目根目录到PYTHONPATH
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.exceptions import UnsupportedStorageType
from app.repository import ImageRepository


@pytest.fixture
def repository():
    engine = create_engine("sqlite://", future=True)
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    db = Session()
    try:
        yield ImageRepository(db)
    finally:
        db.close()
        engine.dispose()


def make_image(repository, **overrides):
    fields = dict(
        filename="a.png",
        original_name="a.png",
        file_path="images/2024/01/01/a.png",
        file_url="https://cdn.example.com/images/2024/01/01/a.png",
        file_size=100,
        mime_type="image/png",
        upload_type="cloud",
    )
    fields.update(overrides)
    return repository.create_image_record(**fields)


def test_increment_daily_stats_accumulates(repository):
    """测试：同一天的统计累加而不是覆盖"""
    repository.increment_daily_stats("2024-03-05", 1, 100, 0)
    row = repository.increment_daily_stats("2024-03-05", 1, 100, 0)

    assert row.upload_count == 2
    assert row.total_size == 200
    assert row.transfer_count == 0

    other = repository.increment_daily_stats("2024-03-06", 0, 50, 3)
    assert (other.upload_count, other.total_size, other.transfer_count) == (0, 50, 3)


def test_set_default_storage_keeps_single_default(repository):
    """测试：切换默认存储后只有一个默认存储"""
    first = repository.create_storage("OSS", "oss", {"bucket": "a"})
    second = repository.create_storage("MinIO", "minio", {"bucket": "b"})

    repository.set_default_storage(first.id)
    repository.set_default_storage(second.id)

    defaults = [s for s in repository.list_storages() if s.is_default]
    assert [s.id for s in defaults] == [second.id]
    assert repository.get_default_storage().id == second.id


def test_create_storage_rejects_unknown_type(repository):
    with pytest.raises(UnsupportedStorageType):
        repository.create_storage("FTP", "ftp", {})


def test_deactivate_storage(repository):
    """测试：默认存储不能停用，停用后查询不到"""
    storage = repository.create_storage("COS", "cos", {"bucket": "a"})
    other = repository.create_storage("S3", "s3", {"bucket": "b"})
    repository.set_default_storage(storage.id)

    assert repository.deactivate_storage(storage.id) is None
    assert repository.deactivate_storage(other.id) is not None
    assert repository.get_storage(other.id) is None
    assert repository.get_storage(other.id, include_inactive=True) is not None


def test_update_storage(repository):
    storage = repository.create_storage("OSS", "oss", {"bucket": "a"})
    updated = repository.update_storage(storage.id, "OSS 新", "oss", {"bucket": "b"})
    assert updated.name == "OSS 新"
    assert updated.config == {"bucket": "b"}
    assert repository.update_storage(999, "x", "oss", {}) is None


def test_soft_and_hard_delete(repository):
    record = make_image(repository)

    assert repository.soft_delete_image(record.id) is not None
    assert repository.get_image(record.id) is None
    assert repository.get_image(record.id, include_deleted=True) is not None
    assert repository.soft_delete_image(record.id) is None

    assert repository.hard_delete_image(record.id) is True
    assert repository.get_image(record.id, include_deleted=True) is None
    assert repository.hard_delete_image(record.id) is False


def test_list_images_filters_and_paginates(repository):
    for i in range(5):
        make_image(repository, filename=f"cat-{i}.png", original_name=f"cat-{i}.png", upload_type="transfer")
    make_image(repository, filename="dog.png", original_name="dog.png", user_id=1)
    deleted = make_image(repository, filename="cat-x.png", original_name="cat-x.png", upload_type="transfer")
    repository.soft_delete_image(deleted.id)

    total, items = repository.list_images(page=1, size=2, upload_type="transfer")
    assert total == 5
    assert len(items) == 2

    total, items = repository.list_images(search="dog")
    assert total == 1
    assert items[0].original_name == "dog.png"

    total, _ = repository.list_images(user_id=1)
    assert total == 1


def test_overall_stats(repository):
    make_image(repository, file_size=100)
    make_image(repository, file_size=300, upload_type="transfer")
    deleted = make_image(repository, file_size=1000)
    repository.soft_delete_image(deleted.id)

    stats = repository.overall_stats()
    assert stats == {"total_images": 2, "total_size": 400, "monthly_uploads": 2, "total_transfers": 1}


def test_upload_trend(repository):
    from app.transfer import utc_today

    repository.increment_daily_stats(utc_today(), 2, 10, 1)
    repository.increment_daily_stats("2000-01-01", 1, 1, 0)

    rows = repository.upload_trend(30)
    assert [r.date for r in rows] == [utc_today()]


def test_update_image_metadata(repository):
    record = make_image(repository)
    updated = repository.update_image(record.id, tags=["cat", "orange"])
    assert updated.tags == ["cat", "orange"]
    assert updated.description is None

    updated = repository.update_image(record.id, description="橘猫")
    assert updated.tags == ["cat", "orange"]
    assert updated.description == "橘猫"
    assert repository.update_image(999, tags=[]) is None
