#!/usr/bin/env python3
import sys
from pathlib import Path

# 确保可以导入 app.*
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import models  # noqa: F401  注册 ORM 模型
from app.config import get_settings
from app.database import Base, engine


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def main() -> None:
    settings = get_settings()
    print(f"[db-init] Using {settings.DATABASE_URL}")
    print("[db-init] Creating tables...")
    create_tables()
    print("[db-init] Done.")


if __name__ == "__main__":
    main()
