from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """项目配置，支持从环境变量与.env文件加载。"""

    # 数据库（SQLite / PostgreSQL）
    DATABASE_URL: str = "sqlite:///./imagebed.db"
    DATABASE_ECHO: bool = False

    LOG_LEVEL: str = "INFO"

    # 转存临时文件目录
    UPLOAD_DIR: str = "./uploads"

    # 批量转存 / 上传
    TRANSFER_MAX_URLS: int = 20
    TRANSFER_CONCURRENCY: int = 3
    TRANSFER_BATCH_PAUSE: float = 1.0
    UPLOAD_CONCURRENCY: int = 3
    VALIDATE_CONCURRENCY: int = 5

    # 远程下载
    FETCH_TIMEOUT: float = 30.0
    FETCH_MAX_REDIRECTS: int = 5
    FETCH_MAX_BYTES: int = 50 * 1024 * 1024
    FETCH_MAX_ATTEMPTS: int = 3
    FETCH_RETRY_DELAY: float = 1.0
    VALIDATE_TIMEOUT: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
