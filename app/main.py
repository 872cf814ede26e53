import logging

from fastapi import FastAPI

from .config import get_settings
from .database import Base, engine


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title="图床管理系统 API", version="0.1.0")

    # 路由
    from .routers import images, stats, storage, transfer  # 延迟导入以避免循环

    app.include_router(images.router, prefix="/images", tags=["images"])
    app.include_router(transfer.router, prefix="/transfer", tags=["transfer"])
    app.include_router(storage.router, prefix="/storage", tags=["storage"])
    app.include_router(stats.router, prefix="/stats", tags=["stats"])

    @app.on_event("startup")
    def on_startup() -> None:
        # 初始化数据库表
        Base.metadata.create_all(bind=engine)

    return app


app = create_app()
