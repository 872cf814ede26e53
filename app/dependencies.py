from fastapi import Depends
from sqlalchemy.orm import Session

from .database import get_db
from .fetcher import ImageFetcher
from .repository import ImageRepository
from .transfer import TransferService


def get_repository(db: Session = Depends(get_db)) -> ImageRepository:
    return ImageRepository(db)


def get_fetcher() -> ImageFetcher:
    return ImageFetcher()


def get_transfer_service(
    repository: ImageRepository = Depends(get_repository),
    fetcher: ImageFetcher = Depends(get_fetcher),
) -> TransferService:
    return TransferService(repository, fetcher)
