from typing import List

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_repository
from ..repository import ImageRepository
from ..schemas import DailyStatOut, StatsResponse


router = APIRouter()


@router.get("", response_model=StatsResponse)
def stats(repository: ImageRepository = Depends(get_repository)) -> StatsResponse:
    return StatsResponse(**repository.overall_stats())


@router.get("/trend", response_model=List[DailyStatOut])
def upload_trend(
    days: int = Query(30, ge=1, le=365),
    repository: ImageRepository = Depends(get_repository),
) -> List[DailyStatOut]:
    # 最近 N 天的每日上传 / 转存计数，按日期倒序
    return [DailyStatOut.model_validate(row) for row in repository.upload_trend(days)]
