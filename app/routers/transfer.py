import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ..config import get_settings
from ..dependencies import get_fetcher, get_transfer_service
from ..exceptions import BatchError, FetchError
from ..fetcher import ImageFetcher
from ..schemas import BatchResponse, TransferRequest, UrlCheckOut, ValidateUrlsRequest, ValidateUrlsResponse
from ..transfer import TransferService

logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("", response_model=BatchResponse)
async def transfer_images(
    *,
    request: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
):
    """批量转存网络图片到默认对象存储。

    即使全部失败也返回 200，`summary` 中给出成功/失败数量，`data` 中逐条给出原因。
    """
    urls = [u.strip() for u in request.urls if u and u.strip()]
    if not urls:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="请提供有效的图片URL列表")

    max_urls = get_settings().TRANSFER_MAX_URLS
    if len(urls) > max_urls:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"单次最多支持转存{max_urls}张图片")

    try:
        result = await service.transfer_batch(urls, request.user_id)
    except BatchError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return BatchResponse(
        success=True,
        message=f"批量转存完成：成功 {result.success_count} 张，失败 {result.failed_count} 张",
        data=result.to_list(),
        summary=result.summary(),
    )


@router.post("/validate", response_model=ValidateUrlsResponse)
async def validate_urls(
    *,
    request: ValidateUrlsRequest,
    service: TransferService = Depends(get_transfer_service),
):
    """只检查响应头（状态码 + Content-Type），不下载内容。"""
    try:
        checks = await service.validate_urls(request.urls)
    except BatchError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    valid_count = sum(1 for c in checks if c.valid)
    return ValidateUrlsResponse(
        success=True,
        message=f"验证完成：{valid_count}/{len(checks)} 个有效URL",
        data=[UrlCheckOut.model_validate(c) for c in checks],
    )


@router.get("/proxy-image")
async def proxy_image(
    url: Optional[str] = Query(None),
    fetcher: ImageFetcher = Depends(get_fetcher),
):
    """代理远程图片给前端预览，绕开源站的防盗链和跨域限制。"""
    if not url or not url.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="缺少图片URL参数")

    try:
        result = await fetcher.fetch(url.strip())
    except FetchError as e:
        logger.error("代理图片失败 %s: %s", url, e)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="图片加载失败")

    return Response(
        content=result.content,
        media_type=result.content_type or "image/jpeg",
        headers={"Cache-Control": "public, max-age=86400", "Access-Control-Allow-Origin": "*"},
    )
