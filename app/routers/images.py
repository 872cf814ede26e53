import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_repository, get_transfer_service
from ..exceptions import BatchError, ConfigurationError
from ..images import purge_image
from ..repository import ImageRepository
from ..schemas import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    BatchResponse,
    ImageDeleteResponse,
    ImageListResponse,
    ImageOut,
    ImageUpdateRequest,
    UploadToStorageRequest,
)
from ..transfer import TransferService

logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("/upload-to-storage", response_model=BatchResponse)
async def upload_to_storage(
    *,
    request: UploadToStorageRequest,
    service: TransferService = Depends(get_transfer_service),
):
    """批量上传 base64 文件到指定的对象存储。"""
    if not request.files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="没有提供文件数据")
    if request.storage_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="请选择存储方式")

    try:
        result = await service.upload_files(request.files, request.storage_id, request.user_id)
    except (BatchError, ConfigurationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if result.failed_count:
        message = f"{result.success_count}/{result.total} 个文件上传成功"
    else:
        message = "所有文件上传成功"
    return BatchResponse(
        success=result.success_count > 0,
        message=message,
        data=result.to_list(),
        summary=result.summary(),
    )


@router.get("", response_model=ImageListResponse)
def list_images(
    *,
    repository: ImageRepository = Depends(get_repository),
    upload_type: Optional[str] = Query(None, pattern="^(local|cloud|transfer)$"),
    user_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
):
    total, items = repository.list_images(
        page=page, size=size, upload_type=upload_type, user_id=user_id, search=search
    )
    return ImageListResponse(total=total, page=page, size=size, items=[ImageOut.model_validate(i) for i in items])


@router.get("/{image_id}", response_model=ImageOut)
def get_image_detail(image_id: int, repository: ImageRepository = Depends(get_repository)) -> ImageOut:
    record = repository.get_image(image_id)
    if not record:
        raise HTTPException(status_code=404, detail="图片不存在")
    return ImageOut.model_validate(record)


@router.put("/{image_id}", response_model=ImageOut)
def update_image(image_id: int, payload: ImageUpdateRequest, repository: ImageRepository = Depends(get_repository)):
    if payload.tags is None and payload.description is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="没有要更新的字段")
    record = repository.update_image(image_id, tags=payload.tags, description=payload.description)
    if record is None:
        raise HTTPException(status_code=404, detail="图片不存在")
    return ImageOut.model_validate(record)


@router.delete("", response_model=BatchDeleteResponse)
def delete_images(payload: BatchDeleteRequest, repository: ImageRepository = Depends(get_repository)):
    """批量软删除，不存在的图片记入 errors，不影响其他图片。"""
    if not payload.ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="请提供要删除的图片ID列表")

    deleted, errors = [], []
    for image_id in payload.ids:
        if repository.soft_delete_image(image_id) is None:
            errors.append(f"图片 {image_id} 不存在")
        else:
            deleted.append(image_id)

    return BatchDeleteResponse(
        success=bool(deleted),
        message=f"成功删除 {len(deleted)} 张图片",
        deleted=deleted,
        errors=errors,
    )


@router.delete("/{image_id}", response_model=ImageDeleteResponse)
def delete_image(image_id: int, repository: ImageRepository = Depends(get_repository)):
    """软删除，对象存储中的文件保留。"""
    if repository.soft_delete_image(image_id) is None:
        raise HTTPException(status_code=404, detail="图片不存在")
    return ImageDeleteResponse(success=True, message="图片删除成功")


@router.delete("/{image_id}/purge", response_model=ImageDeleteResponse)
async def purge(image_id: int, repository: ImageRepository = Depends(get_repository)):
    """彻底删除：先删除对象存储中的文件，再删除数据库记录。"""
    try:
        result = await purge_image(repository, image_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail="图片不存在")
    if not result.success:
        logger.error("图片 %s 彻底删除失败: %s", image_id, result.error)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"对象存储删除失败: {result.error}")
    return ImageDeleteResponse(success=True, message="图片已彻底删除", storage_deleted=result.storage_deleted)
