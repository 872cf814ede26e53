from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_repository
from ..exceptions import ConfigurationError
from ..repository import ImageRepository
from ..schemas import StorageConfigIn, StorageConfigOut, StorageSummaryOut, StorageTestRequest, StorageTestResponse
from ..storage import dispatcher


router = APIRouter()


@router.get("", response_model=List[StorageConfigOut])
def list_storages(repository: ImageRepository = Depends(get_repository)):
    return [StorageConfigOut.model_validate(s) for s in repository.list_storages()]


@router.get("/available", response_model=List[StorageSummaryOut])
def list_available_storages(repository: ImageRepository = Depends(get_repository)):
    """只返回必要信息，隐藏凭证。"""
    return [StorageSummaryOut.model_validate(s) for s in repository.list_storages()]


@router.get("/default/info", response_model=StorageSummaryOut)
def default_storage(repository: ImageRepository = Depends(get_repository)):
    storage = repository.get_default_storage()
    if storage is None:
        raise HTTPException(status_code=404, detail="未配置默认存储")
    return StorageSummaryOut.model_validate(storage)


@router.post("/test", response_model=StorageTestResponse)
def check_storage_config(payload: StorageTestRequest):
    """只校验配置字段是否完整，不连接服务商。"""
    try:
        dispatcher.validate_config(payload.type, payload.config)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"配置验证失败: {e}")
    return StorageTestResponse(success=True, message=f"{payload.type} 配置验证成功，可以保存使用")


@router.get("/{storage_id}", response_model=StorageConfigOut)
def get_storage(storage_id: int, repository: ImageRepository = Depends(get_repository)):
    storage = repository.get_storage(storage_id)
    if storage is None:
        raise HTTPException(status_code=404, detail="存储配置不存在")
    return StorageConfigOut.model_validate(storage)


@router.post("", response_model=StorageConfigOut, status_code=status.HTTP_201_CREATED)
def create_storage(payload: StorageConfigIn, repository: ImageRepository = Depends(get_repository)):
    try:
        storage = repository.create_storage(payload.name, payload.type, payload.config)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return StorageConfigOut.model_validate(storage)


@router.put("/{storage_id}", response_model=StorageConfigOut)
def update_storage(storage_id: int, payload: StorageConfigIn, repository: ImageRepository = Depends(get_repository)):
    try:
        storage = repository.update_storage(storage_id, payload.name, payload.type, payload.config)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if storage is None:
        raise HTTPException(status_code=404, detail="存储配置不存在")
    return StorageConfigOut.model_validate(storage)


@router.put("/{storage_id}/default", response_model=StorageConfigOut)
def set_default_storage(storage_id: int, repository: ImageRepository = Depends(get_repository)):
    storage = repository.set_default_storage(storage_id)
    if storage is None:
        raise HTTPException(status_code=404, detail="存储配置不存在或已被禁用")
    return StorageConfigOut.model_validate(storage)


@router.delete("/{storage_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_storage(storage_id: int, repository: ImageRepository = Depends(get_repository)) -> None:
    if repository.deactivate_storage(storage_id) is None:
        raise HTTPException(status_code=404, detail="存储配置不存在或为默认存储")
