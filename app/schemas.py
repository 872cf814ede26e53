from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field


class StorageFile(BaseModel):
    name: str = Field(..., description="原始文件名")
    data: Union[str, bytes] = Field(..., description="base64 内容，可带 data:image/xxx;base64, 前缀")
    size: int = 0
    type: str = Field("application/octet-stream", description="MIME 类型")


class UploadToStorageRequest(BaseModel):
    files: List[StorageFile] = Field(default_factory=list)
    storage_id: Optional[int] = Field(None, description="目标存储配置ID")
    user_id: Optional[int] = None


class TransferRequest(BaseModel):
    urls: List[str] = Field(default_factory=list, description="在线图片URL列表")
    user_id: Optional[int] = None


class ValidateUrlsRequest(BaseModel):
    urls: List[str] = Field(default_factory=list)


class ImageOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    filename: str
    original_name: str
    file_path: str
    url: str = Field(validation_alias=AliasChoices("file_url", "url"))
    size: int = Field(validation_alias=AliasChoices("file_size", "size"))
    mime_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    upload_type: str
    original_url: Optional[str] = None
    storage_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ImageListResponse(BaseModel):
    total: int
    page: int
    size: int
    items: List[ImageOut]


class ImageDeleteResponse(BaseModel):
    success: bool
    message: str
    storage_deleted: bool = False


class StorageConfigIn(BaseModel):
    name: str = Field(..., min_length=1)
    type: str
    config: Dict[str, Any]


class StorageTestRequest(BaseModel):
    type: str = Field(..., validation_alias=AliasChoices("type", "storageType"))
    config: Dict[str, Any] = Field(default_factory=dict)


class StorageTestResponse(BaseModel):
    success: bool
    message: str


class StorageConfigOut(BaseModel):
    id: int
    name: str
    type: str
    config: Dict[str, Any]
    is_default: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StorageSummaryOut(BaseModel):
    """不暴露凭证的存储配置摘要。"""

    id: int
    name: str
    type: str
    is_default: bool
    is_active: bool

    class Config:
        from_attributes = True


class BatchSummary(BaseModel):
    total: int
    success: int
    failed: int
    total_size: int = 0


class BatchResponse(BaseModel):
    success: bool
    message: str
    data: List[Dict[str, Any]]
    summary: BatchSummary


class UrlCheckOut(BaseModel):
    url: str
    valid: bool
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class ValidateUrlsResponse(BaseModel):
    success: bool
    message: str
    data: List[UrlCheckOut]


class StatsResponse(BaseModel):
    total_images: int
    total_size: int
    monthly_uploads: int
    total_transfers: int


class DailyStatOut(BaseModel):
    date: str
    upload_count: int
    total_size: int
    transfer_count: int

    class Config:
        from_attributes = True


class ImageUpdateRequest(BaseModel):
    tags: Optional[List[str]] = None
    description: Optional[str] = None


class BatchDeleteRequest(BaseModel):
    ids: List[int] = Field(default_factory=list, description="要删除的图片ID列表")


class BatchDeleteResponse(BaseModel):
    success: bool
    message: str
    deleted: List[int] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
