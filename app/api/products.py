# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.api.deps import get_current_expert, get_current_profile, get_db, get_products_usecase
from app.application.products.uploader import UploadItem
from app.application.products.usecase import ProductsUsecase, to_product_out
from app.common.errors import BadRequestError
from app.domain import models, schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])
categories_router = APIRouter(tags=["products"])


async def _to_item(f: UploadFile, title: Optional[str] = None) -> UploadItem:
    return UploadItem(
        filename=f.filename or "file",
        content_type=f.content_type,
        data=await f.read(),
        title=title or None,
    )


def _parse_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    try:
        return [int(x) for x in raw.split(",") if x.strip()]
    except ValueError:
        raise BadRequestError(code="INVALID_CATEGORY_IDS", message="category_ids must be comma separated integers")


def _form_request(
    title: str,
    description: Optional[str],
    price: float,
    product_type: str,
    content_type: Optional[str],
    duration_minutes: Optional[int],
    page_count: Optional[int],
    category_ids: Optional[str],
) -> schemas.ProductCreateRequest:
    try:
        return schemas.ProductCreateRequest(
            title=title,
            description=description,
            price=price,
            product_type=product_type,
            content_type=content_type or None,
            duration_minutes=duration_minutes,
            page_count=page_count,
            category_ids=_parse_ids(category_ids),
        )
    except ValidationError as e:
        raise BadRequestError(code="INVALID_PRODUCT", message="invalid product data", detail=e.errors(include_url=False, include_context=False)) from e


def _log_progress(index: int, filename: str, percent: int, status: str) -> None:
    logger.info("Upload progress: #%s %s %s%% %s", index, filename, percent, status)


@categories_router.get("/categories", response_model=List[schemas.CategoryOut])
def list_categories(
    db: Session = Depends(get_db),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.list_categories(db)


@router.get("", response_model=schemas.ProductListResponse)
def list_products(
    expert_id: Optional[int] = Query(None),
    product_type: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    category: Optional[str] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern=r"^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.list_products(
        db,
        expert_id=expert_id,
        product_type=product_type,
        min_price=min_price,
        max_price=max_price,
        category=category,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )


@router.get("/mine", response_model=List[schemas.ProductOut])
def list_my_products(
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.get_expert_products(db, expert_id=expert.id)


@router.get("/analytics/sales", response_model=schemas.SalesAnalytics)
def get_sales_analytics(
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.get_expert_sales_analytics(db, expert_id=expert.id)


@router.post("", response_model=schemas.ProductOut)
def create_product(
    req: schemas.ProductCreateRequest,
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return to_product_out(uc.create_product(db, expert=expert, req=req))


@router.post("/upload", response_model=schemas.ProductOut)
async def create_product_with_file(
    title: str = Form(...),
    price: float = Form(...),
    product_type: str = Form(...),
    description: Optional[str] = Form(None),
    content_type: Optional[str] = Form(None),
    duration_minutes: Optional[int] = Form(None),
    page_count: Optional[int] = Form(None),
    category_ids: Optional[str] = Form(None),
    file: UploadFile = File(...),
    thumbnail: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    req = _form_request(title, description, price, product_type, content_type, duration_minutes, page_count, category_ids)
    # 存储上传和重试退避都是阻塞调用，放到线程里执行
    return await asyncio.to_thread(
        uc.create_product_with_file,
        db,
        expert=expert,
        req=req,
        file=await _to_item(file),
        thumbnail=await _to_item(thumbnail) if thumbnail is not None else None,
    )


@router.post("/bundle", response_model=schemas.ProductOut)
async def create_product_with_multiple_files(
    title: str = Form(...),
    price: float = Form(...),
    product_type: str = Form(...),
    description: Optional[str] = Form(None),
    content_type: Optional[str] = Form(None),
    category_ids: Optional[str] = Form(None),
    files: List[UploadFile] = File(...),
    titles: Optional[List[str]] = Form(None),
    thumbnail: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    req = _form_request(title, description, price, product_type, content_type, None, None, category_ids)
    titles = titles or []
    items = [await _to_item(f, titles[i] if i < len(titles) else None) for i, f in enumerate(files)]
    return await asyncio.to_thread(
        uc.create_product_with_multiple_files,
        db,
        expert=expert,
        req=req,
        files=items,
        thumbnail=await _to_item(thumbnail) if thumbnail is not None else None,
        on_progress=_log_progress,
    )


@router.get("/{product_id}", response_model=schemas.ProductOut)
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.get_product(db, product_id=product_id)


@router.patch("/{product_id}", response_model=schemas.ProductOut)
def update_product(
    product_id: int,
    req: schemas.ProductUpdateRequest,
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.update_product(db, expert=expert, product_id=product_id, req=req)


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    uc.delete_product(db, expert=expert, product_id=product_id)
    return {"ok": True}


# ---------- 文件 ----------

@router.get("/{product_id}/files", response_model=List[schemas.ProductFileOut])
def list_product_files(
    product_id: int,
    db: Session = Depends(get_db),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.list_product_files(db, product_id=product_id)


@router.post("/{product_id}/files", response_model=schemas.ProductFileOut)
async def add_product_file(
    product_id: int,
    file: UploadFile = File(...),
    display_title: Optional[str] = Form(None),
    is_primary: bool = Form(False),
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return await asyncio.to_thread(
        uc.add_product_file,
        db,
        expert=expert,
        product_id=product_id,
        file=await _to_item(file, display_title),
        is_primary=is_primary,
    )


@router.put("/{product_id}/files/order", response_model=List[schemas.ProductFileOut])
def reorder_product_files(
    product_id: int,
    req: schemas.ReorderFilesRequest,
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.reorder_product_files(db, expert=expert, product_id=product_id, orders=req.orders)


@router.put("/{product_id}/files/{file_id}/primary", response_model=schemas.ProductOut)
def set_primary_file(
    product_id: int,
    file_id: int,
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.set_primary_file(db, expert=expert, product_id=product_id, file_id=file_id)


@router.delete("/files/{file_id}")
def delete_product_file(
    file_id: int,
    db: Session = Depends(get_db),
    expert: models.Profile = Depends(get_current_expert),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    uc.delete_product_file(db, expert=expert, file_id=file_id)
    return {"ok": True}


# ---------- 评价 / 埋点 ----------

@router.post("/{product_id}/reviews", response_model=schemas.ReviewOut)
def add_review(
    product_id: int,
    req: schemas.ReviewCreateRequest,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    return uc.add_review(db, user=user, product_id=product_id, rating=req.rating, review_text=req.review_text)


@router.post("/{product_id}/events")
def track_event(
    product_id: int,
    req: schemas.TrackEventRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ProductsUsecase = Depends(get_products_usecase),
):
    uc.track_product_event(
        db,
        product_id=product_id,
        event_type=req.event_type,
        user_id=user.id,
        referrer=request.headers.get("referer"),
        user_agent=request.headers.get("user-agent"),
    )
    return {"ok": True}
