# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.application.products.uploader import ProductFileUploader, ProgressCallback, UploadItem
from app.common.errors import AppError, BadRequestError, ConflictError, ForbiddenError, NotFoundError
from app.domain import models, schemas
from app.infra import storage_r2
from app.services import upload_rules

logger = logging.getLogger(__name__)

SORT_FIELDS = ("created_at", "price", "title", "rating")
TOP_PRODUCTS = 5


# ---------- 序列化 ----------

def average_rating(product: models.Product) -> Optional[float]:
    ratings = [r.rating for r in (product.reviews or []) if r.rating]
    return sum(ratings) / len(ratings) if ratings else None


def to_file_out(f: models.ProductFile) -> schemas.ProductFileOut:
    return schemas.ProductFileOut(
        id=f.id,
        file_url=f.file_url,
        url=storage_r2.build_url(f.file_url),
        file_name=f.file_name,
        file_type=f.file_type,
        file_size_mb=f.file_size_mb,
        mime_type=f.mime_type,
        display_title=f.display_title,
        description=f.description,
        is_primary=f.is_primary,
        sort_order=f.sort_order,
        duration_minutes=f.duration_minutes,
        page_count=f.page_count,
    )


def to_product_out(p: models.Product, *, with_files: bool = False, with_reviews: bool = False) -> schemas.ProductOut:
    reviews = list(p.reviews or [])
    return schemas.ProductOut(
        id=p.id,
        expert_id=p.expert_id,
        title=p.title,
        description=p.description,
        price=float(p.price),
        product_type=p.product_type,
        content_type=p.content_type,
        file_url=p.file_url,
        primary_file_url=p.primary_file_url,
        thumbnail_url=p.thumbnail_url,
        file_size_mb=p.file_size_mb,
        duration_minutes=p.duration_minutes,
        page_count=p.page_count,
        has_multiple_files=p.has_multiple_files,
        total_files_count=p.total_files_count,
        is_active=p.is_active,
        view_count=p.view_count,
        created_at=p.created_at,
        expert=schemas.ExpertBrief.model_validate(p.expert) if p.expert is not None else None,
        categories=[schemas.CategoryOut.model_validate(m.category) for m in p.category_mappings or []],
        average_rating=average_rating(p),
        total_reviews=len(reviews),
        files=[to_file_out(f) for f in p.files] if with_files else [],
        reviews=[schemas.ReviewOut.model_validate(r) for r in reviews] if with_reviews else [],
    )


def has_completed_purchase(db: Session, *, user_id: int, product_id: int) -> bool:
    stmt = select(models.Purchase.id).where(
        models.Purchase.user_id == user_id,
        models.Purchase.product_id == product_id,
        models.Purchase.status == "completed",
    )
    return db.scalars(stmt).first() is not None


def _safe_delete_many(keys: Iterable[str]) -> None:
    keys = [k for k in keys if k]
    if not keys:
        return
    try:
        storage_r2.delete_objects(keys)
    except Exception as e:
        logger.error("Storage deletion error: keys=%s err=%s", keys, e)


class ProductsUsecase:
    """专家商品：目录、创建（单文件 / 多文件）、文件管理、评价、统计"""

    def __init__(self, uploader: ProductFileUploader) -> None:
        self._uploader = uploader

    # ---------- 查询 ----------

    def list_products(
        self,
        db: Session,
        *,
        expert_id: Optional[int] = None,
        product_type: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        category: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 12,
    ) -> schemas.ProductListResponse:
        if sort_by not in SORT_FIELDS:
            raise BadRequestError(code="INVALID_SORT", message=f"sort_by must be one of {', '.join(SORT_FIELDS)}")
        page = max(1, page)
        limit = max(1, min(limit, 100))
        desc = sort_order != "asc"

        stmt = select(models.Product).where(models.Product.is_active.is_(True))
        if expert_id is not None:
            stmt = stmt.where(models.Product.expert_id == expert_id)
        if product_type:
            stmt = stmt.where(models.Product.product_type == product_type)
        if min_price is not None:
            stmt = stmt.where(models.Product.price >= min_price)
        if max_price is not None:
            stmt = stmt.where(models.Product.price <= max_price)
        if category:
            stmt = stmt.where(
                models.Product.id.in_(
                    select(models.ProductCategoryMapping.product_id)
                    .join(models.ProductCategory, models.ProductCategory.id == models.ProductCategoryMapping.category_id)
                    .where(models.ProductCategory.slug == category)
                )
            )

        total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        offset = (page - 1) * limit

        if sort_by == "rating":
            # 评分是聚合值，内存排序后再分页
            products = list(db.scalars(stmt.order_by(models.Product.id.asc())).all())
            products.sort(key=lambda p: average_rating(p) or 0.0, reverse=desc)
            products = products[offset:offset + limit]
        else:
            column = getattr(models.Product, sort_by)
            order = column.desc() if desc else column.asc()
            products = list(db.scalars(stmt.order_by(order, models.Product.id.desc()).offset(offset).limit(limit)).all())

        return schemas.ProductListResponse(
            items=[to_product_out(p) for p in products],
            total=int(total),
            page=page,
            limit=limit,
        )

    def get_product(self, db: Session, *, product_id: int) -> schemas.ProductOut:
        return to_product_out(self._get(db, product_id), with_files=True, with_reviews=True)

    def get_expert_products(self, db: Session, *, expert_id: int) -> List[schemas.ProductOut]:
        stmt = (
            select(models.Product)
            .where(models.Product.expert_id == expert_id)
            .order_by(models.Product.created_at.desc(), models.Product.id.desc())
        )
        return [to_product_out(p, with_files=True) for p in db.scalars(stmt).all()]

    def list_categories(self, db: Session) -> List[schemas.CategoryOut]:
        stmt = select(models.ProductCategory).order_by(models.ProductCategory.name.asc())
        return [schemas.CategoryOut.model_validate(c) for c in db.scalars(stmt).all()]

    def list_product_files(self, db: Session, *, product_id: int) -> List[schemas.ProductFileOut]:
        self._get(db, product_id)
        stmt = (
            select(models.ProductFile)
            .where(models.ProductFile.product_id == product_id)
            .order_by(models.ProductFile.sort_order.asc(), models.ProductFile.id.asc())
        )
        return [to_file_out(f) for f in db.scalars(stmt).all()]

    # ---------- 创建 / 更新 ----------

    def create_product(
        self,
        db: Session,
        *,
        expert: models.Profile,
        req: schemas.ProductCreateRequest,
        is_active: bool = True,
        file_count: int = 0,
    ) -> models.Product:
        self._require_expert(expert)
        product = models.Product(
            expert_id=expert.id,
            title=req.title,
            description=req.description,
            price=req.price,
            product_type=req.product_type,
            content_type=req.content_type or ("bundle" if file_count > 1 else "single"),
            duration_minutes=req.duration_minutes,
            page_count=req.page_count,
            is_active=is_active,
            has_multiple_files=file_count > 1,
            total_files_count=file_count,
        )
        db.add(product)
        db.flush()
        self._set_categories(db, product, req.category_ids)
        db.commit()
        db.refresh(product)
        logger.info("Product created: id=%s expert=%s", product.id, expert.id)
        return product

    def update_product(
        self,
        db: Session,
        *,
        expert: models.Profile,
        product_id: int,
        req: schemas.ProductUpdateRequest,
    ) -> schemas.ProductOut:
        product = self._owned(db, expert, product_id)
        data = req.model_dump(exclude_unset=True)
        category_ids = data.pop("category_ids", None)
        for key, value in data.items():
            setattr(product, key, value)
        if category_ids is not None:
            self._set_categories(db, product, category_ids)
        db.add(product)
        db.commit()
        db.refresh(product)
        return to_product_out(product, with_files=True)

    def create_product_with_file(
        self,
        db: Session,
        *,
        expert: models.Profile,
        req: schemas.ProductCreateRequest,
        file: UploadItem,
        thumbnail: Optional[UploadItem] = None,
    ) -> schemas.ProductOut:
        check = upload_rules.validate_file(file.filename, file.content_type, len(file.data))
        if not check.is_valid:
            raise BadRequestError(code="INVALID_FILE", message=check.error or "File validation failed")

        product = self.create_product(db, expert=expert, req=req, is_active=True, file_count=1)
        product.file_size_mb = len(file.data) / (1024 * 1024)

        keys: List[str] = []
        try:
            key = self._store(product, file)
            keys.append(key)
            product.files.append(self._file_row(product, file, key, is_primary=True, sort_order=0))

            if thumbnail is not None:
                thumb_key = self._store_thumbnail(product, thumbnail)
                keys.append(thumb_key)
                product.thumbnail_url = storage_r2.build_url(thumb_key)

            product.file_url = key
            product.primary_file_url = key
            db.add(product)
            db.commit()
            self.update_product_file_count(db, product_id=product.id)
        except Exception as e:
            db.rollback()
            logger.error("Product file upload failed, removing product %s: %s", product.id, e)
            _safe_delete_many(keys)
            self._purge(db, product.id)
            raise

        db.refresh(product)
        return to_product_out(product, with_files=True)

    def create_product_with_multiple_files(
        self,
        db: Session,
        *,
        expert: models.Profile,
        req: schemas.ProductCreateRequest,
        files: Sequence[UploadItem],
        thumbnail: Optional[UploadItem] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> schemas.ProductOut:
        if not files:
            raise BadRequestError(code="NO_FILES", message="At least one file is required")

        invalid = []
        for item in files:
            check = upload_rules.validate_file(item.filename, item.content_type, len(item.data))
            if not check.is_valid:
                invalid.append(f"{item.filename}: {check.error}")
        if invalid:
            raise BadRequestError(
                code="INVALID_FILE",
                message=f"File validation failed: {', '.join(invalid)}",
                detail={"files": invalid},
            )

        # 先建一个未上架的商品，文件全部上传完再上架
        product = self.create_product(db, expert=expert, req=req, is_active=False, file_count=len(files))

        thumb_key: Optional[str] = None
        uploaded_keys: List[str] = []
        try:
            if thumbnail is not None:
                try:
                    thumb_key = self._store_thumbnail(product, thumbnail)
                except Exception as e:
                    logger.warning("Thumbnail upload failed, continuing with files: %s", e)

            result = self._uploader.upload_files(db, product=product, items=files, on_progress=on_progress)
            uploaded_keys = result.keys

            primary = next((f for f in result.files if f.is_primary), result.files[0])
            product.primary_file_url = primary.file_url
            product.file_url = primary.file_url
            product.is_active = True
            product.has_multiple_files = len(result.files) > 1
            product.total_files_count = len(result.files)
            if thumb_key:
                product.thumbnail_url = storage_r2.build_url(thumb_key)
            db.add(product)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Error during product creation, cleaning up product %s: %s", product.id, e)
            _safe_delete_many(uploaded_keys + ([thumb_key] if thumb_key else []))
            self._purge(db, product.id)
            message = e.message if isinstance(e, AppError) else str(e)
            raise BadRequestError(code="PRODUCT_CREATION_FAILED", message=f"Product creation failed: {message}") from e

        db.refresh(product)
        logger.info("Created product %s with %s files", product.id, product.total_files_count)
        return to_product_out(product, with_files=True)

    # ---------- 文件管理 ----------

    def add_product_file(
        self,
        db: Session,
        *,
        expert: models.Profile,
        product_id: int,
        file: UploadItem,
        is_primary: bool = False,
        sort_order: Optional[int] = None,
    ) -> schemas.ProductFileOut:
        product = self._owned(db, expert, product_id)
        check = upload_rules.validate_file(file.filename, file.content_type, len(file.data))
        if not check.is_valid:
            raise BadRequestError(code="INVALID_FILE", message=check.error or "File validation failed")

        key = self._store(product, file)
        if sort_order is None:
            sort_order = len(product.files)
        row = self._file_row(product, file, key, is_primary=is_primary, sort_order=sort_order)
        try:
            db.add(row)
            db.commit()
        except Exception:
            db.rollback()
            _safe_delete_many([key])
            raise
        db.refresh(row)
        db.expire(product, ["files"])

        self.update_product_file_count(db, product_id=product.id)
        logger.info("Successfully uploaded and stored file: %s", file.filename)
        return to_file_out(row)

    def delete_product_file(self, db: Session, *, expert: models.Profile, file_id: int) -> None:
        row = db.get(models.ProductFile, file_id)
        if row is None:
            raise NotFoundError(code="FILE_NOT_FOUND", message="product file not found")
        product = self._owned(db, expert, row.product_id)

        _safe_delete_many([row.file_url])
        db.delete(row)
        db.commit()
        db.expire(product, ["files"])
        self.update_product_file_count(db, product_id=product.id)

    def reorder_product_files(
        self,
        db: Session,
        *,
        expert: models.Profile,
        product_id: int,
        orders: Sequence[schemas.FileOrder],
    ) -> List[schemas.ProductFileOut]:
        product = self._owned(db, expert, product_id)
        by_id = {f.id: f for f in product.files}
        for o in orders:
            f = by_id.get(o.id)
            if f is not None:
                f.sort_order = o.sort_order
                db.add(f)
        db.commit()
        return self.list_product_files(db, product_id=product.id)

    def set_primary_file(self, db: Session, *, expert: models.Profile, product_id: int, file_id: int) -> schemas.ProductOut:
        product = self._owned(db, expert, product_id)
        target = next((f for f in product.files if f.id == file_id), None)
        if target is None:
            raise NotFoundError(code="FILE_NOT_FOUND", message="product file not found")

        for f in product.files:
            f.is_primary = f.id == file_id
            db.add(f)
        product.primary_file_url = target.file_url
        db.add(product)
        db.commit()
        db.refresh(product)
        return to_product_out(product, with_files=True)

    def update_product_file_count(self, db: Session, *, product_id: int) -> int:
        count = db.scalar(
            select(func.count(models.ProductFile.id)).where(models.ProductFile.product_id == product_id)
        ) or 0
        product = db.get(models.Product, product_id)
        if product is not None:
            product.has_multiple_files = count > 1
            product.total_files_count = count
            db.add(product)
            db.commit()
        return int(count)

    def delete_product(self, db: Session, *, expert: models.Profile, product_id: int) -> None:
        product = self._owned(db, expert, product_id)

        _safe_delete_many([f.file_url for f in product.files])
        product.files.clear()
        # 旧的单文件字段和缩略图
        _safe_delete_many([product.file_url or "", product.thumbnail_url or ""])

        product.is_active = False
        db.add(product)
        db.commit()
        logger.info("Product soft deleted: id=%s", product_id)

    # ---------- 评价 / 埋点 / 统计 ----------

    def add_review(
        self,
        db: Session,
        *,
        user: models.Profile,
        product_id: int,
        rating: int,
        review_text: Optional[str] = None,
    ) -> schemas.ReviewOut:
        if rating < 1 or rating > 5:
            raise BadRequestError(code="INVALID_RATING", message="rating must be between 1 and 5")
        self._get(db, product_id)
        if not has_completed_purchase(db, user_id=user.id, product_id=product_id):
            raise ForbiddenError(code="PURCHASE_REQUIRED", message="only buyers can review this product")

        existed = db.scalars(
            select(models.ProductReview).where(
                models.ProductReview.product_id == product_id,
                models.ProductReview.user_id == user.id,
            )
        ).first()
        if existed is not None:
            raise ConflictError(code="REVIEW_EXISTS", message="product already reviewed")

        review = models.ProductReview(
            product_id=product_id,
            user_id=user.id,
            rating=rating,
            review_text=review_text,
            is_verified_purchase=True,
        )
        db.add(review)
        db.commit()
        db.refresh(review)
        return schemas.ReviewOut.model_validate(review)

    def track_product_event(
        self,
        db: Session,
        *,
        product_id: int,
        event_type: str,
        user_id: Optional[int] = None,
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        product = self._get(db, product_id)
        db.add(
            models.ProductAnalytics(
                product_id=product_id,
                user_id=user_id,
                event_type=event_type,
                referrer=(referrer or None) and referrer[:512],
                user_agent=(user_agent or None) and user_agent[:255],
            )
        )
        if event_type == "view":
            product.view_count = (product.view_count or 0) + 1
            db.add(product)
        db.commit()

    def get_expert_sales_analytics(self, db: Session, *, expert_id: int) -> schemas.SalesAnalytics:
        sales = db.execute(
            select(models.Purchase.amount, models.Purchase.product_id).where(
                models.Purchase.expert_id == expert_id,
                models.Purchase.status == "completed",
            )
        ).all()
        products_count = db.scalar(
            select(func.count(models.Product.id)).where(
                models.Product.expert_id == expert_id,
                models.Product.is_active.is_(True),
            )
        ) or 0

        per_product = Counter(pid for _, pid in sales if pid)
        top: List[schemas.ProductOut] = []
        for pid, _ in per_product.most_common(TOP_PRODUCTS):
            p = db.get(models.Product, pid)
            if p is not None:
                top.append(to_product_out(p))

        return schemas.SalesAnalytics(
            total_revenue=round(sum(float(a or 0) for a, _ in sales), 2),
            total_sales=len(sales),
            products_count=int(products_count),
            top_products=top,
        )

    # ---------- 内部 ----------

    def _get(self, db: Session, product_id: int) -> models.Product:
        product = db.get(models.Product, product_id)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", message="product not found")
        return product

    def _owned(self, db: Session, expert: models.Profile, product_id: int) -> models.Product:
        product = self._get(db, product_id)
        if product.expert_id != expert.id:
            raise ForbiddenError(code="PRODUCT_FORBIDDEN", message="product not belongs to current expert")
        return product

    @staticmethod
    def _require_expert(profile: models.Profile) -> None:
        if profile.account_type != "expert":
            raise ForbiddenError(code="NOT_AN_EXPERT", message="only experts can manage products")

    def _set_categories(self, db: Session, product: models.Product, category_ids: Optional[Sequence[int]]) -> None:
        for m in list(product.category_mappings or []):
            db.delete(m)
        db.flush()
        db.expire(product, ["category_mappings"])
        if not category_ids:
            return
        found = set(
            db.scalars(select(models.ProductCategory.id).where(models.ProductCategory.id.in_(category_ids))).all()
        )
        missing = [cid for cid in category_ids if cid not in found]
        if missing:
            raise BadRequestError(code="CATEGORY_NOT_FOUND", message="unknown category", detail={"ids": missing})
        for cid in dict.fromkeys(category_ids):
            db.add(models.ProductCategoryMapping(product_id=product.id, category_id=cid))
        db.flush()
        db.expire(product, ["category_mappings"])

    def _store(self, product: models.Product, item: UploadItem) -> str:
        ext = upload_rules.file_extension(item.filename)
        key = storage_r2.product_file_key(product.expert_id, product.id, uuid.uuid4().hex, ext)
        return storage_r2.upload_with_retry(key, item.data, item.content_type or "application/octet-stream")

    def _store_thumbnail(self, product: models.Product, item: UploadItem) -> str:
        ext = upload_rules.file_extension(item.filename, default="jpg")
        key = storage_r2.product_thumbnail_key(product.expert_id, product.id, ext)
        return storage_r2.upload_with_retry(key, item.data, item.content_type or f"image/{ext}")

    @staticmethod
    def _file_row(
        product: models.Product,
        item: UploadItem,
        key: str,
        *,
        is_primary: bool,
        sort_order: int,
    ) -> models.ProductFile:
        return models.ProductFile(
            product_id=product.id,
            file_url=key,
            file_name=item.filename,
            file_type=upload_rules.detect_file_type(item.content_type),
            file_size_mb=upload_rules.size_in_mb(len(item.data)),
            mime_type=item.content_type,
            display_title=item.title or upload_rules.default_display_title(item.filename),
            description=item.description,
            is_primary=is_primary,
            sort_order=sort_order,
        )

    def _purge(self, db: Session, product_id: int) -> None:
        product = db.get(models.Product, product_id)
        if product is None:
            return
        try:
            db.delete(product)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error("Failed to delete product %s after error: %s", product_id, e)
