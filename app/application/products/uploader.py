# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

"""产品多文件上传：先校验，再按批并发上传到存储，数据库按输入顺序落库"""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from app.common.errors import BadRequestError, UpstreamError
from app.domain import models
from app.infra import storage_r2
from app.infra.config import settings
from app.services import upload_rules

logger = logging.getLogger(__name__)

STATUS_UPLOADING = "uploading"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

ProgressCallback = Callable[[int, str, int, str], None]


@dataclass
class UploadItem:
    filename: str
    content_type: Optional[str]
    data: bytes
    title: Optional[str] = None
    description: Optional[str] = None


@dataclass
class BatchUploadResult:
    files: List[models.ProductFile] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def keys(self) -> List[str]:
        return [f.file_url for f in self.files]


def format_failures(failures: Sequence[Tuple[str, str]]) -> str:
    return ", ".join(f"{name}: {err}" for name, err in failures)


class ProductFileUploader:
    def __init__(self, batch_size: Optional[int] = None, max_retries: int = storage_r2.UPLOAD_MAX_RETRIES) -> None:
        self._batch_size = max(1, int(batch_size or settings.UPLOAD_BATCH_SIZE))
        self._max_retries = max_retries

    def upload_files(
        self,
        db: Session,
        *,
        product: models.Product,
        items: Sequence[UploadItem],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchUploadResult:
        if not items:
            raise BadRequestError(code="NO_FILES", message="No files provided for upload")

        result = BatchUploadResult()
        valid: List[Tuple[int, UploadItem, str]] = []
        for index, item in enumerate(items):
            check = upload_rules.validate_file(item.filename, item.content_type, len(item.data))
            if check.is_valid:
                valid.append((index, item, check.kind or ""))
            else:
                logger.warning("Skipping %s: %s", item.filename, check.error)
                result.failures.append((item.filename, check.error or "File validation failed"))

        if not valid:
            raise BadRequestError(
                code="ALL_FILES_INVALID",
                message=f"All files failed validation: {format_failures(result.failures)}",
            )

        for start in range(0, len(valid), self._batch_size):
            batch = valid[start:start + self._batch_size]
            uploaded = self._upload_batch(product, batch, on_progress)

            # 落库保持输入顺序；第一个成功的文件为主文件
            for index, item, _ in batch:
                key, err = uploaded[index]
                if err is not None:
                    result.failures.append((item.filename, err))
                    continue
                try:
                    row = self._insert_row(db, product=product, index=index, item=item, key=key, primary=not result.files)
                except Exception as e:
                    db.rollback()
                    logger.error("DB insert failed for %s: %s", item.filename, e)
                    self._safe_delete(key)
                    result.failures.append((item.filename, str(e)))
                    self._report(on_progress, index, item.filename, 0, STATUS_FAILED)
                    continue
                result.files.append(row)

        if not result.files:
            raise UpstreamError(
                code="UPLOAD_FAILED",
                message=f"Failed to upload any files. Errors: {format_failures(result.failures)}",
            )
        if result.failures:
            logger.warning("%s files failed to upload: %s", len(result.failures), [n for n, _ in result.failures])
        return result

    def _upload_batch(
        self,
        product: models.Product,
        batch: Sequence[Tuple[int, UploadItem, str]],
        on_progress: Optional[ProgressCallback],
    ) -> Dict[int, Tuple[str, Optional[str]]]:
        def _one(index: int, item: UploadItem) -> Tuple[int, str, Optional[str]]:
            ext = upload_rules.file_extension(item.filename)
            key = storage_r2.product_file_key(product.expert_id, product.id, uuid.uuid4().hex, ext)
            self._report(on_progress, index, item.filename, 0, STATUS_UPLOADING)
            try:
                storage_r2.upload_with_retry(
                    key,
                    item.data,
                    item.content_type or "application/octet-stream",
                    max_retries=self._max_retries,
                )
            except Exception as e:
                logger.error("Failed to upload %s after %s attempts: %s", item.filename, self._max_retries, e)
                self._report(on_progress, index, item.filename, 0, STATUS_FAILED)
                return index, key, str(e)
            self._report(on_progress, index, item.filename, 100, STATUS_COMPLETED)
            return index, key, None

        out: Dict[int, Tuple[str, Optional[str]]] = {}
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = [executor.submit(_one, index, item) for index, item, _ in batch]
            for fut in futures:
                index, key, err = fut.result()
                out[index] = (key, err)
        return out

    def _insert_row(
        self,
        db: Session,
        *,
        product: models.Product,
        index: int,
        item: UploadItem,
        key: str,
        primary: bool,
    ) -> models.ProductFile:
        row = models.ProductFile(
            product_id=product.id,
            file_url=key,
            file_name=item.filename,
            file_type=upload_rules.detect_file_type(item.content_type),
            file_size_mb=upload_rules.size_in_mb(len(item.data)),
            mime_type=item.content_type,
            display_title=item.title or upload_rules.default_display_title(item.filename),
            description=item.description,
            is_primary=primary,
            sort_order=index,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    @staticmethod
    def _report(cb: Optional[ProgressCallback], index: int, filename: str, percent: int, status: str) -> None:
        if cb is None:
            return
        try:
            cb(index, filename, percent, status)
        except Exception as e:
            logger.warning("Progress callback failed: %s", e)

    @staticmethod
    def _safe_delete(key: str) -> None:
        try:
            storage_r2.delete_object(key)
        except Exception as e:
            logger.warning("Failed to cleanup file %s: %s", key, e)
