# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

"""Cloudflare R2 存储（S3 兼容）

注意：
- 延迟初始化：只配置数据库也能跑起来。
- 未配置 R2 时，文件落到 FILE_BASE_PATH，由 FastAPI StaticFiles 挂载在 /files 下。
- 数据库里只存相对 key（products/...），展示时再通过 build_url 拼完整地址。
"""

import os
import time
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import boto3
from botocore.client import Config

from app.common.errors import BadRequestError, NotFoundError
from app.infra.config import settings
from app.infra.ylogger import ylogger


_s3_client: Optional[object] = None

UPLOAD_MAX_RETRIES = 3


def use_r2() -> bool:
    return bool(
        settings.R2_ACCOUNT_ID
        and settings.R2_ACCESS_KEY_ID
        and settings.R2_SECRET_ACCESS_KEY
        and settings.R2_BUCKET
        and settings.R2_PUBLIC_URL
    )


def _endpoint() -> str:
    return settings.R2_ENDPOINT_URL or f"https://{settings.R2_ACCOUNT_ID}.r2.cloudflarestorage.com"


def _get_s3():
    global _s3_client
    if _s3_client is not None:
        return _s3_client

    if not use_r2():
        raise BadRequestError(
            code="R2_NOT_CONFIGURED",
            message="R2 storage not configured",
            detail="please set R2_ACCOUNT_ID/R2_ACCESS_KEY_ID/R2_SECRET_ACCESS_KEY/R2_BUCKET/R2_PUBLIC_URL",
        )

    _session = boto3.session.Session(
        aws_access_key_id=settings.R2_ACCESS_KEY_ID,
        aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
        region_name="auto",
    )
    _s3_client = _session.client(
        "s3",
        endpoint_url=_endpoint(),
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )
    return _s3_client


def _local_path(key: str) -> str:
    base = settings.FILE_BASE_PATH or "./data"
    return os.path.join(base, key)


# ---------- key 布局 ----------

def product_file_key(expert_id: int, product_id: int, file_id: str, ext: str) -> str:
    return f"products/{expert_id}/{product_id}/{file_id}.{ext}"


def product_thumbnail_key(expert_id: int, product_id: int, ext: str) -> str:
    return f"product-thumbnails/{expert_id}/{product_id}-thumb.{ext}"


def profile_image_key(user_id: int, timestamp: int, ext: str) -> str:
    return f"profile-images/{user_id}/{timestamp}.{ext}"


# ---------- 读写 ----------

def upload_bytes(key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
    """上传并返回相对 key"""
    key = key.lstrip("/")

    if use_r2():
        s3 = _get_s3()
        ylogger.info("Upload to R2: bucket=%s, key=%s, size=%s", settings.R2_BUCKET, key, len(data))
        s3.put_object(
            Bucket=settings.R2_BUCKET,
            Key=key,
            Body=data,
            ContentType=content_type,
            ContentLength=len(data),
        )
        return key

    # fallback: local file
    dst = _local_path(key)
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    with open(dst, "wb") as f:
        f.write(data)
    ylogger.info("Upload to Local: path=%s size=%s", dst, len(data))
    return key


def retry_delay(attempt: int) -> float:
    # 1s, 2s, 4s ... 上限 5s
    return min(1.0 * (2 ** (attempt - 1)), 5.0)


def upload_with_retry(
    key: str,
    data: bytes,
    content_type: str = "application/octet-stream",
    max_retries: int = UPLOAD_MAX_RETRIES,
) -> str:
    attempts = max(1, int(max_retries))
    attempt = 1
    while True:
        try:
            return upload_bytes(key, data, content_type)
        except Exception as e:
            ylogger.warning("Upload attempt %s/%s failed: key=%s err=%s", attempt, attempts, key, e)
            if attempt >= attempts:
                raise
            time.sleep(retry_delay(attempt))
            attempt += 1


def read_bytes(key: str) -> bytes:
    key = extract_relative_path(key)

    if use_r2():
        s3 = _get_s3()
        obj = s3.get_object(Bucket=settings.R2_BUCKET, Key=key)
        return obj["Body"].read()

    path = _local_path(key)
    if not os.path.isfile(path):
        raise NotFoundError(code="FILE_NOT_FOUND", message="file not found in storage", detail={"key": key})
    with open(path, "rb") as f:
        return f.read()


def delete_object(key: str) -> None:
    key = extract_relative_path(key)
    if not key:
        return

    if use_r2():
        s3 = _get_s3()
        s3.delete_object(Bucket=settings.R2_BUCKET, Key=key)
        ylogger.info("Delete from R2: key=%s", key)
        return

    path = _local_path(key)
    if os.path.isfile(path):
        os.remove(path)
        ylogger.info("Delete from Local: path=%s", path)


def delete_objects(keys: Iterable[str]) -> None:
    rel: List[str] = [k for k in (extract_relative_path(x) for x in keys) if k]
    if not rel:
        return

    if use_r2():
        s3 = _get_s3()
        s3.delete_objects(
            Bucket=settings.R2_BUCKET,
            Delete={"Objects": [{"Key": k} for k in rel]},
        )
        ylogger.info("Batch delete from R2: count=%s", len(rel))
        return

    for k in rel:
        delete_object(k)


# ---------- URL ----------

def build_url(key: str) -> str:
    if not key:
        return ""
    if key.startswith("http://") or key.startswith("https://"):
        return key

    key = key.lstrip("/")
    if use_r2():
        base = settings.R2_PUBLIC_URL.rstrip("/")
        return f"{base}/{key}"

    # local file served by FastAPI StaticFiles
    return f"/files/{key}"


def extract_relative_path(url: str) -> str:
    if not url:
        return ""
    if url.startswith("/files/"):
        return url[len("/files/"):]
    if not (url.startswith("http://") or url.startswith("https://")):
        return url.lstrip("/")
    return urlparse(url).path.lstrip("/")


def presigned_url(key: str, expires: int = 3600) -> str:
    key = extract_relative_path(key)
    if use_r2():
        s3 = _get_s3()
        return s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": settings.R2_BUCKET, "Key": key},
            ExpiresIn=expires,
        )
    return build_url(key)
