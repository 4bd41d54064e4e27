# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

"""上传校验规则（产品文件 / 缩略图 / 头像）"""

import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

from app.infra.config import settings

KIND_VIDEO = "video"
KIND_DOCUMENT = "document"
KIND_IMAGE = "image"
KIND_AUDIO = "audio"

MIN_FILE_SIZE_BYTES = 1024

_VIDEO_EXT_RE = re.compile(r"\.(mp4|webm|ogg|mov|avi|mkv)$", re.I)
_DOCUMENT_EXT_RE = re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx)$", re.I)
_IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg|bmp)$", re.I)
_AUDIO_EXT_RE = re.compile(r"\.(mp3|wav|ogg|m4a|aac)$", re.I)

_DOCUMENT_MIME_KEYWORDS = (
    "pdf",
    "document",
    "word",
    "msword",
    "wordprocessingml",
    "ms-excel",
    "spreadsheetml",
    "ms-powerpoint",
    "presentationml",
)


@dataclass
class FileCheck:
    is_valid: bool
    kind: Optional[str] = None
    error: Optional[str] = None


def size_limits_mb() -> Dict[str, int]:
    return {
        KIND_VIDEO: int(settings.MAX_VIDEO_SIZE_MB),
        KIND_DOCUMENT: int(settings.MAX_DOCUMENT_SIZE_MB),
        KIND_IMAGE: int(settings.MAX_IMAGE_SIZE_MB),
        KIND_AUDIO: int(settings.MAX_AUDIO_SIZE_MB),
    }


def detect_upload_kind(content_type: Optional[str], filename: Optional[str]) -> Optional[str]:
    """先看 MIME，再看扩展名；识别不了返回 None"""
    mime = (content_type or "").lower()
    name = (filename or "").lower()

    if mime.startswith("video/") or _VIDEO_EXT_RE.search(name):
        return KIND_VIDEO
    if any(k in mime for k in _DOCUMENT_MIME_KEYWORDS) or _DOCUMENT_EXT_RE.search(name):
        return KIND_DOCUMENT
    if mime.startswith("image/") or _IMAGE_EXT_RE.search(name):
        return KIND_IMAGE
    if mime.startswith("audio/") or _AUDIO_EXT_RE.search(name):
        return KIND_AUDIO
    return None


def validate_file(filename: Optional[str], content_type: Optional[str], size: int) -> FileCheck:
    kind = detect_upload_kind(content_type, filename)
    if kind is None:
        return FileCheck(
            is_valid=False,
            error=(
                f"Unsupported file type: {content_type or 'unknown'} ({(filename or '').lower() or 'no filename'}). "
                "Please upload videos, documents, images, or audio files."
            ),
        )

    size_mb = size / (1024 * 1024)
    max_mb = size_limits_mb()[kind]
    if size_mb > max_mb:
        hint = " Consider compressing your video or using a lower resolution." if kind == KIND_VIDEO and size_mb > 100 else ""
        return FileCheck(
            is_valid=False,
            kind=kind,
            error=(
                f'File "{filename}" is too large: {size_mb:.1f}MB. '
                f"Maximum size for {kind} files is {max_mb}MB.{hint}"
            ),
        )

    if size < MIN_FILE_SIZE_BYTES:
        return FileCheck(is_valid=False, kind=kind, error="File too small (minimum 1KB)")

    return FileCheck(is_valid=True, kind=kind)


def detect_file_type(mime_type: Optional[str]) -> str:
    """product_files.file_type"""
    mime = (mime_type or "").lower()
    if mime.startswith("video/"):
        return "video"
    if mime.startswith("audio/"):
        return "audio"
    if mime.startswith("image/"):
        return "image"
    if any(k in mime for k in ("pdf", "document", "text", "sheet", "presentation")):
        return "document"
    return "other"


def clean_file_name(filename: str) -> str:
    name = re.sub(r"[^a-zA-Z0-9._-]", "_", filename or "")
    name = re.sub(r"_{2,}", "_", name)
    return name.lower()


def file_extension(filename: Optional[str], default: str = "bin") -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".")
    return ext.lower() or default


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = 0
    while size >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(size / (1024 ** i), 2)
    if value == int(value):
        return f"{int(value)} {units[i]}"
    return f"{value} {units[i]}"


def default_display_title(filename: str) -> str:
    base = re.sub(r"\.[^/.]+$", "", filename or "")
    return re.sub(r"[_-]", " ", base)


def size_in_mb(size: int) -> float:
    return round(size / (1024 * 1024), 2)
