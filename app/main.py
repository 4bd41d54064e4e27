# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import os

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import (
    auth as auth_api,
    chat as chat_api,
    experts as experts_api,
    kids as kids_api,
    onboarding as onboarding_api,
    payments as payments_api,
    products as products_api,
    profile as profile_api,
)
from app.common.errors import AppError
from app.common.exception_handlers import (
    app_error_handler,
    http_error_handler,
    unhandled_error_handler,
    validation_error_handler,
)
from app.common.logging import setup_logging
from app.common.middlewares import TraceIdMiddleware
from app.infra.config import settings

setup_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="whisperoo-backend",
    version="1.0.0",
)


# 本地文件服务（未配置 R2 时，上传文件落本地）
if settings.FILE_BASE_PATH:
    os.makedirs(settings.FILE_BASE_PATH, exist_ok=True)
    app.mount("/files", StaticFiles(directory=settings.FILE_BASE_PATH), name="files")


# ---------- middlewares / handlers ----------

app.add_middleware(TraceIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "Content-Length", "X-Trace-Id"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


@app.get("/health")
def health_check() -> dict:
    return {"status": "ok"}


# Auth
app.include_router(auth_api.router)

# 家长档案 / 引导 / 孩子
app.include_router(profile_api.router)
app.include_router(onboarding_api.router)
app.include_router(kids_api.router)

# AI 对话 + 专家
app.include_router(chat_api.router)
app.include_router(experts_api.router)

# 商品 + 支付
app.include_router(products_api.router)
app.include_router(products_api.categories_router)
app.include_router(payments_api.router)
app.include_router(payments_api.purchases_router)
