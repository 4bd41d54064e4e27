# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import (
    get_chat_context_service,
    get_chat_usecase,
    get_current_profile,
    get_db,
    get_summary_service,
)
from app.application.chat.context import ChatContextService
from app.application.chat.summary import SessionSummaryService
from app.application.chat.usecase import ChatUsecase
from app.domain import models, schemas


router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/messages", response_model=schemas.ChatMessageResponse)
async def send_message(
    req: schemas.ChatMessageRequest,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ChatUsecase = Depends(get_chat_usecase),
):
    return await uc.send_message(
        db,
        user=user,
        message=req.message,
        session_id=req.session_id,
        child_id=req.child_id,
    )


@router.get("/context", response_model=schemas.ChatContextOut)
def get_chat_context(
    child_id: Optional[int] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    svc: ChatContextService = Depends(get_chat_context_service),
):
    return svc.get_chat_context(db, parent_id=user.id, child_id=child_id, limit=limit)


@router.get("/sessions", response_model=List[schemas.ChatSessionOut])
def list_sessions(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ChatUsecase = Depends(get_chat_usecase),
):
    return uc.list_sessions(db, user=user, limit=limit)


@router.get("/sessions/active", response_model=Optional[schemas.ChatSessionOut])
def get_active_session(
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ChatUsecase = Depends(get_chat_usecase),
):
    return uc.get_active_session(db, user=user)


@router.get("/sessions/summarized", response_model=List[schemas.ChatSessionOut])
def list_summarized_sessions(
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ChatUsecase = Depends(get_chat_usecase),
):
    return uc.list_summarized_sessions(db, user=user, limit=limit)


@router.get("/sessions/{session_id}/messages", response_model=List[schemas.MessageOut])
def get_messages(
    session_id: int,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ChatUsecase = Depends(get_chat_usecase),
):
    return uc.get_messages(db, user=user, session_id=session_id)


@router.post("/sessions/{session_id}/summary", response_model=schemas.SessionSummaryOut)
async def update_session_summary(
    session_id: int,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    svc: SessionSummaryService = Depends(get_summary_service),
):
    return await svc.update_session_summary(db, session_id=session_id, user=user)


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: int,
    db: Session = Depends(get_db),
    user: models.Profile = Depends(get_current_profile),
    uc: ChatUsecase = Depends(get_chat_usecase),
):
    uc.delete_session(db, user=user, session_id=session_id)
    return {"ok": True}
