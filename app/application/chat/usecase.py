# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.application.chat.context import ChatContextService, to_message_out
from app.application.chat.summary import SessionSummaryService
from app.application.experts.usecase import ExpertsUsecase
from app.common.errors import ForbiddenError, NotFoundError
from app.domain import models, schemas
from app.llm.model_selector import TASK_CHAT, LlmModelSelector
from app.services.prompt_builder import build_chat_messages

logger = logging.getLogger(__name__)

SUMMARY_EVERY = 10
TITLE_CHARS = 50

NO_PROVIDER_REPLY = "I'm sorry, I'm having trouble connecting to my AI service right now. Please try again later."
PROVIDER_ERROR_REPLY = "I'm experiencing some technical difficulties. Please try again in a moment."
EMPTY_REPLY = "I'm sorry, I couldn't generate a response right now."


class ChatUsecase:
    """一轮对话：存消息 -> 组上下文 -> 匹配专家 -> 调模型 -> 存回复 -> 按需刷新摘要"""

    def __init__(
        self,
        selector: LlmModelSelector,
        experts: ExpertsUsecase,
        context: ChatContextService,
        summaries: SessionSummaryService,
    ) -> None:
        self._selector = selector
        self._experts = experts
        self._context = context
        self._summaries = summaries

    async def send_message(
        self,
        db: Session,
        *,
        user: models.Profile,
        message: str,
        session_id: Optional[int] = None,
        child_id: Optional[int] = None,
    ) -> schemas.ChatMessageResponse:
        if child_id is not None:
            child = db.get(models.Kid, child_id)
            if child is None or child.parent_id != user.id:
                raise NotFoundError(code="CHILD_NOT_FOUND", message="child not found")

        if session_id:
            session = self._owned_session(db, user=user, session_id=session_id)
        else:
            session = models.ChatSession(
                user_id=user.id,
                child_id=child_id,
                title=message[:TITLE_CHARS] + "...",
                is_active=True,
            )
            db.add(session)
            db.commit()
            db.refresh(session)
            logger.info("Chat session created: id=%s user=%s", session.id, user.id)

        db.add(models.Message(session_id=session.id, role="user", content=message, meta={"child_id": child_id}))
        db.commit()

        ctx = self._context.build_enhanced_context(db, user=user, child_id=child_id, session_id=session.id)
        experts = await self._experts.find_matching_experts(db, message)

        reply = await self._generate_reply(build_chat_messages(ctx, experts, message))

        meta: Dict[str, Any] = {"child_id": child_id}
        if experts:
            meta["expert_suggestions"] = experts
        db.add(models.Message(session_id=session.id, role="assistant", content=reply, meta=meta))

        session.last_message_at = int(time.time())
        db.add(session)
        db.commit()

        count = db.scalar(
            select(func.count(models.Message.id)).where(models.Message.session_id == session.id)
        ) or 0
        if count and count % SUMMARY_EVERY == 0:
            try:
                await self._summaries.update_session_summary(db, session_id=session.id)
            except Exception as e:
                db.rollback()
                logger.warning("Session summary refresh failed: session=%s err=%s", session.id, e)

        return schemas.ChatMessageResponse(
            response=reply,
            session_id=session.id,
            expert_suggestions=[schemas.ExpertSuggestion(**e) for e in experts],
        )

    async def _generate_reply(self, messages: List[Dict[str, str]]) -> str:
        selected = self._selector.select(TASK_CHAT)
        if selected is None:
            logger.warning("No chat provider configured")
            return NO_PROVIDER_REPLY
        provider, model, gen_cfg = selected

        try:
            reply = await provider.chat(
                messages,
                model,
                max_tokens=int(gen_cfg.get("max_tokens", 300)),
                temperature=float(gen_cfg.get("temperature", 0.2)),
            )
        except Exception as e:
            logger.error("Chat completion failed: %s", e)
            return PROVIDER_ERROR_REPLY
        return reply or EMPTY_REPLY

    def _owned_session(self, db: Session, *, user: models.Profile, session_id: int) -> models.ChatSession:
        session = db.get(models.ChatSession, session_id)
        if session is None:
            raise NotFoundError(code="SESSION_NOT_FOUND", message="session not found")
        if session.user_id != user.id:
            raise ForbiddenError(code="SESSION_FORBIDDEN", message="session not belongs to current user")
        return session

    # ---------- 历史 ----------

    def list_sessions(self, db: Session, *, user: models.Profile, limit: int = 50) -> List[schemas.ChatSessionOut]:
        stmt = (
            select(models.ChatSession)
            .where(models.ChatSession.user_id == user.id)
            .order_by(
                models.ChatSession.last_message_at.is_(None),
                models.ChatSession.last_message_at.desc(),
                models.ChatSession.id.desc(),
            )
            .limit(limit)
        )
        return [schemas.ChatSessionOut.model_validate(s) for s in db.scalars(stmt).all()]

    def get_active_session(self, db: Session, *, user: models.Profile) -> Optional[schemas.ChatSessionOut]:
        stmt = (
            select(models.ChatSession)
            .where(models.ChatSession.user_id == user.id, models.ChatSession.is_active.is_(True))
            .order_by(models.ChatSession.created_at.desc(), models.ChatSession.id.desc())
            .limit(1)
        )
        s = db.scalars(stmt).first()
        return schemas.ChatSessionOut.model_validate(s) if s is not None else None

    def get_messages(self, db: Session, *, user: models.Profile, session_id: int) -> List[schemas.MessageOut]:
        self._owned_session(db, user=user, session_id=session_id)
        stmt = (
            select(models.Message)
            .where(models.Message.session_id == session_id)
            .order_by(models.Message.created_at.asc(), models.Message.id.asc())
        )
        return [to_message_out(m) for m in db.scalars(stmt).all()]

    def delete_session(self, db: Session, *, user: models.Profile, session_id: int) -> None:
        session = self._owned_session(db, user=user, session_id=session_id)
        db.delete(session)
        db.commit()
        logger.info("Chat session deleted: id=%s user=%s", session_id, user.id)

    def list_summarized_sessions(self, db: Session, *, user: models.Profile, limit: int = 10) -> List[schemas.ChatSessionOut]:
        stmt = (
            select(models.ChatSession)
            .where(models.ChatSession.user_id == user.id, models.ChatSession.summary.is_not(None))
            .order_by(models.ChatSession.last_message_at.desc(), models.ChatSession.id.desc())
            .limit(limit)
        )
        return [schemas.ChatSessionOut.model_validate(s) for s in db.scalars(stmt).all()]
