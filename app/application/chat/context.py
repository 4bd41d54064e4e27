# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.common.errors import NotFoundError
from app.domain import models, schemas
from app.services import age
from app.services.prompt_builder import EnhancedChatContext, render_conversation_history

CONTEXT_MESSAGES = 8
HISTORY_RECENT_DAYS = 7
HISTORY_LIMIT = 10


def to_message_out(m: models.Message) -> schemas.MessageOut:
    return schemas.MessageOut(
        id=m.id,
        role=m.role,
        content=m.content,
        metadata=dict(m.meta or {}),
        created_at=m.created_at,
    )


def recent_messages(db: Session, session_id: int, limit: int) -> List[models.Message]:
    """最近 limit 条，按时间正序返回"""
    stmt = (
        select(models.Message)
        .where(models.Message.session_id == session_id)
        .order_by(models.Message.created_at.desc(), models.Message.id.desc())
        .limit(limit)
    )
    return list(reversed(db.scalars(stmt).all()))


class ChatContextService:
    def build_enhanced_context(
        self,
        db: Session,
        *,
        user: models.Profile,
        child_id: Optional[int],
        session_id: Optional[int],
    ) -> EnhancedChatContext:
        children = list(
            db.scalars(
                select(models.Kid)
                .where(models.Kid.parent_id == user.id)
                .order_by(models.Kid.created_at.asc(), models.Kid.id.asc())
            ).all()
        )
        current_child = next((c for c in children if child_id and c.id == child_id), None)

        ctx = EnhancedChatContext(parent=user, children=children, current_child=current_child)

        if session_id:
            session = db.get(models.ChatSession, session_id)
            if session is not None and session.summary:
                ctx.current_session_summary = session.summary

            msgs = recent_messages(db, session_id, CONTEXT_MESSAGES)
            if msgs:
                ctx.recent_messages = msgs
                ctx.last_four_messages = msgs[-4:]
                ctx.conversation_history = render_conversation_history(msgs)

        ctx.session_history = self._session_history(db, user_id=user.id, child_id=child_id, exclude_id=session_id)
        return ctx

    def _session_history(
        self,
        db: Session,
        *,
        user_id: int,
        child_id: Optional[int],
        exclude_id: Optional[int],
    ) -> List[models.ChatSession]:
        stmt = (
            select(models.ChatSession)
            .where(
                models.ChatSession.user_id == user_id,
                models.ChatSession.summary.is_not(None),
            )
            .order_by(models.ChatSession.last_message_at.desc(), models.ChatSession.id.desc())
        )
        if exclude_id:
            stmt = stmt.where(models.ChatSession.id != exclude_id)
        sessions = list(db.scalars(stmt).all())

        since = int(time.time()) - HISTORY_RECENT_DAYS * 86400
        # 优先：近 7 天；其次：同一个孩子；去重后最多 10 条
        picked = [s for s in sessions if (s.last_message_at or 0) >= since]
        if child_id:
            seen = {s.id for s in picked}
            for s in sessions:
                if s.child_id == child_id and s.id not in seen:
                    picked.append(s)
                    seen.add(s.id)
        return picked[:HISTORY_LIMIT]

    def get_chat_context(
        self,
        db: Session,
        *,
        parent_id: int,
        child_id: Optional[int] = None,
        limit: int = 20,
    ) -> schemas.ChatContextOut:
        out = schemas.ChatContextOut()

        if child_id:
            child = db.get(models.Kid, child_id)
            if child is None or child.parent_id != parent_id:
                raise NotFoundError(code="CHILD_NOT_FOUND", message="Child not found or access denied")
            out.child_profile = schemas.ChildContext(
                id=child.id,
                first_name=child.first_name,
                birth_date=child.birth_date,
                age_in_months=age.age_in_months(child.birth_date) if child.birth_date else None,
            )

        stmt = select(models.ChatSession).where(models.ChatSession.user_id == parent_id)
        if child_id:
            stmt = stmt.where(models.ChatSession.child_id == child_id)
        else:
            stmt = stmt.where(models.ChatSession.child_id.is_(None))
        stmt = stmt.order_by(models.ChatSession.created_at.desc(), models.ChatSession.id.desc()).limit(1)

        session = db.scalars(stmt).first()
        if session is not None:
            out.session_id = session.id
            out.session_summary = session.summary or ""
            out.recent_messages = [to_message_out(m) for m in recent_messages(db, session.id, limit)]
        return out
