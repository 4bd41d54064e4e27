# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.application.chat.context import recent_messages
from app.common.errors import ForbiddenError, NotFoundError, UpstreamError
from app.domain import models, schemas
from app.llm.model_selector import TASK_SUMMARY, LlmModelSelector

logger = logging.getLogger(__name__)

SUMMARY_MESSAGES = 10

_SYSTEM = "You are a helpful assistant that creates concise summaries of parent-child conversations."

_PROMPT = """
You are an AI assistant helping to summarize parent-child conversations for context.

EXISTING SUMMARY:
{existing}

RECENT MESSAGES:
{messages}

Please create a concise summary (2-3 sentences) that captures:
1. The main topic/concern discussed
2. Key advice or guidance provided
3. Any important context about the child or situation

Keep it brief but informative for future conversation context.
"""


class SessionSummaryService:
    def __init__(self, selector: LlmModelSelector) -> None:
        self._selector = selector

    async def update_session_summary(
        self,
        db: Session,
        *,
        session_id: int,
        user: Optional[models.Profile] = None,
    ) -> schemas.SessionSummaryOut:
        """user 为空时是内部自动触发，不做归属校验"""
        session = db.get(models.ChatSession, session_id)
        if session is None:
            raise NotFoundError(code="SESSION_NOT_FOUND", message="Session not found")
        if user is not None and session.user_id != user.id:
            raise ForbiddenError(code="SESSION_FORBIDDEN", message="session not belongs to current user")

        msgs = recent_messages(db, session_id, SUMMARY_MESSAGES)
        prompt = _PROMPT.format(
            existing=session.summary or "",
            messages="\n".join(f"{m.role}: {m.content}" for m in msgs),
        )

        selected = self._selector.select(TASK_SUMMARY)
        if selected is None:
            raise UpstreamError(code="SUMMARY_FAILED", message="Failed to generate summary", detail="no llm provider")
        provider, model, gen_cfg = selected

        try:
            summary = await provider.chat(
                [{"role": "system", "content": _SYSTEM}, {"role": "user", "content": prompt}],
                model,
                max_tokens=int(gen_cfg.get("max_tokens", 150)),
                temperature=float(gen_cfg.get("temperature", 0.3)),
            )
        except Exception as e:
            logger.error("Summary generation failed: session=%s err=%s", session_id, e)
            raise UpstreamError(code="SUMMARY_FAILED", message="Failed to generate summary", detail=str(e)) from e

        session.summary = summary or ""
        db.add(session)
        db.commit()
        logger.info("Session summary updated: session=%s messages=%s", session_id, len(msgs))
        return schemas.SessionSummaryOut(summary=session.summary, messages_processed=len(msgs))
