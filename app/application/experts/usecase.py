# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.common.errors import NotFoundError, UpstreamError
from app.domain import models, schemas
from app.infra.config import settings
from app.llm.model_selector import TASK_EMBEDDING, LlmModelSelector
from app.services import expert_matching

logger = logging.getLogger(__name__)


def _expert_filter(stmt, *, accepting: Optional[bool] = None):
    stmt = stmt.where(
        models.Profile.account_type == "expert",
        models.Profile.expert_verified.is_(True),
        models.Profile.expert_profile_visibility.is_(True),
    )
    if accepting is not None:
        stmt = stmt.where(models.Profile.expert_accepts_new_clients.is_(accepting))
    return stmt


class ExpertsUsecase:
    """专家目录 + RAG 匹配 + embedding 生成"""

    def __init__(self, selector: LlmModelSelector) -> None:
        self._selector = selector

    def list_experts(self, db: Session, *, accepts_new_clients: Optional[bool] = None) -> List[schemas.ExpertOut]:
        stmt = _expert_filter(select(models.Profile), accepting=accepts_new_clients).order_by(
            models.Profile.first_name.asc(), models.Profile.id.asc()
        )
        return [schemas.ExpertOut.model_validate(p) for p in db.scalars(stmt).all()]

    def get_expert(self, db: Session, *, expert_id: int) -> schemas.ExpertOut:
        p = db.get(models.Profile, expert_id)
        if p is None or p.account_type != "expert":
            raise NotFoundError(code="EXPERT_NOT_FOUND", message="expert not found")
        return schemas.ExpertOut.model_validate(p)

    # ---------- 匹配 ----------

    async def find_matching_experts(self, db: Session, message: str) -> List[Dict[str, Any]]:
        if expert_matching.is_browsing_query(message):
            logger.info("General browsing query detected, listing all experts")
            return self._all_available(db)

        experts = await self._semantic_match(db, message)
        if experts:
            logger.info("Semantic matches: %s", [e["name"] for e in experts])
        else:
            logger.info("No semantic expert matches")
        return experts

    def _all_available(self, db: Session) -> List[Dict[str, Any]]:
        stmt = _expert_filter(select(models.Profile), accepting=True).order_by(
            models.Profile.first_name.asc(), models.Profile.id.asc()
        )
        return [
            expert_matching.format_expert_suggestion(p, browsing=True)
            for p in db.scalars(stmt).all()
        ]

    async def _semantic_match(self, db: Session, message: str) -> List[Dict[str, Any]]:
        selected = self._selector.select(TASK_EMBEDDING)
        if selected is None:
            logger.warning("No embedding provider available, skipping semantic search")
            return []
        provider, model, _ = selected

        try:
            query_vec = await provider.embed(message, model)
        except Exception as e:
            logger.error("Failed to generate embedding for user message: %s", e)
            return []

        stmt = _expert_filter(
            select(models.ExpertEmbedding, models.Profile).join(
                models.Profile, models.Profile.id == models.ExpertEmbedding.expert_id
            )
        )
        candidates = [(p, emb.embedding or []) for emb, p in db.execute(stmt).all()]

        ranked = expert_matching.rank_by_similarity(
            query_vec,
            candidates,
            threshold=float(settings.EXPERT_MATCH_RETRIEVAL_THRESHOLD),
            count=int(settings.EXPERT_MATCH_COUNT),
        )
        logger.info("Similarity scores: %s", [f"{p.first_name}: {sim:.3f}" for p, sim in ranked])

        min_sim = float(settings.EXPERT_MATCH_MIN_SIMILARITY)
        return [
            expert_matching.format_expert_suggestion(p, similarity=sim)
            for p, sim in ranked
            if sim >= min_sim
        ]

    # ---------- embedding ----------

    async def generate_expert_embeddings(
        self,
        db: Session,
        *,
        regenerate_all: bool = False,
    ) -> schemas.EmbeddingGenerationResult:
        selected = self._selector.select(TASK_EMBEDDING)
        if selected is None:
            raise UpstreamError(
                code="EMBEDDING_PROVIDER_MISSING", message="no embedding provider configured", detail="no llm provider"
            )
        provider, model, _ = selected

        experts = list(
            db.scalars(
                select(models.Profile).where(
                    models.Profile.account_type == "expert",
                    models.Profile.expert_verified.is_(True),
                ).order_by(models.Profile.id.asc())
            ).all()
        )
        existing = {
            e.expert_id: e for e in db.scalars(select(models.ExpertEmbedding)).all()
        }

        generated = skipped = failed = 0
        for expert in experts:
            row = existing.get(expert.id)
            if row is not None and not regenerate_all:
                skipped += 1
                continue

            text = expert_matching.build_profile_text(expert)
            try:
                vec = await provider.embed(text, model)
            except Exception as e:
                logger.error("Embedding failed: expert=%s err=%s", expert.id, e)
                failed += 1
                continue

            if row is None:
                row = models.ExpertEmbedding(expert_id=expert.id, profile_text=text, embedding=vec, model=model)
            else:
                row.profile_text = text
                row.embedding = vec
                row.model = model
                row.updated_at = int(time.time())
            db.add(row)
            db.commit()
            generated += 1

        logger.info(
            "Expert embeddings done: total=%s generated=%s skipped=%s failed=%s",
            len(experts), generated, skipped, failed,
        )
        return schemas.EmbeddingGenerationResult(
            total=len(experts),
            generated=generated,
            skipped=skipped,
            failed=failed,
        )
