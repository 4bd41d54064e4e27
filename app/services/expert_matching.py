# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

"""专家匹配（纯函数部分）

- 浏览类问题（"show me experts" ...）直接列出全部可用专家
- 其余走向量相似度：宽松阈值召回，再按最低相似度过滤
"""

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app.domain import models

BROWSE_PHRASES: Tuple[str, ...] = (
    "show me experts",
    "show experts",
    "list experts",
    "available experts",
    "find experts",
    "what experts do you have",
    "who are your experts",
    "browse experts",
    "see experts",
    "expert list",
)

DEFAULT_BIO = "Experienced professional ready to help."
DEFAULT_BROWSE_BIO = "Experienced professional ready to help with parenting guidance."
DEFAULT_CONSULTATION_FEE_CENTS = 10000


def is_browsing_query(message: str) -> bool:
    lower = (message or "").lower()
    if lower.strip() == "experts":
        return True
    return any(p in lower for p in BROWSE_PHRASES)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


def rank_by_similarity(
    query: Sequence[float],
    candidates: Iterable[Tuple[Any, Sequence[float]]],
    *,
    threshold: float,
    count: int,
) -> List[Tuple[Any, float]]:
    """返回 [(item, similarity)]，相似度降序，过滤掉低于 threshold 的，最多 count 个"""
    scored: List[Tuple[Any, float]] = []
    for item, vec in candidates:
        sim = cosine_similarity(query, vec)
        if sim >= threshold:
            scored.append((item, sim))
    scored.sort(key=lambda x: x[1], reverse=True)
    return scored[:count]


def consultation_fee_cents(rate: Optional[float]) -> int:
    if not rate:
        return DEFAULT_CONSULTATION_FEE_CENTS
    return int(round(float(rate) * 100))


def format_expert_suggestion(
    expert: models.Profile,
    *,
    similarity: Optional[float] = None,
    browsing: bool = False,
) -> Dict[str, Any]:
    specialties = list(expert.expert_specialties or [])
    if specialties:
        specialty = specialties[0]
    else:
        specialty = "General Parenting" if browsing else "General"

    item: Dict[str, Any] = {
        "id": expert.id,
        "name": expert.first_name or "Expert",
        "specialty": specialty,
        "bio": expert.expert_bio or (DEFAULT_BROWSE_BIO if browsing else DEFAULT_BIO),
        "profile_image_url": expert.profile_image_url,
        "rating": expert.expert_rating or 5.0,
        "total_reviews": expert.expert_total_reviews or 0,
        "consultation_fee": consultation_fee_cents(expert.expert_consultation_rate),
        "experience_years": expert.expert_experience_years,
        "location": expert.expert_office_location,
    }
    if similarity is not None:
        item["similarity_score"] = similarity
    return item


def build_profile_text(expert: models.Profile) -> str:
    """拼出用于 embedding 的专家档案文本"""
    parts: List[str] = []
    if expert.first_name:
        parts.append(f"Name: {expert.first_name}")
    if expert.expert_specialties:
        parts.append(f"Specialties: {', '.join(expert.expert_specialties)}")
    if expert.expert_bio:
        parts.append(f"Bio: {expert.expert_bio}")
    if expert.expert_credentials:
        parts.append(f"Credentials: {', '.join(expert.expert_credentials)}")
    if expert.expert_experience_years:
        parts.append(f"Experience: {expert.expert_experience_years} years")
    if expert.expert_languages:
        parts.append(f"Languages: {', '.join(expert.expert_languages)}")
    if expert.expert_office_location:
        parts.append(f"Location: {expert.expert_office_location}")
    return "\n".join(parts)
