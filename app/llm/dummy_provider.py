# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import hashlib
import math
import re
from typing import Any, Dict, List, Optional

from app.llm.base import ChatMessage, LlmProvider

_DIM = 64
_WORD_RE = re.compile(r"[a-z0-9]+")


class DummyProvider(LlmProvider):
    """本地联调用：不访问网络，回复和向量都是确定性的"""

    name = "dummy"

    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        *,
        max_tokens: int = 256,
        temperature: float = 0.8,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> str:
        last_user = ""
        for m in reversed(messages):
            if m.get("role") == "user":
                last_user = m.get("content", "")
                break
        return f"(dummy) You said: {last_user[:200]}"

    async def embed(self, text: str, model: str) -> List[float]:
        # 词袋哈希到固定维度，再做 L2 归一化
        vec = [0.0] * _DIM
        for word in _WORD_RE.findall((text or "").lower()):
            idx = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % _DIM
            vec[idx] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0:
            return vec
        return [v / norm for v in vec]
