# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from app.common.errors import UpstreamError
from app.infra.config import settings
from app.infra.ylogger import ylogger
from app.llm.base import ChatMessage, LlmProvider


class OpenAIProvider(LlmProvider):
    """OpenAI 对话 + embedding；SDK 是同步的，放到线程里跑"""

    name = "openai"

    def __init__(self) -> None:
        if not settings.OPENAI_API_KEY:
            raise ValueError("OPENAI_API_KEY 未配置，无法使用 OpenAIProvider")

        kwargs: Dict[str, Any] = {"api_key": settings.OPENAI_API_KEY}
        if settings.OPENAI_BASE_URL:
            kwargs["base_url"] = settings.OPENAI_BASE_URL
        self._client = OpenAI(**kwargs)

    def _complete(self, params: Dict[str, Any]) -> str:
        try:
            resp = self._client.chat.completions.create(**params)
        except OpenAIError as e:
            ylogger.error("OpenAI chat failed: model=%s err=%s", params.get("model"), e)
            raise UpstreamError(code="LLM_CHAT_FAILED", message="AI service request failed", detail=str(e)) from e

        if not resp.choices:
            return ""
        content = resp.choices[0].message.content
        return (content or "").strip()

    def _embedding(self, text: str, model: str) -> List[float]:
        try:
            resp = self._client.embeddings.create(model=model, input=text)
        except OpenAIError as e:
            ylogger.error("OpenAI embedding failed: model=%s err=%s", model, e)
            raise UpstreamError(code="LLM_EMBEDDING_FAILED", message="embedding request failed", detail=str(e)) from e

        if not resp.data:
            raise UpstreamError(code="LLM_EMBEDDING_FAILED", message="empty embedding response")
        return [float(v) for v in resp.data[0].embedding]

    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        *,
        max_tokens: int = 256,
        temperature: float = 0.8,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> str:
        params: Dict[str, Any] = {
            "model": model,
            "messages": [dict(m) for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if extra_params:
            params.update(extra_params)
        return await asyncio.to_thread(self._complete, params)

    async def embed(self, text: str, model: str) -> List[float]:
        # embedding 接口不接受空串
        return await asyncio.to_thread(self._embedding, text.strip() or " ", model)
