# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from typing import Dict, Tuple

from app.infra.config import settings
from app.llm.base import LlmProvider
from app.llm.dummy_provider import DummyProvider
from app.llm.openai_provider import OpenAIProvider


class LlmProviderRegistry:
    def __init__(self, providers: Dict[str, LlmProvider]) -> None:
        self._providers = providers

    def get(self, name: str) -> LlmProvider:
        if name not in self._providers:
            raise KeyError(f"未注册的 LLM provider: {name}")
        return self._providers[name]

    def available_providers(self) -> Tuple[str, ...]:
        return tuple(self._providers.keys())


def build_default_registry() -> LlmProviderRegistry:
    providers: Dict[str, LlmProvider] = {}

    if settings.OPENAI_API_KEY:
        providers["openai"] = OpenAIProvider()

    # dummy 只在显式指定时注册，未配置 key 时按“AI 服务不可用”处理
    if (settings.LLM_DEFAULT_PROVIDER or "").strip().lower() == "dummy":
        providers["dummy"] = DummyProvider()

    return LlmProviderRegistry(providers)
