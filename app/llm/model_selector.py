# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from app.infra.config import settings
from app.llm.base import LlmProvider
from app.llm.registry import LlmProviderRegistry

TASK_CHAT = "chat"
TASK_SUMMARY = "summary"
TASK_EMBEDDING = "embedding"


class LlmModelSelector:
    """根据场景（chat / summary / embedding），从注册表里选择 provider + model + 生成参数"""

    def __init__(self, registry: LlmProviderRegistry) -> None:
        self._registry = registry

    def _choose_provider_name(self) -> Optional[str]:
        default_name = (settings.LLM_DEFAULT_PROVIDER or "").strip().lower()
        available = set(self._registry.available_providers())

        if default_name in available:
            return default_name
        if "openai" in available:
            return "openai"
        if available:
            return sorted(available)[0]
        return None

    def _default_model(self, provider_name: str, task: str) -> str:
        if provider_name == "openai":
            if task == TASK_SUMMARY:
                return settings.OPENAI_SUMMARY_MODEL
            if task == TASK_EMBEDDING:
                return settings.OPENAI_EMBEDDING_MODEL
            return settings.OPENAI_CHAT_MODEL
        if provider_name == "dummy":
            return "dummy"
        return "default"

    def _default_gen_config(self, task: str) -> Dict[str, Any]:
        # 摘要要短一些，对话回复低温度
        if task == TASK_SUMMARY:
            return {"temperature": 0.3, "max_tokens": 150}
        if task == TASK_EMBEDDING:
            return {}
        return {"temperature": 0.2, "max_tokens": 300}

    def select(self, task: str = TASK_CHAT) -> Optional[Tuple[LlmProvider, str, Dict[str, Any]]]:
        """返回 (provider, model_name, gen_cfg)；没有可用 provider 时返回 None"""
        provider_name = self._choose_provider_name()
        if provider_name is None:
            return None
        provider = self._registry.get(provider_name)
        model_name = self._default_model(provider_name, task)
        gen_cfg = self._default_gen_config(task)
        return provider, model_name, gen_cfg
