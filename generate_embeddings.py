# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description: 为已认证专家生成 / 刷新档案向量

from __future__ import annotations

import argparse
import asyncio

from app.api.deps import get_experts_usecase
from app.common.logging import setup_logging
from app.infra.config import settings
from app.infra.db import SessionLocal


async def main(regenerate_all: bool) -> None:
    uc = get_experts_usecase()
    with SessionLocal() as db:
        result = await uc.generate_expert_embeddings(db, regenerate_all=regenerate_all)
    print(
        f"total={result.total} generated={result.generated} "
        f"skipped={result.skipped} failed={result.failed}"
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate expert profile embeddings")
    parser.add_argument("--all", action="store_true", help="regenerate embeddings for every verified expert")
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL)
    asyncio.run(main(args.all))
