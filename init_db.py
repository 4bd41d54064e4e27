# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

from sqlalchemy import select

from app.domain import models
from app.infra.db import Base, SessionLocal, engine

# 商品分类初始数据
DEFAULT_CATEGORIES = [
    ("Sleep", "sleep", "Sleep routines and bedtime guidance"),
    ("Feeding & Nutrition", "feeding-nutrition", "Breastfeeding, bottles, solids and picky eaters"),
    ("Development", "development", "Milestones, play and early learning"),
    ("Behavior", "behavior", "Tantrums, discipline and emotional regulation"),
    ("Health & Safety", "health-safety", "Common illnesses, first aid and safety"),
    ("Pregnancy", "pregnancy", "Prenatal care and preparing for baby"),
]


def seed_categories() -> int:
    created = 0
    with SessionLocal() as db:
        existing = set(db.scalars(select(models.ProductCategory.slug)).all())
        for name, slug, description in DEFAULT_CATEGORIES:
            if slug in existing:
                continue
            db.add(models.ProductCategory(name=name, slug=slug, description=description))
            created += 1
        db.commit()
    return created


def init_db() -> None:
    print("Creating tables...")
    Base.metadata.create_all(bind=engine)
    print(f"Seeded {seed_categories()} categories.")
    print("Done.")


if __name__ == "__main__":
    init_db()
