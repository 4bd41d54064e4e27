# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.common.errors import BadRequestError, ForbiddenError, NotFoundError
from app.domain import models, schemas
from app.services import age

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_NAME = "Expected Baby"


def to_kid_out(kid: models.Kid) -> schemas.KidOut:
    return schemas.KidOut(
        id=kid.id,
        first_name=kid.first_name,
        birth_date=kid.birth_date,
        age=kid.age,
        age_display=age.calculate_age(kid.birth_date) if kid.birth_date else None,
        is_expecting=bool(kid.is_expecting),
        due_date=kid.due_date,
        due_date_display=age.format_due_date(kid.due_date) if kid.due_date else None,
        expected_name=kid.expected_name,
    )


def valid_kids(kids: List[schemas.KidIn]) -> List[Tuple[str, str]]:
    """过滤掉名字为空 / 日期解析不了的条目，返回 [(name, yyyy-mm-dd)]"""
    out: List[Tuple[str, str]] = []
    for k in kids:
        name = (k.name or "").strip()
        birth = age.parse_date(k.birthdate)
        if not name or birth is None:
            continue
        out.append((name, birth.isoformat()))
    return out


class KidsUsecase:
    """孩子档案（含预产期）"""

    def list_kids(self, db: Session, *, parent: models.Profile) -> List[schemas.KidOut]:
        stmt = (
            select(models.Kid)
            .where(models.Kid.parent_id == parent.id)
            .order_by(models.Kid.created_at.asc(), models.Kid.id.asc())
        )
        return [to_kid_out(k) for k in db.scalars(stmt).all()]

    def save_kids(
        self,
        db: Session,
        *,
        parent: models.Profile,
        kids: List[schemas.KidIn],
    ) -> schemas.SaveKidsResponse:
        new_kids = sorted(valid_kids(kids), key=lambda x: x[0])

        existing = list(
            db.scalars(
                select(models.Kid).where(
                    models.Kid.parent_id == parent.id,
                    models.Kid.is_expecting.is_(False),
                )
            ).all()
        )
        existing_norm = sorted(
            ((k.first_name, k.birth_date.isoformat() if k.birth_date else "") for k in existing),
            key=lambda x: x[0],
        )

        if existing_norm == new_kids:
            logger.info("Kids data unchanged, skipping save: parent=%s", parent.id)
            return schemas.SaveKidsResponse(changed=False, kids=self.list_kids(db, parent=parent))

        # 只替换已出生的孩子，预产期记录保留
        for k in existing:
            db.delete(k)
        db.flush()

        for name, birth in new_kids:
            db.add(
                models.Kid(
                    parent_id=parent.id,
                    first_name=name,
                    birth_date=age.parse_date(birth),
                    age=age.calculate_age_in_years(birth),
                    is_expecting=False,
                )
            )

        parent.kids_count = len(new_kids)
        parent.has_kids = len(new_kids) > 0
        db.add(parent)
        db.commit()
        logger.info("Kids saved: parent=%s count=%s", parent.id, len(new_kids))

        return schemas.SaveKidsResponse(changed=True, kids=self.list_kids(db, parent=parent))

    def save_expecting_baby(
        self,
        db: Session,
        *,
        parent: models.Profile,
        due_date: str,
        expected_name: Optional[str] = None,
    ) -> schemas.KidOut:
        ok, err = age.validate_due_date(due_date)
        if not ok:
            raise BadRequestError(code="INVALID_DUE_DATE", message=err or "invalid due date")

        for k in db.scalars(
            select(models.Kid).where(
                models.Kid.parent_id == parent.id,
                models.Kid.is_expecting.is_(True),
            )
        ).all():
            db.delete(k)
        db.flush()

        name = (expected_name or "").strip() or DEFAULT_EXPECTED_NAME
        kid = models.Kid(
            parent_id=parent.id,
            first_name=name,
            expected_name=name,
            is_expecting=True,
            due_date=age.parse_date(due_date),
            age=None,
        )
        db.add(kid)
        db.commit()
        db.refresh(kid)
        return to_kid_out(kid)

    def delete_kid(self, db: Session, *, parent: models.Profile, kid_id: int) -> None:
        kid = db.get(models.Kid, kid_id)
        if kid is None:
            raise NotFoundError(code="KID_NOT_FOUND", message="kid not found")
        if kid.parent_id != parent.id:
            raise ForbiddenError(code="KID_FORBIDDEN", message="kid not belongs to current parent")

        db.execute(
            update(models.ChatSession)
            .where(models.ChatSession.child_id == kid.id)
            .values(child_id=None)
        )
        was_born = not kid.is_expecting
        db.delete(kid)
        db.flush()

        if was_born:
            remaining = len(
                db.scalars(
                    select(models.Kid.id).where(
                        models.Kid.parent_id == parent.id,
                        models.Kid.is_expecting.is_(False),
                    )
                ).all()
            )
            parent.kids_count = remaining
            parent.has_kids = remaining > 0
            db.add(parent)
        db.commit()
