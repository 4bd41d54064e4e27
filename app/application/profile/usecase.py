# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.application.kids.usecase import KidsUsecase, valid_kids
from app.common.errors import BadRequestError, ForbiddenError
from app.domain import models, schemas
from app.infra import storage_r2
from app.services import upload_rules

logger = logging.getLogger(__name__)

ONBOARDING_STEPS: List[str] = [
    "role",
    "kids",
    "kids_count",
    "kids_ages",
    "parenting_styles",
    "topics",
    "personal_context",
    "complete",
]

_ROLES = ("mom", "dad", "caregiver", "other")
_EXPECTING = ("yes", "no", "trying")


def _clean_list(items: Any) -> List[str]:
    if not isinstance(items, list):
        raise BadRequestError(code="INVALID_STEP_DATA", message="expected a list of strings")
    return [str(x).strip() for x in items if x is not None and str(x).strip()]


class ProfileUsecase:
    """个人档案 + 引导流程"""

    def __init__(self, kids: KidsUsecase) -> None:
        self._kids = kids
        self._step_handlers: Dict[str, Callable[[Session, models.Profile, Dict[str, Any]], None]] = {
            "role": self._step_role,
            "kids": self._step_kids,
            "kids_count": self._step_kids_count,
            "kids_ages": self._step_kids_ages,
            "parenting_styles": self._step_parenting_styles,
            "topics": self._step_topics,
            "personal_context": self._step_personal_context,
            "complete": self._step_complete,
        }

    # ---------- profile ----------

    def get_profile(self, profile: models.Profile) -> schemas.ProfileOut:
        return schemas.ProfileOut.model_validate(profile)

    def update_profile(
        self,
        db: Session,
        *,
        profile: models.Profile,
        req: schemas.ProfileUpdateRequest,
    ) -> schemas.ProfileOut:
        data = req.model_dump(exclude_unset=True)
        for key, value in data.items():
            setattr(profile, key, value)
        if data.get("role") and data["role"] != "other" and "custom_role" not in data:
            profile.custom_role = None

        db.add(profile)
        db.commit()
        db.refresh(profile)
        return schemas.ProfileOut.model_validate(profile)

    def update_expert_profile(
        self,
        db: Session,
        *,
        profile: models.Profile,
        req: schemas.ExpertProfileUpdateRequest,
    ) -> schemas.ProfileOut:
        if profile.account_type != "expert":
            raise ForbiddenError(code="NOT_AN_EXPERT", message="only expert accounts can edit expert profile")

        for key, value in req.model_dump(exclude_unset=True).items():
            setattr(profile, key, value)

        db.add(profile)
        db.commit()
        db.refresh(profile)
        return schemas.ProfileOut.model_validate(profile)

    def upload_avatar(
        self,
        db: Session,
        *,
        profile: models.Profile,
        data: bytes,
        filename: str,
        content_type: Optional[str],
    ) -> schemas.ProfileOut:
        kind = upload_rules.detect_upload_kind(content_type, filename)
        if kind != upload_rules.KIND_IMAGE:
            raise BadRequestError(code="INVALID_IMAGE", message="avatar must be an image file")

        max_bytes = upload_rules.size_limits_mb()[upload_rules.KIND_IMAGE] * 1024 * 1024
        if len(data) > max_bytes:
            raise BadRequestError(code="FILE_TOO_LARGE", message="avatar image is too large")
        if not data:
            raise BadRequestError(code="EMPTY_FILE", message="empty file")

        ext = upload_rules.file_extension(filename, default="jpg")
        key = storage_r2.profile_image_key(profile.id, int(time.time() * 1000), ext)
        storage_r2.upload_with_retry(key, data, content_type or f"image/{ext}")

        profile.profile_image_url = storage_r2.build_url(key)
        db.add(profile)
        db.commit()
        db.refresh(profile)
        logger.info("Avatar uploaded: user=%s key=%s", profile.id, key)
        return schemas.ProfileOut.model_validate(profile)

    # ---------- onboarding ----------

    def complete_onboarding_step(
        self,
        db: Session,
        *,
        profile: models.Profile,
        step_name: str,
        step_data: Dict[str, Any],
    ) -> schemas.OnboardingProgress:
        handler = self._step_handlers.get(step_name)
        if handler is None:
            raise BadRequestError(
                code="UNKNOWN_ONBOARDING_STEP",
                message=f"unknown onboarding step: {step_name}",
                detail={"steps": ONBOARDING_STEPS},
            )

        handler(db, profile, step_data or {})

        done = list(profile.onboarding_steps or [])
        if step_name not in done:
            # JSON 列需要整体重新赋值才能被识别为变更
            profile.onboarding_steps = done + [step_name]
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return self.get_onboarding_progress(profile)

    def get_onboarding_progress(self, profile: models.Profile) -> schemas.OnboardingProgress:
        done = set(profile.onboarding_steps or [])
        completed = [s for s in ONBOARDING_STEPS if s in done]
        next_step = None
        if not profile.onboarded:
            next_step = next((s for s in ONBOARDING_STEPS if s not in done), None)
        return schemas.OnboardingProgress(
            completed_steps=completed,
            next_step=next_step,
            onboarded=bool(profile.onboarded),
        )

    def _step_role(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        role = str(data.get("role") or "").strip().lower()
        if role not in _ROLES:
            raise BadRequestError(code="INVALID_ROLE", message="role must be one of mom/dad/caregiver/other")
        profile.role = role
        profile.custom_role = (str(data.get("custom_role") or "").strip() or None) if role == "other" else None

    def _step_kids(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        status = str(data.get("expecting_status") or "").strip().lower()
        if status not in _EXPECTING:
            raise BadRequestError(code="INVALID_EXPECTING_STATUS", message="expecting_status must be yes/no/trying")
        profile.expecting_status = status

        due_date = data.get("due_date")
        if status == "yes" and due_date:
            self._kids.save_expecting_baby(
                db,
                parent=profile,
                due_date=str(due_date),
                expected_name=data.get("expected_name"),
            )

    def _step_kids_count(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        has_kids = bool(data.get("has_kids"))
        try:
            count = int(data.get("kids_count") or 0)
        except (TypeError, ValueError):
            raise BadRequestError(code="INVALID_KIDS_COUNT", message="kids_count must be an integer")
        if count < 0:
            raise BadRequestError(code="INVALID_KIDS_COUNT", message="kids_count must not be negative")
        profile.has_kids = has_kids
        profile.kids_count = count if has_kids else 0

    def _step_kids_ages(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        raw = data.get("kids")
        if not isinstance(raw, list):
            raise BadRequestError(code="INVALID_STEP_DATA", message="kids must be a list")
        kids = [schemas.KidIn.model_validate(k) for k in raw if isinstance(k, dict)]
        if not valid_kids(kids):
            raise BadRequestError(code="INVALID_KIDS", message="at least one kid with name and birthdate is required")
        self._kids.save_kids(db, parent=profile, kids=kids)

    def _step_parenting_styles(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        profile.parenting_styles = _clean_list(data.get("parenting_styles", []))

    def _step_topics(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        profile.topics_of_interest = _clean_list(data.get("topics", []))

    def _step_personal_context(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        profile.personal_context = str(data.get("personal_context") or "").strip() or None

    def _step_complete(self, db: Session, profile: models.Profile, data: Dict[str, Any]) -> None:
        profile.onboarded = True
