"""Tests for profile editing, onboarding steps and kids management."""

import asyncio
import datetime as dt
import os

import pytest

from app.application.kids.usecase import KidsUsecase
from app.common.errors import BadRequestError, ForbiddenError, NotFoundError
from app.domain import models, schemas
from app.infra import storage_r2


def in_days(n: int) -> str:
    return (dt.date.today() + dt.timedelta(days=n)).isoformat()


@pytest.fixture
def parent(make_profile):
    return make_profile(first_name="Pat")


class TestProfileApi:
    """GET/PATCH profile, expert profile and avatar upload."""

    def test_defaults(self, client, parent, auth_headers):
        data = client.get("/profile", headers=auth_headers(parent)).json()
        assert data["account_type"] == "parent"
        assert data["onboarded"] is False
        assert data["parenting_styles"] == []
        assert data["expert_profile_visibility"] is True

    def test_custom_role_cleared_when_role_changes(self, client, parent, auth_headers):
        headers = auth_headers(parent)
        resp = client.patch("/profile", json={"role": "other", "custom_role": "Grandma"}, headers=headers)
        assert resp.json()["custom_role"] == "Grandma"

        resp = client.patch("/profile", json={"role": "mom"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["role"] == "mom"
        assert resp.json()["custom_role"] is None

    def test_invalid_role_rejected(self, client, parent, auth_headers):
        resp = client.patch("/profile", json={"role": "uncle"}, headers=auth_headers(parent))
        assert resp.status_code == 422

    def test_expert_profile_requires_expert(self, client, parent, auth_headers):
        resp = client.patch("/profile/expert", json={"expert_bio": "hi"}, headers=auth_headers(parent))
        assert resp.status_code == 403
        assert resp.json()["code"] == "NOT_AN_EXPERT"

    def test_expert_profile_update(self, client, make_profile, auth_headers):
        expert = make_profile("expert")
        resp = client.patch(
            "/profile/expert",
            json={"expert_bio": "Sleep coach", "expert_specialties": ["Sleep"], "expert_consultation_rate": 90},
            headers=auth_headers(expert),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["expert_bio"] == "Sleep coach"
        assert data["expert_specialties"] == ["Sleep"]
        assert data["expert_consultation_rate"] == 90

    def test_avatar_upload(self, client, parent, auth_headers, files_dir):
        resp = client.post(
            "/profile/avatar",
            files={"file": ("me.png", b"\x89PNG\r\n" + b"0" * 64, "image/png")},
            headers=auth_headers(parent),
        )
        assert resp.status_code == 200
        url = resp.json()["profile_image_url"]
        assert url.startswith(f"/files/profile-images/{parent.id}/")
        assert url.endswith(".png")
        assert os.path.isfile(os.path.join(files_dir, url[len("/files/"):]))

    def test_avatar_must_be_image(self, client, parent, auth_headers):
        resp = client.post(
            "/profile/avatar",
            files={"file": ("notes.pdf", b"%PDF" + b"0" * 64, "application/pdf")},
            headers=auth_headers(parent),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_IMAGE"

    def test_avatar_upload_runs_off_the_event_loop(self, client, parent, auth_headers, monkeypatch):
        on_loop = []
        real_upload = storage_r2.upload_with_retry

        def _upload(key, data, content_type="application/octet-stream", **kwargs):
            try:
                asyncio.get_running_loop()
                on_loop.append(True)
            except RuntimeError:
                on_loop.append(False)
            return real_upload(key, data, content_type, **kwargs)

        monkeypatch.setattr(storage_r2, "upload_with_retry", _upload)
        resp = client.post(
            "/profile/avatar",
            files={"file": ("me.png", b"\x89PNG\r\n" + b"0" * 64, "image/png")},
            headers=auth_headers(parent),
        )
        assert resp.status_code == 200
        assert on_loop == [False]


class TestOnboardingApi:
    """Step-by-step onboarding progress."""

    def test_initial_progress(self, client, parent, auth_headers):
        data = client.get("/onboarding/progress", headers=auth_headers(parent)).json()
        assert data == {"completed_steps": [], "next_step": "role", "onboarded": False}

    def test_role_step(self, client, parent, auth_headers):
        resp = client.post(
            "/onboarding/steps/role",
            json={"data": {"role": "Other", "custom_role": "Aunt"}},
            headers=auth_headers(parent),
        )
        assert resp.status_code == 200
        assert resp.json()["completed_steps"] == ["role"]
        assert resp.json()["next_step"] == "kids"

        profile = client.get("/profile", headers=auth_headers(parent)).json()
        assert profile["role"] == "other"
        assert profile["custom_role"] == "Aunt"

    def test_unknown_step(self, client, parent, auth_headers):
        resp = client.post("/onboarding/steps/hobbies", json={"data": {}}, headers=auth_headers(parent))
        assert resp.status_code == 400
        assert resp.json()["code"] == "UNKNOWN_ONBOARDING_STEP"

    def test_invalid_role(self, client, parent, auth_headers):
        resp = client.post("/onboarding/steps/role", json={"data": {"role": "wizard"}}, headers=auth_headers(parent))
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_ROLE"

    def test_full_flow(self, client, parent, auth_headers):
        headers = auth_headers(parent)
        steps = [
            ("role", {"role": "mom"}),
            ("kids", {"expecting_status": "yes", "due_date": in_days(60), "expected_name": "Bean"}),
            ("kids_count", {"has_kids": True, "kids_count": 1}),
            ("kids_ages", {"kids": [{"name": "Amy", "birthdate": "2021-05-01"}]}),
            ("parenting_styles", {"parenting_styles": ["gentle", " ", "authoritative"]}),
            ("topics", {"topics": ["sleep"]}),
            ("personal_context", {"personal_context": "  Working parent  "}),
            ("complete", {}),
        ]
        for name, data in steps:
            resp = client.post(f"/onboarding/steps/{name}", json={"data": data}, headers=headers)
            assert resp.status_code == 200, resp.text

        progress = resp.json()
        assert progress["onboarded"] is True
        assert progress["next_step"] is None
        assert len(progress["completed_steps"]) == 8

        profile = client.get("/profile", headers=headers).json()
        assert profile["parenting_styles"] == ["gentle", "authoritative"]
        assert profile["personal_context"] == "Working parent"
        assert profile["expecting_status"] == "yes"

        kids = client.get("/kids", headers=headers).json()
        assert sorted(k["first_name"] for k in kids) == ["Amy", "Bean"]
        assert any(k["is_expecting"] for k in kids)

    def test_kids_ages_needs_one_valid_kid(self, client, parent, auth_headers):
        resp = client.post(
            "/onboarding/steps/kids_ages",
            json={"data": {"kids": [{"name": "", "birthdate": "2021-01-01"}]}},
            headers=auth_headers(parent),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_KIDS"


class TestKidsUsecase:
    """Replacing kids, expecting baby and deletion."""

    def test_save_kids_skips_invalid_and_detects_no_change(self, db, parent):
        uc = KidsUsecase()
        kids = [
            schemas.KidIn(name="Amy", birthdate="2021-05-01"),
            schemas.KidIn(name="", birthdate="2020-01-01"),
            schemas.KidIn(name="Ben", birthdate="bad"),
        ]
        first = uc.save_kids(db, parent=parent, kids=kids)
        assert first.changed is True
        assert [k.first_name for k in first.kids] == ["Amy"]
        assert first.kids[0].age_display
        assert parent.has_kids is True
        assert parent.kids_count == 1

        second = uc.save_kids(db, parent=parent, kids=kids)
        assert second.changed is False

    def test_save_kids_keeps_expecting_record(self, db, parent):
        uc = KidsUsecase()
        uc.save_expecting_baby(db, parent=parent, due_date=in_days(30))
        uc.save_kids(db, parent=parent, kids=[schemas.KidIn(name="Amy", birthdate="2021-05-01")])
        uc.save_kids(db, parent=parent, kids=[schemas.KidIn(name="Cal", birthdate="2022-02-02")])

        kids = uc.list_kids(db, parent=parent)
        assert sorted(k.first_name for k in kids) == ["Cal", "Expected Baby"]

    def test_expecting_baby_replaces_previous(self, db, parent):
        uc = KidsUsecase()
        uc.save_expecting_baby(db, parent=parent, due_date=in_days(30), expected_name="One")
        out = uc.save_expecting_baby(db, parent=parent, due_date=in_days(40), expected_name="Two")
        assert out.is_expecting is True
        assert out.expected_name == "Two"
        assert out.due_date_display

        kids = uc.list_kids(db, parent=parent)
        assert [k.first_name for k in kids] == ["Two"]

    def test_invalid_due_date(self, db, parent):
        with pytest.raises(BadRequestError) as exc:
            KidsUsecase().save_expecting_baby(db, parent=parent, due_date=in_days(2))
        assert exc.value.code == "INVALID_DUE_DATE"

    def test_delete_kid_detaches_sessions(self, db, parent):
        uc = KidsUsecase()
        uc.save_kids(db, parent=parent, kids=[schemas.KidIn(name="Amy", birthdate="2021-05-01")])
        kid_id = uc.list_kids(db, parent=parent)[0].id
        session = models.ChatSession(user_id=parent.id, child_id=kid_id, title="t", is_active=True)
        db.add(session)
        db.commit()

        uc.delete_kid(db, parent=parent, kid_id=kid_id)
        db.refresh(session)
        assert session.child_id is None
        assert parent.kids_count == 0
        assert parent.has_kids is False

    def test_delete_kid_checks_owner(self, db, parent, make_profile):
        uc = KidsUsecase()
        other = make_profile()
        uc.save_kids(db, parent=other, kids=[schemas.KidIn(name="Zed", birthdate="2021-05-01")])
        kid_id = uc.list_kids(db, parent=other)[0].id

        with pytest.raises(ForbiddenError):
            uc.delete_kid(db, parent=parent, kid_id=kid_id)
        with pytest.raises(NotFoundError):
            uc.delete_kid(db, parent=parent, kid_id=123456)


class TestKidsApi:
    """HTTP surface for kids."""

    def test_put_and_list(self, client, parent, auth_headers):
        headers = auth_headers(parent)
        resp = client.put("/kids", json={"kids": [{"name": "Amy", "birthdate": "2021-05-01"}]}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["changed"] is True

        kids = client.get("/kids", headers=headers).json()
        assert kids[0]["first_name"] == "Amy"
        assert kids[0]["birth_date"] == "2021-05-01"

    def test_delete_other_parents_kid(self, client, parent, make_profile, auth_headers):
        other = make_profile()
        resp = client.put("/kids", json={"kids": [{"name": "Zed", "birthdate": "2021-05-01"}]}, headers=auth_headers(other))
        kid_id = resp.json()["kids"][0]["id"]

        resp = client.delete(f"/kids/{kid_id}", headers=auth_headers(parent))
        assert resp.status_code == 403
        assert resp.json()["code"] == "KID_FORBIDDEN"
