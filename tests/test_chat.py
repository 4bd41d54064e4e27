"""Tests for the chat turn, session history, context and summaries."""

import asyncio
import time

import pytest

from app.api.deps import get_chat_usecase, get_summary_service
from app.application.chat import usecase as chat_usecase
from app.application.chat.context import ChatContextService
from app.application.chat.summary import SessionSummaryService
from app.application.chat.usecase import ChatUsecase
from app.application.experts.usecase import ExpertsUsecase
from app.common.errors import ForbiddenError, NotFoundError, UpstreamError
from app.domain import models
from app.main import app
from conftest import FakeProvider, make_selector


def run(coro):
    return asyncio.run(coro)


def build_chat(provider):
    selector = make_selector(provider)
    return ChatUsecase(
        selector,
        ExpertsUsecase(selector),
        ChatContextService(),
        SessionSummaryService(selector),
    )


@pytest.fixture
def parent(make_profile):
    return make_profile(first_name="Pat", role="mom")


@pytest.fixture
def kid(db, parent):
    k = models.Kid(parent_id=parent.id, first_name="Amy", is_expecting=False)
    db.add(k)
    db.commit()
    return k


@pytest.fixture
def sleep_expert(db, make_profile):
    expert = make_profile(
        "expert",
        first_name="Sally",
        expert_verified=True,
        expert_specialties=["Sleep"],
    )
    db.add(models.ExpertEmbedding(expert_id=expert.id, profile_text="sleep", embedding=[1.0, 0.0, 0.0, 0.0]))
    db.commit()
    return expert


class TestSendMessage:
    """One chat turn end to end against the usecase."""

    def test_creates_session_and_stores_both_messages(self, db, parent):
        provider = FakeProvider(reply="Try a calm bedtime routine.")
        uc = build_chat(provider)
        message = "How can I help my daughter settle down in the evening before bed time?"

        resp = run(uc.send_message(db, user=parent, message=message))
        assert resp.response == "Try a calm bedtime routine."
        assert resp.expert_suggestions == []

        session = db.get(models.ChatSession, resp.session_id)
        assert session.title == message[:50] + "..."
        assert session.is_active is True
        assert session.last_message_at is not None

        msgs = uc.get_messages(db, user=parent, session_id=resp.session_id)
        assert [(m.role, m.content) for m in msgs] == [("user", message), ("assistant", "Try a calm bedtime routine.")]
        assert msgs[0].metadata == {"child_id": None}

    def test_prompt_shape(self, db, parent):
        provider = FakeProvider()
        uc = build_chat(provider)
        run(uc.send_message(db, user=parent, message="hello there"))

        call = provider.chat_calls[0]
        assert call["messages"][0]["role"] == "system"
        assert "Pat" in call["messages"][0]["content"]
        assert call["messages"][-1] == {"role": "user", "content": "hello there"}
        assert call["model"] == "default"
        assert call["max_tokens"] == 300
        assert call["temperature"] == pytest.approx(0.2)

    def test_continues_existing_session(self, db, parent):
        uc = build_chat(FakeProvider())
        first = run(uc.send_message(db, user=parent, message="first"))
        second = run(uc.send_message(db, user=parent, message="second", session_id=first.session_id))
        assert second.session_id == first.session_id
        assert len(uc.get_messages(db, user=parent, session_id=first.session_id)) == 4

    def test_child_must_belong_to_user(self, db, parent, make_profile):
        other = make_profile()
        foreign = models.Kid(parent_id=other.id, first_name="Zed")
        db.add(foreign)
        db.commit()

        uc = build_chat(FakeProvider())
        with pytest.raises(NotFoundError) as exc:
            run(uc.send_message(db, user=parent, message="hi", child_id=foreign.id))
        assert exc.value.code == "CHILD_NOT_FOUND"

    def test_child_is_recorded(self, db, parent, kid):
        uc = build_chat(FakeProvider())
        resp = run(uc.send_message(db, user=parent, message="hi", child_id=kid.id))
        session = db.get(models.ChatSession, resp.session_id)
        assert session.child_id == kid.id
        msgs = uc.get_messages(db, user=parent, session_id=resp.session_id)
        assert all(m.metadata["child_id"] == kid.id for m in msgs)

    def test_foreign_session(self, db, parent, make_profile):
        other = make_profile()
        uc = build_chat(FakeProvider())
        resp = run(uc.send_message(db, user=other, message="mine"))
        with pytest.raises(ForbiddenError):
            run(uc.send_message(db, user=parent, message="hijack", session_id=resp.session_id))
        with pytest.raises(NotFoundError):
            run(uc.send_message(db, user=parent, message="nope", session_id=424242))

    def test_no_provider_fallback(self, db, parent):
        resp = run(build_chat(None).send_message(db, user=parent, message="hi"))
        assert resp.response == chat_usecase.NO_PROVIDER_REPLY

    def test_provider_error_fallback(self, db, parent):
        resp = run(build_chat(FakeProvider(fail_chat=True)).send_message(db, user=parent, message="hi"))
        assert resp.response == chat_usecase.PROVIDER_ERROR_REPLY

    def test_empty_reply_fallback(self, db, parent):
        resp = run(build_chat(FakeProvider(reply="")).send_message(db, user=parent, message="hi"))
        assert resp.response == chat_usecase.EMPTY_REPLY

    def test_expert_suggestions_attached(self, db, parent, sleep_expert):
        uc = build_chat(FakeProvider())
        resp = run(uc.send_message(db, user=parent, message="My baby will not sleep"))
        assert [e.name for e in resp.expert_suggestions] == ["Sally"]
        assert resp.expert_suggestions[0].similarity_score == pytest.approx(1.0)

        msgs = uc.get_messages(db, user=parent, session_id=resp.session_id)
        assert msgs[1].metadata["expert_suggestions"][0]["id"] == sleep_expert.id
        assert "expert_suggestions" not in msgs[0].metadata

    def test_summary_refreshed_every_ten_messages(self, db, parent):
        provider = FakeProvider(reply="Short answer.")
        uc = build_chat(provider)
        first = run(uc.send_message(db, user=parent, message="turn 1"))
        for i in range(2, 5):
            run(uc.send_message(db, user=parent, message=f"turn {i}", session_id=first.session_id))
        session = db.get(models.ChatSession, first.session_id)
        assert session.summary is None

        run(uc.send_message(db, user=parent, message="turn 5", session_id=first.session_id))
        db.refresh(session)
        assert session.summary == "Short answer."
        # 5 轮对话 + 1 次摘要
        assert len(provider.chat_calls) == 6
        assert provider.chat_calls[-1]["max_tokens"] == 150

    def test_summary_failure_does_not_break_turn(self, db, parent):
        uc = build_chat(FakeProvider(fail_chat=True))
        first = run(uc.send_message(db, user=parent, message="turn 1"))
        for i in range(2, 6):
            resp = run(uc.send_message(db, user=parent, message=f"turn {i}", session_id=first.session_id))
            assert resp.response == chat_usecase.PROVIDER_ERROR_REPLY
        session = db.get(models.ChatSession, first.session_id)
        db.refresh(session)
        assert session.summary is None
        assert len(uc.get_messages(db, user=parent, session_id=first.session_id)) == 10


class TestSessionHistory:
    """Listing, active session, deletion and summarized sessions."""

    def _session(self, db, user, *, last=None, summary=None, child_id=None, active=True):
        s = models.ChatSession(
            user_id=user.id,
            child_id=child_id,
            title="t",
            summary=summary,
            is_active=active,
            last_message_at=last,
        )
        db.add(s)
        db.commit()
        return s

    def test_list_sessions_recent_first_nulls_last(self, db, parent):
        never = self._session(db, parent)
        old = self._session(db, parent, last=100)
        new = self._session(db, parent, last=200)

        ids = [s.id for s in build_chat(None).list_sessions(db, user=parent)]
        assert ids == [new.id, old.id, never.id]

    def test_active_session(self, db, parent):
        uc = build_chat(None)
        assert uc.get_active_session(db, user=parent) is None
        self._session(db, parent, active=False)
        active = self._session(db, parent)
        assert uc.get_active_session(db, user=parent).id == active.id

    def test_delete_session_removes_messages(self, db, parent):
        uc = build_chat(FakeProvider())
        resp = run(uc.send_message(db, user=parent, message="hi"))
        uc.delete_session(db, user=parent, session_id=resp.session_id)
        assert db.get(models.ChatSession, resp.session_id) is None
        assert db.query(models.Message).filter_by(session_id=resp.session_id).count() == 0

    def test_delete_foreign_session(self, db, parent, make_profile):
        other = make_profile()
        s = self._session(db, other)
        with pytest.raises(ForbiddenError):
            build_chat(None).delete_session(db, user=parent, session_id=s.id)

    def test_summarized_sessions(self, db, parent):
        self._session(db, parent, last=10)
        with_summary = self._session(db, parent, last=20, summary="talked about naps")
        out = build_chat(None).list_summarized_sessions(db, user=parent)
        assert [s.id for s in out] == [with_summary.id]


class TestChatContext:
    """Context snapshot and the enhanced context used for prompting."""

    def test_context_without_child_uses_unassigned_session(self, db, parent, kid):
        uc = build_chat(FakeProvider())
        run(uc.send_message(db, user=parent, message="about Amy", child_id=kid.id))
        general = run(uc.send_message(db, user=parent, message="general question"))

        out = ChatContextService().get_chat_context(db, parent_id=parent.id)
        assert out.child_profile is None
        assert out.session_id == general.session_id
        assert [m.content for m in out.recent_messages][0] == "general question"

    def test_context_for_child(self, db, parent, kid):
        uc = build_chat(FakeProvider())
        resp = run(uc.send_message(db, user=parent, message="about Amy", child_id=kid.id))

        out = ChatContextService().get_chat_context(db, parent_id=parent.id, child_id=kid.id, limit=1)
        assert out.child_profile.first_name == "Amy"
        assert out.session_id == resp.session_id
        assert len(out.recent_messages) == 1
        assert out.recent_messages[0].role == "assistant"

    def test_context_foreign_child(self, db, parent, make_profile):
        other = make_profile()
        foreign = models.Kid(parent_id=other.id, first_name="Zed")
        db.add(foreign)
        db.commit()
        with pytest.raises(NotFoundError):
            ChatContextService().get_chat_context(db, parent_id=parent.id, child_id=foreign.id)

    def test_context_empty(self, db, parent):
        out = ChatContextService().get_chat_context(db, parent_id=parent.id)
        assert out.session_id is None
        assert out.session_summary == ""
        assert out.recent_messages == []

    def test_enhanced_context_history(self, db, parent, kid):
        now = int(time.time())
        recent = models.ChatSession(user_id=parent.id, title="r", summary="recent", last_message_at=now, is_active=True)
        stale_same_child = models.ChatSession(
            user_id=parent.id, child_id=kid.id, title="s", summary="old", last_message_at=now - 30 * 86400, is_active=True
        )
        stale_other = models.ChatSession(
            user_id=parent.id, title="o", summary="older", last_message_at=now - 30 * 86400, is_active=True
        )
        db.add_all([recent, stale_same_child, stale_other])
        db.commit()

        ctx = ChatContextService().build_enhanced_context(db, user=parent, child_id=kid.id, session_id=None)
        assert [s.summary for s in ctx.session_history] == ["recent", "old"]
        assert ctx.current_child.id == kid.id

        ctx = ChatContextService().build_enhanced_context(db, user=parent, child_id=None, session_id=recent.id)
        assert ctx.session_history == []
        assert ctx.current_session_summary == "recent"


class TestSessionSummary:
    """Explicit summary refresh."""

    def test_missing_session(self, db):
        with pytest.raises(NotFoundError):
            run(SessionSummaryService(make_selector(FakeProvider())).update_session_summary(db, session_id=1))

    def test_foreign_session_is_forbidden(self, db, parent, make_profile):
        provider = FakeProvider()
        s = models.ChatSession(user_id=parent.id, title="t", is_active=True)
        db.add(s)
        db.commit()
        stranger = make_profile(first_name="Sam")
        with pytest.raises(ForbiddenError) as exc:
            run(SessionSummaryService(make_selector(provider)).update_session_summary(db, session_id=s.id, user=stranger))
        assert exc.value.code == "SESSION_FORBIDDEN"
        assert provider.chat_calls == []
        assert db.get(models.ChatSession, s.id).summary is None

    def test_missing_session_for_user(self, db, parent):
        with pytest.raises(NotFoundError) as exc:
            run(SessionSummaryService(make_selector(FakeProvider())).update_session_summary(db, session_id=424242, user=parent))
        assert exc.value.code == "SESSION_NOT_FOUND"

    def test_no_provider(self, db, parent):
        s = models.ChatSession(user_id=parent.id, title="t", is_active=True)
        db.add(s)
        db.commit()
        with pytest.raises(UpstreamError) as exc:
            run(SessionSummaryService(make_selector(None)).update_session_summary(db, session_id=s.id))
        assert exc.value.code == "SUMMARY_FAILED"

    def test_summary_includes_existing_and_messages(self, db, parent):
        provider = FakeProvider(reply="New summary.")
        uc = build_chat(provider)
        resp = run(uc.send_message(db, user=parent, message="naps are short"))
        session = db.get(models.ChatSession, resp.session_id)
        session.summary = "Earlier summary."
        db.commit()

        out = run(SessionSummaryService(make_selector(provider)).update_session_summary(db, session_id=session.id))
        assert out.summary == "New summary."
        assert out.messages_processed == 2
        prompt = provider.chat_calls[-1]["messages"][1]["content"]
        assert "Earlier summary." in prompt
        assert "user: naps are short" in prompt


class TestChatApi:
    """Chat router with the usecase swapped for a fake-backed one."""

    @pytest.fixture
    def fake_chat(self):
        provider = FakeProvider(reply="api reply")
        uc = build_chat(provider)
        app.dependency_overrides[get_chat_usecase] = lambda: uc
        app.dependency_overrides[get_summary_service] = lambda: SessionSummaryService(make_selector(provider))
        return uc

    def test_send_and_read_back(self, client, fake_chat, parent, auth_headers):
        headers = auth_headers(parent)
        resp = client.post("/chat/messages", json={"message": "hello"}, headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["response"] == "api reply"

        sid = body["session_id"]
        msgs = client.get(f"/chat/sessions/{sid}/messages", headers=headers).json()
        assert [m["role"] for m in msgs] == ["user", "assistant"]

        sessions = client.get("/chat/sessions", headers=headers).json()
        assert [s["id"] for s in sessions] == [sid]
        assert client.get("/chat/sessions/active", headers=headers).json()["id"] == sid

        ctx = client.get("/chat/context", headers=headers).json()
        assert ctx["session_id"] == sid

        summary = client.post(f"/chat/sessions/{sid}/summary", headers=headers).json()
        assert summary["summary"] == "api reply"
        summarized = client.get("/chat/sessions/summarized", headers=headers).json()
        assert [s["id"] for s in summarized] == [sid]

        assert client.delete(f"/chat/sessions/{sid}", headers=headers).status_code == 200
        assert client.get("/chat/sessions", headers=headers).json() == []

    def test_empty_message_rejected(self, client, fake_chat, parent, auth_headers):
        resp = client.post("/chat/messages", json={"message": ""}, headers=auth_headers(parent))
        assert resp.status_code == 422

    def test_foreign_session_messages(self, client, fake_chat, parent, make_profile, auth_headers):
        other = make_profile()
        sid = client.post("/chat/messages", json={"message": "mine"}, headers=auth_headers(other)).json()["session_id"]
        resp = client.get(f"/chat/sessions/{sid}/messages", headers=auth_headers(parent))
        assert resp.status_code == 403
        assert resp.json()["code"] == "SESSION_FORBIDDEN"

    def test_foreign_session_summary(self, client, fake_chat, parent, make_profile, auth_headers):
        other = make_profile()
        sid = client.post("/chat/messages", json={"message": "mine"}, headers=auth_headers(other)).json()["session_id"]
        resp = client.post(f"/chat/sessions/{sid}/summary", headers=auth_headers(parent))
        assert resp.status_code == 403
        assert resp.json()["code"] == "SESSION_FORBIDDEN"

        resp = client.post("/chat/sessions/987654/summary", headers=auth_headers(parent))
        assert resp.status_code == 404
        assert resp.json()["code"] == "SESSION_NOT_FOUND"
