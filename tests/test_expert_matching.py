"""Tests for expert matching: pure helpers and the embedding-backed usecase."""

import asyncio

import pytest

from app.application.experts.usecase import ExpertsUsecase
from app.common.errors import NotFoundError, UpstreamError
from app.domain import models
from app.services import expert_matching
from conftest import FakeProvider, make_selector


def run(coro):
    return asyncio.run(coro)


class TestBrowsingQuery:
    """Browse phrases short-circuit the semantic search."""

    @pytest.mark.parametrize(
        "message",
        ["Can you show me experts?", "experts", "  EXPERTS ", "Who are your experts", "expert list please"],
    )
    def test_browsing(self, message):
        assert expert_matching.is_browsing_query(message)

    @pytest.mark.parametrize("message", ["My baby won't sleep", "expert advice on feeding", ""])
    def test_not_browsing(self, message):
        assert not expert_matching.is_browsing_query(message)


class TestSimilarity:
    """Cosine similarity and ranking."""

    def test_cosine(self):
        assert expert_matching.cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert expert_matching.cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert expert_matching.cosine_similarity([1.0, 1.0], [1.0, 0.0]) == pytest.approx(0.7071, abs=1e-4)

    def test_cosine_degenerate(self):
        assert expert_matching.cosine_similarity([], [1.0]) == 0.0
        assert expert_matching.cosine_similarity([1.0, 0.0], [1.0]) == 0.0
        assert expert_matching.cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_rank_filters_sorts_and_limits(self):
        candidates = [
            ("a", [1.0, 0.0]),
            ("b", [0.0, 1.0]),
            ("c", [1.0, 1.0]),
            ("d", [0.9, 0.1]),
        ]
        ranked = expert_matching.rank_by_similarity([1.0, 0.0], candidates, threshold=0.5, count=2)
        assert [item for item, _ in ranked] == ["a", "d"]

        ranked = expert_matching.rank_by_similarity([1.0, 0.0], candidates, threshold=0.5, count=10)
        assert [item for item, _ in ranked] == ["a", "d", "c"]


class TestSuggestionFormat:
    """Shape of an expert suggestion."""

    def test_defaults(self):
        expert = models.Profile(id=7, email="e@example.com", first_name=None, expert_specialties=[])
        item = expert_matching.format_expert_suggestion(expert)
        assert item["name"] == "Expert"
        assert item["specialty"] == "General"
        assert item["bio"] == expert_matching.DEFAULT_BIO
        assert item["rating"] == 5.0
        assert item["total_reviews"] == 0
        assert item["consultation_fee"] == 10000
        assert "similarity_score" not in item

    def test_browsing_defaults(self):
        expert = models.Profile(id=7, email="e@example.com", first_name="Ann", expert_specialties=[])
        item = expert_matching.format_expert_suggestion(expert, browsing=True)
        assert item["specialty"] == "General Parenting"
        assert item["bio"] == expert_matching.DEFAULT_BROWSE_BIO

    def test_fee_in_cents(self):
        assert expert_matching.consultation_fee_cents(75.5) == 7550
        assert expert_matching.consultation_fee_cents(None) == 10000

    def test_profile_text(self):
        expert = models.Profile(
            id=1,
            email="e@example.com",
            first_name="Ann",
            expert_specialties=["Sleep", "Newborns"],
            expert_bio="Sleep coach",
            expert_credentials=[],
            expert_languages=["English"],
            expert_experience_years=5,
        )
        text = expert_matching.build_profile_text(expert)
        assert text.splitlines() == [
            "Name: Ann",
            "Specialties: Sleep, Newborns",
            "Bio: Sleep coach",
            "Experience: 5 years",
            "Languages: English",
        ]


@pytest.fixture
def experts(make_profile):
    sleep = make_profile(
        "expert",
        first_name="Sally",
        expert_verified=True,
        expert_specialties=["Sleep"],
        expert_bio="Helps families with sleep routines",
        expert_consultation_rate=80.0,
    )
    feeding = make_profile(
        "expert",
        first_name="Fiona",
        expert_verified=True,
        expert_specialties=["Feeding"],
        expert_bio="Feeding and nutrition specialist",
    )
    unverified = make_profile(
        "expert",
        first_name="Uma",
        expert_verified=False,
        expert_specialties=["Sleep"],
    )
    return {"sleep": sleep, "feeding": feeding, "unverified": unverified}


class TestExpertsUsecase:
    """Directory listing, embedding generation and semantic matching."""

    def test_list_only_verified_visible(self, db, experts):
        uc = ExpertsUsecase(make_selector(FakeProvider()))
        names = [e.first_name for e in uc.list_experts(db)]
        assert names == ["Fiona", "Sally"]

    def test_get_expert_not_found(self, db, experts, make_profile):
        parent = make_profile()
        uc = ExpertsUsecase(make_selector(FakeProvider()))
        with pytest.raises(NotFoundError):
            uc.get_expert(db, expert_id=parent.id)
        assert uc.get_expert(db, expert_id=experts["sleep"].id).first_name == "Sally"

    def test_generate_embeddings_skips_existing(self, db, experts):
        provider = FakeProvider()
        uc = ExpertsUsecase(make_selector(provider))

        first = run(uc.generate_expert_embeddings(db))
        assert (first.total, first.generated, first.skipped, first.failed) == (2, 2, 0, 0)

        second = run(uc.generate_expert_embeddings(db))
        assert (second.generated, second.skipped) == (0, 2)

        again = run(uc.generate_expert_embeddings(db, regenerate_all=True))
        assert again.generated == 2

    def test_generate_embeddings_counts_failures(self, db, experts):
        uc = ExpertsUsecase(make_selector(FakeProvider(fail_embed=True)))
        result = run(uc.generate_expert_embeddings(db))
        assert result.failed == 2
        assert result.generated == 0

    def test_generate_embeddings_without_provider(self, db, experts):
        uc = ExpertsUsecase(make_selector(None))
        with pytest.raises(UpstreamError) as exc:
            run(uc.generate_expert_embeddings(db))
        assert exc.value.code == "EMBEDDING_PROVIDER_MISSING"
        assert exc.value.status_code == 502

    def test_semantic_match(self, db, experts):
        uc = ExpertsUsecase(make_selector(FakeProvider()))
        run(uc.generate_expert_embeddings(db))

        matches = run(uc.find_matching_experts(db, "My toddler will not sleep at night"))
        assert [m["name"] for m in matches] == ["Sally"]
        assert matches[0]["similarity_score"] == pytest.approx(1.0)
        assert matches[0]["consultation_fee"] == 8000

    def test_semantic_match_below_threshold(self, db, experts):
        uc = ExpertsUsecase(make_selector(FakeProvider()))
        run(uc.generate_expert_embeddings(db))
        assert run(uc.find_matching_experts(db, "How do I handle a tantrum?")) == []

    def test_browsing_lists_available(self, db, experts):
        experts["feeding"].expert_accepts_new_clients = False
        db.commit()

        uc = ExpertsUsecase(make_selector(FakeProvider()))
        matches = run(uc.find_matching_experts(db, "show me experts"))
        assert [m["name"] for m in matches] == ["Sally"]
        assert "similarity_score" not in matches[0]

    def test_no_provider_means_no_matches(self, db, experts):
        uc = ExpertsUsecase(make_selector(None))
        assert run(uc.find_matching_experts(db, "sleep help")) == []

    def test_embedding_error_means_no_matches(self, db, experts):
        uc = ExpertsUsecase(make_selector(FakeProvider(fail_embed=True)))
        assert run(uc.find_matching_experts(db, "sleep help")) == []
