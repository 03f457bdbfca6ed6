"""
Test: Reconciler
================

New / Duplicate / Corroboration decisions, bounded confidence and
deferral of candidates whose embedding lookup fails.
"""
from unittest.mock import AsyncMock

import pytest

from models.domain import SignalType
from weave.errors import EmbeddingUnavailableError
from weave.reconciler import Reconciler, corroborated_confidence, decide_outcome
from weave.types import OutcomeKind

from factories import SCOPE, make_candidate, unit_vector, vector_with_similarity


@pytest.fixture
def reconciler(store, params):
    return Reconciler(store, params)


# =============================================================================
# Pure decisions
# =============================================================================

class TestDecideOutcome:

    def test_no_match_is_created(self):
        assert decide_outcome("https://a.org/1", None, None, 0.85, 0.92) is OutcomeKind.CREATED

    def test_below_dedup_band_is_created(self):
        assert decide_outcome("https://a.org/1", "https://b.org/2", 0.80, 0.85, 0.92) is OutcomeKind.CREATED

    def test_high_band_same_url_is_rescrape(self):
        kind = decide_outcome("https://www.a.org/1/", "https://a.org/1", 0.97, 0.85, 0.92)
        assert kind is OutcomeKind.DEDUPLICATED

    def test_high_band_other_url_corroborates(self):
        kind = decide_outcome("https://a.org/2", "https://a.org/1", 0.95, 0.85, 0.92)
        assert kind is OutcomeKind.CORROBORATED

    def test_gray_band_breaks_tie_on_domain(self):
        assert decide_outcome("https://b.org/x", "https://a.org/x", 0.88, 0.85, 0.92) is OutcomeKind.CORROBORATED
        assert decide_outcome("https://a.org/y", "https://a.org/x", 0.88, 0.85, 0.92) is OutcomeKind.DEDUPLICATED


class TestCorroboratedConfidence:

    def test_boost_per_corroboration_and_domain(self):
        assert corroborated_confidence(0.6, 1, 2, 0.3) == pytest.approx(0.7)

    def test_boost_is_capped(self):
        assert corroborated_confidence(0.5, 10, 10, 0.3) == pytest.approx(0.8)

    def test_never_reaches_certainty(self):
        assert corroborated_confidence(0.95, 10, 10, 0.3) == pytest.approx(0.99)


# =============================================================================
# Reconcile against the store
# =============================================================================

class TestReconcile:

    @pytest.mark.asyncio
    async def test_first_signal_is_created_with_evidence(self, reconciler, store):
        outcome = await reconciler.reconcile(make_candidate("Food pantry open", "https://a.example.org/1"))

        assert outcome.kind is OutcomeKind.CREATED
        assert outcome.evidence_added
        assert len(store.signals) == 1
        evidence = await store.list_evidence(outcome.signal_id)
        assert [e.source_domain for e in evidence] == ["a.example.org"]

    @pytest.mark.asyncio
    async def test_rescrape_of_same_url_is_deduplicated(self, reconciler, store):
        first = await reconciler.reconcile(make_candidate("Food pantry open", "https://a.example.org/1"))
        again = await reconciler.reconcile(make_candidate(
            "Food pantry open today", "https://a.example.org/1", embedding=vector_with_similarity(0.97),
        ))

        assert again.kind is OutcomeKind.DEDUPLICATED
        assert again.into == first.signal_id
        assert len(store.signals) == 1
        assert (await store.get_signal(first.signal_id)).confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_other_source_corroborates_and_boosts_confidence(self, reconciler, store):
        first = await reconciler.reconcile(make_candidate("Food pantry open", "https://a.example.org/1"))
        second = await reconciler.reconcile(make_candidate(
            "Pantry opens", "https://b.example.org/2", embedding=vector_with_similarity(0.95),
        ))

        assert second.kind is OutcomeKind.CORROBORATED
        assert second.signal_id == first.signal_id
        assert second.evidence_added

        signal = await store.get_signal(first.signal_id)
        assert signal.corroboration_count == 1
        assert signal.source_diversity == 2
        assert signal.confidence == pytest.approx(0.7)
        assert signal.base_confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_gray_band_same_domain_is_duplicate(self, reconciler, store):
        await reconciler.reconcile(make_candidate("Road closed", "https://a.example.org/1"))
        outcome = await reconciler.reconcile(make_candidate(
            "Road closure", "https://a.example.org/other", embedding=vector_with_similarity(0.88),
        ))

        assert outcome.kind is OutcomeKind.DEDUPLICATED
        assert len(store.signals) == 1

    @pytest.mark.asyncio
    async def test_gray_band_other_domain_corroborates(self, reconciler, store):
        await reconciler.reconcile(make_candidate("Road closed", "https://a.example.org/1"))
        outcome = await reconciler.reconcile(make_candidate(
            "Road closure", "https://news.example/road", embedding=vector_with_similarity(0.88),
        ))

        assert outcome.kind is OutcomeKind.CORROBORATED
        assert len(store.signals) == 1

    @pytest.mark.asyncio
    async def test_similarity_only_compares_same_type(self, reconciler, store):
        await reconciler.reconcile(make_candidate("Cleanup", "https://a.example.org/1", signal_type="gathering"))
        outcome = await reconciler.reconcile(make_candidate("Cleanup", "https://b.example.org/1", signal_type="need"))

        assert outcome.kind is OutcomeKind.CREATED
        assert len(store.signals) == 2

    @pytest.mark.asyncio
    async def test_repeated_evidence_url_does_not_boost_twice(self, reconciler, store):
        first = await reconciler.reconcile(make_candidate("Shelter full", "https://a.example.org/1"))
        await reconciler.reconcile(make_candidate(
            "Shelter at capacity", "https://b.example.org/2", embedding=vector_with_similarity(0.95),
        ))
        repeat = await reconciler.reconcile(make_candidate(
            "Shelter at capacity", "https://b.example.org/2", embedding=vector_with_similarity(0.96),
        ))

        assert repeat.kind is OutcomeKind.CORROBORATED
        assert not repeat.evidence_added
        signal = await store.get_signal(first.signal_id)
        assert signal.corroboration_count == 1
        assert signal.confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_confidence_boost_is_bounded(self, reconciler, store):
        first = await reconciler.reconcile(make_candidate("Water main break", "https://src0.example/1"))
        for i in range(1, 12):
            await reconciler.reconcile(make_candidate(
                "Water main break", f"https://src{i}.example/1", embedding=vector_with_similarity(0.95),
            ))

        signal = await store.get_signal(first.signal_id)
        assert signal.corroboration_count == 11
        assert signal.confidence == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_links_responses_to_known_tensions(self, reconciler, store, tension):
        outcome = await reconciler.reconcile(make_candidate(
            "Protest at library", "https://a.example.org/1", signal_type="gathering",
            responds_to=[(tension.id, 0.8), ("tn_missing1", 0.5)],
        ))

        assert outcome.responses_linked == 1
        respondents = await store.get_respondents(tension.id)
        assert [r.signal_id for r in respondents] == [outcome.signal_id]
        assert respondents[0].strength == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_duplicate_keeps_response_edges_idempotent(self, reconciler, store, tension):
        hint = [(tension.id, 0.8)]
        await reconciler.reconcile(make_candidate("Rally", "https://a.example.org/1", responds_to=hint))
        again = await reconciler.reconcile(make_candidate("Rally", "https://a.example.org/1", responds_to=hint))

        assert again.kind is OutcomeKind.DEDUPLICATED
        assert again.responses_linked == 0
        assert len(await store.get_respondents(tension.id)) == 1

    @pytest.mark.asyncio
    async def test_missing_embedding_raises(self, reconciler):
        candidate = make_candidate("No vector", "https://a.example.org/1", embedding=[])
        with pytest.raises(EmbeddingUnavailableError):
            await reconciler.reconcile(candidate)


# =============================================================================
# Batches and deferral
# =============================================================================

class TestReconcileBatch:

    @pytest.mark.asyncio
    async def test_batch_counts_outcomes(self, reconciler):
        report = await reconciler.reconcile_batch([
            make_candidate("A", "https://a.example.org/1", index=0),
            make_candidate("B", "https://b.example.org/1", index=1),
            make_candidate("A again", "https://c.example.org/1", embedding=vector_with_similarity(0.95)),
        ], SCOPE)

        assert report.to_dict() == {
            'created': 2, 'deduplicated': 0, 'corroborated': 1, 'deferred': 0, 'rejected': 0,
        }

    @pytest.mark.asyncio
    async def test_lookup_failure_defers_candidate(self, reconciler, store):
        store.find_similar_signals = AsyncMock(side_effect=RuntimeError("vector index offline"))

        report = await reconciler.reconcile_batch([
            make_candidate("Lost cat", "https://a.example.org/cat"),
        ], SCOPE)

        assert report.deferred == 1
        assert not store.signals
        deferred = await store.take_deferred_candidates(SCOPE)
        assert deferred[0]['title'] == "Lost cat"
        assert deferred[0]['embedding'] == unit_vector(0)

    @pytest.mark.asyncio
    async def test_payload_without_embedding_is_deferred(self, reconciler, store):
        report = await reconciler.reconcile_batch([
            {'type': 'notice', 'title': 'Boil water notice', 'source_url': 'https://city.example/notice'},
        ], SCOPE)

        assert report.deferred == 1
        assert len(store.deferred[SCOPE]) == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_is_rejected(self, reconciler, store):
        report = await reconciler.reconcile_batch([
            {'title': 'No type'},
            {'type': 'rumour', 'title': 'Unknown type', 'embedding': unit_vector(0)},
        ], SCOPE)

        assert report.rejected == 2
        assert not store.signals
        assert SCOPE not in store.deferred

    @pytest.mark.asyncio
    async def test_payload_scope_is_overridden_by_batch_scope(self, reconciler, store):
        payload = make_candidate("Tree down", "https://a.example.org/tree", scope="elsewhere").to_dict()
        report = await reconciler.reconcile_batch([payload], SCOPE)

        signal = await store.get_signal(report.outcomes[0].signal_id)
        assert signal.scope == SCOPE
        assert signal.signal_type is SignalType.AID
