"""
Integration tests: Neo4jGraphStore against a real Neo4j.

Run with:
    TEST_NEO4J_URI=bolt://localhost:7688 pytest -m integration
"""
import asyncio
from datetime import timedelta

import pytest

from models.domain import (
    CuriosityOutcome,
    CuriosityState,
    Evidence,
    Finding,
    FindingStatus,
    FindingType,
    IDLE,
    Phase,
    SignalType,
)
from utils.datetime_utils import utc_now
from utils.id_generator import generate_finding_id
from weave import WeaveService
from weave.budget import BudgetLedger
from weave.types import OutcomeKind

from factories import (
    SCOPE,
    add_respondent,
    add_signal,
    add_story,
    add_tension,
    candidate_payload,
    make_candidate,
    vector_with_similarity,
)

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


def _finding(target_id, finding_type=FindingType.EMPTY_STORY):
    return Finding(
        id=generate_finding_id(),
        scope=SCOPE,
        finding_type=finding_type,
        target_id=target_id,
        description="Story has no signals",
    )


class TestScopeState:

    async def test_transition_is_compare_and_set(self, graph_store):
        running = Phase.BOOTSTRAP.running_status

        ok, before = await graph_store.transition_scope_status(SCOPE, [IDLE], running)
        assert ok and before == IDLE

        ok, before = await graph_store.transition_scope_status(SCOPE, [IDLE], running)
        assert not ok
        assert before == running
        assert (await graph_store.get_scope(SCOPE)).status == running

    async def test_run_seq_and_stop_flag(self, graph_store):
        assert (await graph_store.ensure_scope(SCOPE)).run_seq == 0
        assert await graph_store.increment_run_seq(SCOPE) == 1
        assert await graph_store.increment_run_seq(SCOPE) == 2

        await graph_store.set_stop_requested(SCOPE, True)
        assert (await graph_store.get_scope(SCOPE)).stop_requested is True

    async def test_unknown_scope(self, graph_store):
        assert await graph_store.get_scope("nowhere") is None


class TestSignals:

    async def test_similarity_is_per_scope_and_type(self, graph_store):
        near = await add_signal(graph_store, "https://a.example.org/1", SignalType.AID, 0)
        await add_signal(graph_store, "https://b.example.org/1", SignalType.GATHERING, 0)
        await add_signal(graph_store, "https://c.example.org/1", SignalType.AID, 0, scope="berkeley")

        matches = await graph_store.find_similar_signals(
            SCOPE, SignalType.AID, vector_with_similarity(0.9),
        )

        assert [s.id for s, _ in matches] == [near.id]
        assert matches[0][1] == pytest.approx(0.9)

    async def test_evidence_is_once_per_url(self, graph_store):
        signal = await add_signal(graph_store, "https://a.example.org/1")
        evidence = Evidence(source_url="https://b.example.org/1", source_domain="b.example.org", similarity=0.88)

        assert await graph_store.add_evidence(signal.id, evidence) is True
        assert await graph_store.add_evidence(signal.id, evidence) is False
        assert [e.source_url for e in await graph_store.list_evidence(signal.id)] == ["https://b.example.org/1"]

    async def test_update_confidence(self, graph_store):
        signal = await add_signal(graph_store, "https://a.example.org/1")

        await graph_store.update_signal_confidence(signal.id, 0.7, 1, 2)

        updated = await graph_store.get_signal(signal.id)
        assert updated.confidence == pytest.approx(0.7)
        assert updated.corroboration_count == 1
        assert updated.source_diversity == 2


class TestTensionsAndStories:

    async def test_responds_to_is_idempotent(self, graph_store):
        tension = await add_tension(graph_store, "Library branch closure")
        signal = await add_signal(graph_store, "https://a.example.org/1")

        assert await graph_store.add_responds_to(signal.id, tension.id, 0.8, "pop-up") is True
        assert await graph_store.add_responds_to(signal.id, tension.id, 0.3, "again") is False

        respondents = await graph_store.get_respondents(tension.id)
        assert [(r.signal.id, r.strength) for r in respondents] == [(signal.id, 0.8)]

    async def test_concurrent_responds_to_creates_one_edge(self, graph_store):
        tension = await add_tension(graph_store, "Library branch closure")
        signal = await add_signal(graph_store, "https://a.example.org/1")

        results = await asyncio.gather(*(
            graph_store.add_responds_to(signal.id, tension.id, 0.8, f"writer {i}") for i in range(5)
        ))

        assert sorted(results) == [False, False, False, False, True]
        assert len(await graph_store.get_respondents(tension.id)) == 1

    async def test_one_story_per_tension(self, graph_store):
        tension = await add_tension(graph_store, "Library branch closure")
        s1 = await add_respondent(graph_store, tension, "https://a.example.org/1")
        s2 = await add_respondent(graph_store, tension, "https://b.example.org/1", SignalType.GATHERING, 1)

        first = await add_story(graph_store, tension, [s1.id, s2.id])
        second = await add_story(graph_store, tension, [s1.id])

        assert second.id == first.id
        assert len(await graph_store.list_stories(SCOPE)) == 1
        assert await graph_store.get_story_signal_sets(SCOPE) == {first.id: {s1.id, s2.id}}
        assert await graph_store.list_storyless_tensions(SCOPE) == []

    async def test_link_signals_counts_new_memberships(self, graph_store):
        tension = await add_tension(graph_store, "Library branch closure")
        s1 = await add_respondent(graph_store, tension, "https://a.example.org/1")
        s2 = await add_signal(graph_store, "https://b.example.org/1", SignalType.GATHERING, 1)
        story = await add_story(graph_store, tension, [s1.id], run_seq=1)

        assert await graph_store.link_signals(story.id, [s1.id, s2.id], run_seq=2) == 1
        assert await graph_store.link_signals(story.id, [s2.id], run_seq=3) == 0

        memberships = await graph_store.get_memberships(story.id)
        assert [(m.signal_id, m.run_seq) for m in memberships] == [(s1.id, 1), (s2.id, 2)]

    async def test_concurrent_links_count_each_membership_once(self, graph_store):
        tension = await add_tension(graph_store, "Library branch closure")
        s1 = await add_respondent(graph_store, tension, "https://a.example.org/1")
        s2 = await add_signal(graph_store, "https://b.example.org/1", SignalType.GATHERING, 1)
        s3 = await add_signal(graph_store, "https://c.example.org/1", SignalType.AID, 2)
        story = await add_story(graph_store, tension, [s1.id], run_seq=1)

        linked = await asyncio.gather(*(
            graph_store.link_signals(story.id, [s2.id, s3.id], run_seq=2) for _ in range(4)
        ))

        assert sum(linked) == 2
        assert len(await graph_store.get_memberships(story.id)) == 3

    async def test_concurrent_absorb_picks_one_story(self, graph_store):
        first = await add_tension(graph_store, "Library branch closure", tension_id="tn_library1")
        second = await add_tension(graph_store, "Library card fees", tension_id="tn_library3")
        other = await add_tension(graph_store, "Reading room hours cut", tension_id="tn_library2")
        story_a = await add_story(graph_store, first)
        story_b = await add_story(graph_store, second)

        results = await asyncio.gather(
            graph_store.absorb_tension(other.id, story_a.id),
            graph_store.absorb_tension(other.id, story_b.id),
            graph_store.absorb_tension(other.id, story_a.id),
        )

        assert results.count(True) == 1
        absorbed = (
            await graph_store.get_story_tension_ids(story_a.id)
            + await graph_store.get_story_tension_ids(story_b.id)
        )
        assert absorbed.count(other.id) == 1

    async def test_absorb_tension(self, graph_store):
        primary = await add_tension(graph_store, "Library branch closure", tension_id="tn_library1")
        other = await add_tension(graph_store, "Reading room hours cut", tension_id="tn_library2")
        story = await add_story(graph_store, primary)

        assert await graph_store.absorb_tension(other.id, story.id) is True
        assert await graph_store.absorb_tension(other.id, story.id) is False
        assert await graph_store.get_story_tension_ids(story.id) == [primary.id, other.id]
        assert await graph_store.list_storyless_tensions(SCOPE) == []

    async def test_apply_synthesis(self, graph_store):
        tension = await add_tension(graph_store, "Library branch closure")
        story = await add_story(graph_store, tension, synthesis_pending=True)

        assert await graph_store.apply_synthesis(story.id, "Branch closes.", "Residents rally.") is True
        synthesized = await graph_store.get_story(story.id)
        assert synthesized.lede == "Branch closes."
        assert synthesized.synthesis_pending is False
        assert await graph_store.apply_synthesis("st_missing1", "x", "y") is False


class TestBookkeeping:

    async def test_curiosity_outcome_roundtrip(self, graph_store):
        outcome = CuriosityOutcome(
            signal_id="sg_anchor01", tension_id="tn_library1", scope=SCOPE,
            state=CuriosityState.FAILED, attempt_count=2, last_error="timeout", last_run_seq=2,
        )
        await graph_store.save_curiosity_outcome(outcome)

        loaded = await graph_store.get_curiosity_outcome("sg_anchor01", "tn_library1")
        assert loaded.state is CuriosityState.FAILED
        assert loaded.attempt_count == 2
        assert await graph_store.list_curiosity_outcomes(SCOPE, [CuriosityState.DONE]) == []

    async def test_deferred_candidates_are_taken_once(self, graph_store):
        payload = candidate_payload("Food pantry open", "https://a.example.org/1")
        await graph_store.defer_candidate(SCOPE, payload, "embedding unavailable")

        assert await graph_store.take_deferred_candidates(SCOPE) == [payload]
        assert await graph_store.take_deferred_candidates(SCOPE) == []

    async def test_open_findings_are_not_duplicated(self, graph_store):
        first, created = await graph_store.create_finding_if_new(_finding("st_library1"))
        again, created_again = await graph_store.create_finding_if_new(_finding("st_library1"))

        assert created and not created_again
        assert again.id == first.id

        await graph_store.set_finding_status(first.id, FindingStatus.DISMISSED)
        _, reraised = await graph_store.create_finding_if_new(_finding("st_library1"))
        assert reraised
        assert len(await graph_store.list_findings(SCOPE, FindingStatus.OPEN)) == 1

    async def test_stale_findings_resolve(self, graph_store):
        finding = _finding("st_library1")
        finding.created_at = utc_now() - timedelta(days=30)
        await graph_store.create_finding_if_new(finding)

        assert await graph_store.resolve_stale_findings(SCOPE, utc_now() - timedelta(days=7)) == 1
        assert (await graph_store.get_finding(finding.id)).status is FindingStatus.RESOLVED

    async def test_latest_budget_ledger(self, graph_store):
        await graph_store.save_budget_ledger(BudgetLedger(scope=SCOPE, run_seq=1, limit_cents=100, spent_cents=40))
        await graph_store.save_budget_ledger(BudgetLedger(scope=SCOPE, run_seq=2, limit_cents=100, spent_cents=10))

        assert (await graph_store.get_budget_ledger(SCOPE)).run_seq == 2
        assert (await graph_store.get_budget_ledger(SCOPE, run_seq=1)).spent_cents == 40


class TestWeaveOnNeo4j:

    async def test_rescrape_is_deduplicated(self, graph_store):
        service = WeaveService(graph_store)
        candidate = make_candidate("Food pantry open", "https://a.example.org/1")

        created = await service.reconcile(candidate)
        again = await service.reconcile(make_candidate("Food pantry open", "https://a.example.org/1"))

        assert created.kind is OutcomeKind.CREATED
        assert again.kind is OutcomeKind.DEDUPLICATED
        assert again.into == created.signal_id

    async def test_full_run(self, graph_store):
        service = WeaveService(graph_store)
        tension = await add_tension(graph_store, "Library branch closure")
        candidates = [
            candidate_payload("Pop-up library", "https://a.example.org/1", "aid", 0, [(tension.id, 0.8)]),
            candidate_payload("Read-in protest", "https://b.example.org/1", "gathering", 1, [(tension.id, 0.6)]),
        ]

        report = await service.run_phase(SCOPE, Phase.FULL_RUN, candidates=candidates)

        assert report.status == 'complete'
        assert report.details['materialize']['stories_created'] == 1
        stories = await service.list_stories(SCOPE)
        assert [s.signal_count for s in stories] == [2]
        assert (await graph_store.get_scope(SCOPE)).status == 'complete'
