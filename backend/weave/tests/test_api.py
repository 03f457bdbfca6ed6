"""
Test: Scopes API
================

HTTP surface over WeaveService, backed by the in-memory graph.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

import main
from api.scopes import get_weave_service
from models.domain import Phase

from factories import SCOPE, add_respondent, add_story, add_tension, candidate_payload


@pytest.fixture
def client(service):
    main.app.dependency_overrides[get_weave_service] = lambda: service
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


class TestCommands:

    def test_submit_signal_creates(self, client, store):
        response = client.post(
            f"/api/scopes/{SCOPE}/signals",
            json=candidate_payload("Food pantry open", "https://a.example.org/1"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body['outcome']['kind'] == 'created'
        assert body['deferred'] is False
        assert len(store.signals) == 1

    def test_submit_without_embedding_is_deferred(self, client, store):
        response = client.post(
            f"/api/scopes/{SCOPE}/signals",
            json={'type': 'notice', 'title': 'Boil water notice', 'source_url': 'https://city.example/n'},
        )

        assert response.status_code == 200
        assert response.json() == {'outcome': None, 'deferred': True, 'rejected': False}
        assert len(store.deferred[SCOPE]) == 1

    def test_malformed_signal_is_422(self, client):
        response = client.post(f"/api/scopes/{SCOPE}/signals", json={'title': 'no type'})
        assert response.status_code == 422

    def test_run_bootstrap(self, client):
        response = client.post(f"/api/scopes/{SCOPE}/phases/bootstrap")

        assert response.status_code == 200
        assert response.json()['status'] == 'bootstrap_complete'

    def test_full_run_with_candidates(self, client, store):
        tension = asyncio.run(add_tension(store, "Library branch closure"))
        candidates = [
            candidate_payload("Pop-up library", "https://a.example.org/1", "aid", 0, [(tension.id, 0.8)]),
            candidate_payload("Read-in protest", "https://b.example.org/1", "gathering", 1, [(tension.id, 0.6)]),
        ]

        response = client.post(f"/api/scopes/{SCOPE}/phases/full_run", json=candidates)

        assert response.status_code == 200
        body = response.json()
        assert body['status'] == 'complete'
        assert body['details']['materialize']['stories_created'] == 1

        stories = client.get(f"/api/scopes/{SCOPE}/stories").json()
        assert len(stories) == 1
        assert stories[0]['signal_count'] == 2

    def test_unknown_phase_is_400(self, client):
        assert client.post(f"/api/scopes/{SCOPE}/phases/teleport").status_code == 400

    def test_phase_not_enabled_is_409(self, client):
        assert client.post(f"/api/scopes/{SCOPE}/phases/synthesis").status_code == 409

    def test_busy_scope_is_409(self, client, store):
        asyncio.run(store.set_scope_status(SCOPE, Phase.SCRAPE.running_status))

        response = client.post(f"/api/scopes/{SCOPE}/phases/bootstrap")

        assert response.status_code == 409
        assert "busy" in response.json()['detail']

    def test_reset_and_stop(self, client, store):
        assert client.post("/api/scopes/nowhere/stop").status_code == 404

        asyncio.run(store.set_scope_status(SCOPE, Phase.SYNTHESIS.running_status))
        stopped = client.post(f"/api/scopes/{SCOPE}/stop").json()
        assert stopped['stop_requested'] is True

        reset = client.post(f"/api/scopes/{SCOPE}/reset").json()
        assert reset['status'] == 'idle'
        assert reset['stop_requested'] is False
        assert reset['phase_enabled']['bootstrap'] is True


class TestQueries:

    def test_scope_status(self, client):
        body = client.get(f"/api/scopes/{SCOPE}").json()

        assert body['status'] == 'idle'
        assert body['phase_enabled']['full_run'] is True
        assert body['phase_enabled']['scrape'] is False

    def test_story_detail(self, client, store):
        tension = asyncio.run(add_tension(store, "Library branch closure"))
        signal = asyncio.run(add_respondent(store, tension, "https://a.example.org/1"))
        story = asyncio.run(add_story(store, tension, [signal.id]))

        body = client.get(f"/api/scopes/stories/{story.id}").json()

        assert body['id'] == story.id
        assert body['tension_ids'] == [tension.id]
        assert [s['id'] for s in body['signals']] == [signal.id]
        assert client.get("/api/scopes/stories/st_missing1").status_code == 404

    def test_findings_and_dismiss(self, client, store, service):
        tension = asyncio.run(add_tension(store, "Library branch closure"))
        asyncio.run(add_story(store, tension))
        asyncio.run(service.supervisor.sweep(SCOPE))

        findings = client.get(f"/api/scopes/{SCOPE}/findings", params={'status': 'open'}).json()
        assert [f['finding_type'] for f in findings] == ['empty_story']

        dismissed = client.post(f"/api/scopes/findings/{findings[0]['id']}/dismiss").json()
        assert dismissed['status'] == 'dismissed'
        assert client.get(f"/api/scopes/{SCOPE}/findings", params={'status': 'open'}).json() == []

        assert client.get(f"/api/scopes/{SCOPE}/findings", params={'status': 'closed'}).status_code == 400
        assert client.post("/api/scopes/findings/fd_missing1/dismiss").status_code == 404

    def test_budget(self, client):
        assert client.get(f"/api/scopes/{SCOPE}/budget").status_code == 404

        client.post(f"/api/scopes/{SCOPE}/phases/full_run")
        body = client.get(f"/api/scopes/{SCOPE}/budget").json()

        assert body['run_seq'] == 1
        assert body['unlimited'] is True
        assert body['remaining_cents'] is None

    def test_health(self, client):
        assert client.get("/health").json() == {'status': 'ok'}
