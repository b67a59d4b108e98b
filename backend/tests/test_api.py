"""
CARTOPS - API Route Tests

The engine dependency is overridden with one wired to the in-memory
repository and fake collaborators.
"""

import base64

import pytest
from fastapi.testclient import TestClient

from cartops.api.fulfillment import get_engine
from cartops.core.exceptions import CollaboratorError, RateLimitedError
from cartops.main import app
from cartops.models.cart import ReportedQuantity, VoiceReport
from cartops.services.fulfillment.engine import FulfillmentEngine

from fakes import FakeVision, FakeVoice


COCA = "coca-cola-normal-355-ml"


@pytest.fixture
def voice() -> FakeVoice:
    return FakeVoice(report=VoiceReport(products=[ReportedQuantity(product_id=COCA, quantity_mentioned=7)]))


@pytest.fixture
def engine(repository, clock, voice) -> FulfillmentEngine:
    return FulfillmentEngine(repository=repository, voice=voice, vision=FakeVision(), clock=clock)


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestCartRoutes:

    def test_unknown_cart(self, client):
        assert client.get("/carts/cart-missing").status_code == 404

    def test_phase_summary(self, client):
        response = client.get("/carts/cart-soda/phase")

        assert response.status_code == 200
        body = response.json()
        assert body["phase"] == "cleaning"
        assert body["status"] == "Cleaning"
        assert body["ledger_is_clear"] is True
        assert body["expected_total"] == "19.00"

    def test_complete_phase(self, client, repository):
        response = client.post("/carts/cart-soda/phase/complete")

        assert response.status_code == 200
        assert response.json()["phase"] == "finished"
        assert response.json()["status"] == "PickAndPack"
        assert repository.write_log == [{"cart_id": "cart-soda", "status": "PickAndPack"}]


class TestLedgerRoutes:

    def test_reconcile(self, client, voice):
        response = client.post("/carts/cart-soda/cleaning/reconcile", json={"transcript": "siete coca colas"})

        assert response.status_code == 200
        ledger = response.json()["ledger"]
        assert ledger[0]["product_id"] == COCA
        assert ledger[0]["missing"] == 3
        assert ledger[0]["found"] == 7
        assert voice.transcripts == ["siete coca colas"]

    def test_empty_transcript_rejected(self, client):
        response = client.post("/carts/cart-soda/cleaning/reconcile", json={"transcript": ""})
        assert response.status_code == 422

    def test_collaborator_failure_is_502(self, client, voice, repository):
        voice.error = CollaboratorError("Gemini returned HTTP 500")

        response = client.post("/carts/cart-soda/cleaning/reconcile", json={"transcript": "hola"})

        assert response.status_code == 502
        assert repository.write_log == []

    def test_rate_limit_is_429(self, client, voice):
        voice.error = RateLimitedError("Gemini quota exceeded", retry_after_seconds=12.5)

        response = client.post("/carts/cart-soda/cleaning/correction", json={"transcript": "ya no falta nada"})

        assert response.status_code == 429
        assert response.headers["retry-after"] == "12"

    def test_persistence_failure_is_503(self, client, repository):
        repository.fail_next_writes(1)

        response = client.post("/carts/cart-soda/missing", json={"product_id": COCA, "quantity": 2})

        assert response.status_code == 503
        assert client.get("/carts/cart-soda").json()["ledger"] == []

    def test_manual_entry_unknown_product(self, client):
        response = client.post("/carts/cart-soda/missing", json={"product_id": "pepsi", "quantity": 1})
        assert response.status_code == 422

    def test_manual_entry_and_clear(self, client):
        added = client.post("/carts/cart-soda/missing", json={"product_id": COCA, "quantity": 2})
        cleared = client.delete("/carts/cart-soda/missing")

        assert added.json()[0]["missing"] == 2
        assert cleared.status_code == 200
        assert cleared.json() == []

    def test_collected_before_pick_and_pack(self, client):
        response = client.post("/carts/cart-soda/missing/collected", json={"product_ids": [COCA]})
        assert response.status_code == 409


class TestBottleControlRoutes:

    def test_session_requires_bottle_control(self, client):
        assert client.post("/carts/cart-bar/bottle-control/session").status_code == 409

    def test_session_lifecycle(self, client):
        client.post("/carts/cart-bar/phase/complete")

        opened = client.post("/carts/cart-bar/bottle-control/session")
        frame = client.post(
            "/carts/cart-bar/bottle-control/frames",
            json={"image_base64": "data:image/jpeg;base64," + base64.b64encode(b"jpeg").decode()},
        )
        merge = client.post("/carts/cart-bar/bottle-control/pairs/nope:nope/merge")
        stopped = client.delete("/carts/cart-bar/bottle-control/session")
        after = client.get("/carts/cart-bar/bottle-control")

        assert opened.status_code == 200
        assert opened.json()["cart_id"] == "cart-bar"
        assert frame.status_code == 200
        assert frame.json()["skipped"] is False
        assert merge.status_code == 404
        assert stopped.status_code == 204
        assert after.status_code == 409

    def test_bad_base64_frame(self, client):
        client.post("/carts/cart-bar/phase/complete")
        client.post("/carts/cart-bar/bottle-control/session")

        response = client.post("/carts/cart-bar/bottle-control/frames", json={"image_base64": "not base64!!"})

        assert response.status_code == 422
