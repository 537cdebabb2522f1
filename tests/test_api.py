"""
HTTP surface via httpx.ASGITransport.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import build_container
from app.core.auth import verify_token
from app.core.config import get_settings
from app.main import app
from app.services.ledger import InMemoryAssessmentLedger
from tests.factories import make_submission


@pytest.fixture
def container():
    app.state.container = build_container(get_settings(), ledger=InMemoryAssessmentLedger())
    yield app.state.container
    app.state.container = None
    app.dependency_overrides.clear()


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _body(order_id: str, **overrides) -> dict:
    return {"order_id": order_id, "submission": make_submission(**overrides).model_dump(mode="json")}


class TestAssess:
    @pytest.mark.asyncio
    async def test_checkout_sees_decision_not_evidence(self, container):
        async with _client() as client:
            resp = await client.post("/v1/risk/assess", json=_body("ORD-1", customer={"email": "x@yopmail.com"}))
        assert resp.status_code == 200
        data = resp.json()
        assert data["recommendation"] == "VERIFY"
        assert data["reason_code"] == "VERIFICATION_REQUIRED"
        assert data["customer_message"]
        assert data["replayed"] is False
        assert "signals" not in data
        assert "disposable" not in resp.text

    @pytest.mark.asyncio
    async def test_retry_is_replayed(self, container):
        async with _client() as client:
            first = (await client.post("/v1/risk/assess", json=_body("ORD-1"))).json()
            second = (await client.post("/v1/risk/assess", json=_body("ORD-1"))).json()
        assert second["assessment_id"] == first["assessment_id"]
        assert second["replayed"] is True

    @pytest.mark.asyncio
    async def test_invalid_submission(self, container):
        body = _body("ORD-1")
        body["submission"]["order"]["amount"] = -5
        async with _client() as client:
            resp = await client.post("/v1/risk/assess", json=body)
        assert resp.status_code == 422
        assert resp.json()["code"] == "RG_INPUT_INVALID"
        assert await container.ledger.current_for("ORD-1") is None

    @pytest.mark.asyncio
    async def test_stale_reassess_conflict_names_current(self, container):
        async with _client() as client:
            first = (await client.post("/v1/risk/assess", json=_body("ORD-1"))).json()
            body = {**_body("ORD-1"), "expected_assessment_id": first["assessment_id"]}
            second = (await client.post("/v1/risk/reassess", json=body)).json()
            resp = await client.post("/v1/risk/reassess", json=body)
        assert resp.status_code == 409
        assert resp.json()["code"] == "RG_LEDGER_CONFLICT"
        assert resp.json()["details"]["current_assessment_id"] == second["assessment_id"]


class TestReviewerRoutes:
    @pytest.mark.asyncio
    async def test_full_review_flow(self, container):
        async with _client() as client:
            assessed = (await client.post(
                "/v1/risk/assess", json=_body("ORD-9", behavior={"prior_chargeback_count": 2}),
            )).json()
            assert assessed["recommendation"] == "DECLINE"

            gate = (await client.get("/v1/admission/ORD-9")).json()
            assert gate["allowed"] is False and gate["state"] == "REFUSED"

            pending = (await client.get("/v1/review/pending", params={"level": "CRITICAL"})).json()
            assert pending["total"] == 1
            assert pending["items"][0]["signals"]

            review = await client.post(
                f"/v1/review/{assessed['assessment_id']}",
                json={"outcome": "OVERRIDE_APPROVE", "notes": "Chargebacks were bank errors, confirmed"},
            )
            assert review.status_code == 201
            assert review.json()["reviewer_id"] == "dev-user"

            again = await client.post(
                f"/v1/review/{assessed['assessment_id']}", json={"outcome": "CONFIRM"},
            )
            assert again.status_code == 409
            assert again.json()["details"]["reviewer_id"] == "dev-user"

            gate = (await client.get("/v1/admission/ORD-9")).json()
            assert gate["allowed"] is True

            captured = await client.post(
                "/v1/admission/ORD-9/captured", json={"assessment_id": assessed["assessment_id"]},
            )
            assert captured.status_code == 200
            assert captured.json()["sealed"] is True

    @pytest.mark.asyncio
    async def test_history_and_current(self, container):
        async with _client() as client:
            await client.post("/v1/risk/assess", json=_body("ORD-2"))
            current = await client.get("/v1/risk/assessments/ORD-2")
            history = await client.get("/v1/risk/assessments/ORD-2/history")
            missing = await client.get("/v1/risk/assessments/NOPE")
        assert current.status_code == 200
        assert current.json()["submission_snapshot"]["customer"]["customer_id"] == "CUST-001"
        assert len(history.json()) == 1
        assert missing.status_code == 404
        assert missing.json()["code"] == "RG_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_review_of_approved_rejected(self, container):
        async with _client() as client:
            assessed = (await client.post("/v1/risk/assess", json=_body("ORD-3"))).json()
            resp = await client.post(f"/v1/review/{assessed['assessment_id']}", json={"outcome": "CONFIRM"})
        assert resp.status_code == 422
        assert resp.json()["code"] == "RG_REVIEW_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_reviewer_role_required(self, container):
        app.dependency_overrides[verify_token] = lambda: {"sub": "checkout-service", "realm_access": {"roles": []}}
        async with _client() as client:
            resp = await client.get("/v1/review/pending")
            assess = await client.post("/v1/risk/assess", json=_body("ORD-4"))
        assert resp.status_code == 403
        assert assess.status_code == 200


class TestAdmissionRoutes:
    @pytest.mark.asyncio
    async def test_unassessed_order(self, container):
        async with _client() as client:
            data = (await client.get("/v1/admission/ORD-404")).json()
        assert data["state"] == "AWAITING_ASSESSMENT"
        assert data["allowed"] is False

    @pytest.mark.asyncio
    async def test_capture_of_held_order_denied(self, container):
        async with _client() as client:
            assessed = (await client.post(
                "/v1/risk/assess", json=_body("ORD-5", customer={"email": "x@yopmail.com"}),
            )).json()
            resp = await client.post("/v1/admission/ORD-5/captured", json={"assessment_id": assessed["assessment_id"]})
        assert resp.status_code == 409
        assert resp.json()["code"] == "RG_ADMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_health(self, container):
        async with _client() as client:
            resp = await client.get("/v1/risk/health")
        assert resp.json()["status"] == "ok"
