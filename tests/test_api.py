"""
HTTP layer: envelopes, status mapping, auth guards and webhooks
"""

import hashlib
import hmac
import json
import time
from contextlib import asynccontextmanager

import pytest

from api.routes import health
from models.enums import CaseStatus
from utils import webhook_verification
from utils.auth import get_current_user
from utils.webhook_verification import verify_stripe_webhook
from fakes import make_case, make_fine_catalogue, make_payment

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Stripe-Signature header value for a payload"""
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def case_body(state="WA", violation="speeding") -> dict:
    return {
        "ticket_details": {
            "violation_type": violation,
            "ticket_number": "T-1029384",
            "issue_date": "2026-09-14T08:30:00Z",
            "location": {"city": "Tacoma", "state": state},
            "court": {"name": "Tacoma Municipal Court"},
            "fine": "175",
            "ticket_image": "tickets/t-1029384.jpg",
        },
        "client_info": {"is_cdl_driver": False},
    }


class TestHealth:

    @pytest.mark.asyncio
    async def test_database_not_initialized(self, http, monkeypatch):
        monkeypatch.setattr(health, "get_db_pool", lambda: None)

        response = await http.get("/health")

        assert response.status_code == 503
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_healthy(self, http, monkeypatch):
        class Connection:
            async def fetchval(self, query):
                return 1

        class Pool:
            @asynccontextmanager
            async def acquire(self):
                yield Connection()

        monkeypatch.setattr(health, "get_db_pool", lambda: Pool())

        response = await http.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"


class TestCaseRoutes:

    @pytest.mark.asyncio
    async def test_submit_case(self, http, lawyer):
        response = await http.post("/api/cases", json=case_body())

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "assigned"
        assert body["data"]["lawyer_id"] == lawyer.id
        assert float(body["data"]["pricing"]["quoted_price"]) == 249
        assert len(response.headers["X-Trace-ID"]) == 8

    @pytest.mark.asyncio
    async def test_validation_error_envelope(self, http):
        body = case_body()
        del body["ticket_details"]["court"]

        response = await http.post("/api/cases", json=body)

        assert response.status_code == 422
        payload = response.json()
        assert payload["error"] == "VALIDATION_ERROR"
        assert any("court" in item["field"] for item in payload["detail"])
        assert payload["trace_id"] == response.headers["X-Trace-ID"]

    @pytest.mark.asyncio
    async def test_not_found(self, http):
        response = await http.get("/api/cases/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"
        assert response.json()["message"] == "Case not found"

    @pytest.mark.asyncio
    async def test_admin_only_route(self, http, cases_repo, client_user, lawyer):
        case = cases_repo.add(make_case(client_user.id))

        response = await http.put(f"/api/cases/{case.id}/assign", json={"lawyer_id": lawyer.id})

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_second_rating_conflicts(self, http, cases_repo, client_user, lawyer):
        case = cases_repo.add(make_case(client_user.id, status=CaseStatus.CLOSED, lawyer_id=lawyer.id))

        first = await http.post(f"/api/cases/{case.id}/rating", json={"rating": 5})
        second = await http.post(f"/api/cases/{case.id}/rating", json={"rating": 4})

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == "CONFLICT_ERROR"

    @pytest.mark.asyncio
    async def test_list_pagination(self, http, cases_repo, client_user):
        for _ in range(3):
            cases_repo.add(make_case(client_user.id))

        response = await http.get("/api/cases", params={"page": 2, "limit": 2})

        body = response.json()
        assert body["count"] == 1
        assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, http):
        response = await http.get("/api/cases", params={"limit": 500})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_lawyer_updates_status(self, http, app, cases_repo, client_user, lawyer, lawyer_actor):
        case = cases_repo.add(make_case(client_user.id, status=CaseStatus.ASSIGNED, lawyer_id=lawyer.id))
        app.state.actor = lawyer_actor

        response = await http.put(f"/api/cases/{case.id}/status", json={"status": "in_progress"})

        assert response.status_code == 200
        assert response.json()["message"] == "Case status updated to in_progress"


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_missing_token(self, http, app):
        del app.dependency_overrides[get_current_user]

        response = await http.get("/api/cases")

        assert response.status_code == 401
        assert response.json()["error"] == "HTTP 401"

    @pytest.mark.asyncio
    async def test_public_plans(self, http, app):
        del app.dependency_overrides[get_current_user]

        response = await http.get("/api/b2b/plans")

        assert response.status_code == 200
        assert {plan["id"] for plan in response.json()["data"]} == {"plan_basic", "plan_unlimited"}


class TestPaymentRoutes:

    @pytest.mark.asyncio
    async def test_processor_error_maps_to_502(self, http, gateway, cases_repo, client_user):
        case = cases_repo.add(make_case(client_user.id))
        gateway.fail = True

        response = await http.post("/api/payments/intent", json={"case_id": case.id, "amount": "249"})

        assert response.status_code == 502
        assert response.json()["error"] == "EXTERNAL_SERVICE_ERROR"

    @pytest.mark.asyncio
    async def test_get_own_payment(self, http, payments_repo, client_user):
        payment = payments_repo.add(make_payment(client_user.id))

        response = await http.get(f"/api/payments/{payment.id}")

        assert response.status_code == 200
        assert response.json()["data"]["transaction_id"] == payment.transaction_id


class TestStripeWebhook:

    @pytest.mark.asyncio
    async def test_verified_event_is_applied(self, http, app, payments_repo, client_user):
        payment = payments_repo.add(make_payment(client_user.id))
        event = {
            "id": "evt_route",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": payment.stripe_payment_intent_id}},
        }
        app.dependency_overrides[verify_stripe_webhook] = lambda: event

        response = await http.post("/api/webhooks/stripe", content=b"{}")

        assert response.status_code == 200
        assert response.json() == {
            "received": True, "status": "processed", "event_id": "evt_route",
            "event_type": "payment_intent.payment_failed", "detail": None,
        }

    @pytest.mark.asyncio
    async def test_malformed_event(self, http, app):
        app.dependency_overrides[verify_stripe_webhook] = lambda: {"type": "payment_intent.succeeded"}

        response = await http.post("/api/webhooks/stripe", content=b"{}")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_forged_signature(self, http, monkeypatch):
        monkeypatch.setattr(webhook_verification, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)

        response = await http.post(
            "/api/webhooks/stripe", content=b"{}", headers={"Stripe-Signature": f"t={int(time.time())},v1=deadbeef"}
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Webhook verification failed"

    @pytest.mark.asyncio
    async def test_signed_event(self, http, monkeypatch):
        monkeypatch.setattr(webhook_verification, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
        payload = json.dumps({
            "id": "evt_signed", "object": "event", "type": "customer.created", "data": {"object": {}},
        }).encode()

        response = await http.post(
            "/api/webhooks/stripe", content=payload, headers={"Stripe-Signature": sign(payload)}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"


class TestCatalogueAndAdminRoutes:

    @pytest.mark.asyncio
    async def test_public_search_in_arabic(self, http, app, fines_repo):
        make_fine_catalogue(fines_repo)
        del app.dependency_overrides[get_current_user]

        response = await http.get("/api/fines/search", params={"query": "radar", "language": "ar"})

        assert response.status_code == 200
        assert [t["name"] for t in response.json()["data"]] == ["تجاوز السرعة"]

    @pytest.mark.asyncio
    async def test_fine_type_detail_route(self, http, fines_repo):
        make_fine_catalogue(fines_repo)

        response = await http.get("/api/fines/radar")

        assert response.json()["data"]["category"]["id"] == "traffic"

    @pytest.mark.asyncio
    async def test_admin_routes_need_admin(self, http, client_user):
        response = await http.put(f"/api/admin/users/{client_user.id}/quota", json={"cases_per_month": 50})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_quota_override(self, http, app, admin_actor, client_user):
        app.state.actor = admin_actor

        response = await http.put(f"/api/admin/users/{client_user.id}/quota", json={"cases_per_month": 50})

        assert response.status_code == 200
        assert response.json()["data"]["quota"]["cases_per_month"] == 50

    @pytest.mark.asyncio
    async def test_unread_count_route(self, http):
        response = await http.get("/api/messages/unread-count")
        assert response.json()["data"] == {"unread_count": 0}
