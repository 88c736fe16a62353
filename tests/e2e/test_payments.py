"""
E2E tests for the payments API.

Exercises authorization, capture, payouts, cancellation, provider account
onboarding and the webhook endpoint through HTTP against an in-memory
database, with Stripe replaced by the fake processor.
"""

from __future__ import annotations

import json
import uuid
from decimal import Decimal

from sqlalchemy import select

from paybroker.core.config import settings
from paybroker.integrations.stripe.payoutService import AccountSnapshot
from paybroker.models import AccountStatus, Job, Payout, PayoutStatus, ProviderAccount
from tests.conftest import declined
from tests.e2e.conftest import (
    API,
    PROVIDER_ID,
    SECOND_PROVIDER_ID,
    reload,
    seed_account,
    seed_job,
)


async def _payouts_for(db, job_id) -> list[Payout]:
    stmt = (
        select(Payout)
        .where(Payout.job_id == job_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _webhook_body(event_type: str, data_object: dict, event_id: str = "evt_e2e_1") -> str:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": data_object}})


# ---------------------------------------------------------------------------
# Authorization & capture
# ---------------------------------------------------------------------------


class TestAuthorizeAndCapture:

    async def test_authorize_job(self, client, db_session):
        job = await seed_job(db_session, payment_intent_id=None, price_cents=15000)

        resp = await client.post(f"{API}/jobs/{job.id}/authorize", json={"payer_ref": "cus_9"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["amount_cents"] == 15000
        assert data["payment_intent_id"].startswith("pi_test_")

        job = await reload(db_session, Job, job.id)
        assert job.payment_intent_id == data["payment_intent_id"]

    async def test_authorize_twice_conflicts(self, client, db_session):
        job = await seed_job(db_session)
        resp = await client.post(f"{API}/jobs/{job.id}/authorize")
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ALREADY_AUTHORIZED"

    async def test_capture_is_idempotent(self, client, db_session, fake_processor):
        job = await seed_job(db_session)

        first = await client.post(f"{API}/jobs/{job.id}/capture")
        second = await client.post(f"{API}/jobs/{job.id}/capture")

        assert first.status_code == 200
        assert first.json()["already_captured"] is False
        assert second.status_code == 200
        assert second.json()["already_captured"] is True
        assert len(fake_processor.called("capture")) == 1

    async def test_capture_failure_is_recorded(self, client, db_session, fake_processor):
        job = await seed_job(db_session)
        fake_processor.fail("capture", declined("Authorization expired"))

        resp = await client.post(f"{API}/jobs/{job.id}/capture")
        assert resp.status_code == 402
        assert resp.json()["detail"]["code"] == "CAPTURE_FAILED"

        job = await reload(db_session, Job, job.id)
        assert job.payment_captured is False
        assert job.payment_capture_failed is True

    async def test_capture_unknown_job(self, client):
        resp = await client.post(f"{API}/jobs/{uuid.uuid4()}/capture")
        assert resp.status_code == 404

    async def test_provider_assigned_reserves_and_captures(self, client, db_session):
        job = await seed_job(db_session, providers=[PROVIDER_ID])

        resp = await client.post(
            f"{API}/jobs/{job.id}/provider-assigned",
            json={"provider_id": str(PROVIDER_ID)},
        )
        assert resp.status_code == 200
        assert resp.json()["payouts_held"] == 1

        (payout,) = await _payouts_for(db_session, job.id)
        assert payout.status == PayoutStatus.HELD.value
        assert payout.gross_amount == 10000
        assert payout.net_amount == 9000

    async def test_provider_assigned_requires_assignment(self, client, db_session):
        job = await seed_job(db_session, providers=[PROVIDER_ID])
        resp = await client.post(
            f"{API}/jobs/{job.id}/provider-assigned",
            json={"provider_id": str(SECOND_PROVIDER_ID)},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "PROVIDER_NOT_ASSIGNED"

    async def test_release_authorization(self, client, db_session):
        job = await seed_job(db_session)

        first = await client.post(f"{API}/jobs/{job.id}/release")
        second = await client.post(f"{API}/jobs/{job.id}/release")

        assert first.json() == {"job_id": str(job.id), "released": True}
        assert second.json()["released"] is False


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


class TestPayouts:

    async def _payable_job(self, db):
        await seed_account(db, PROVIDER_ID, external_account_id="acct_one")
        await seed_account(db, SECOND_PROVIDER_ID, external_account_id="acct_two")
        return await seed_job(
            db,
            providers=[PROVIDER_ID, SECOND_PROVIDER_ID],
            payment_captured=True,
            completed=True,
        )

    async def test_pays_every_provider(self, client, db_session, fake_processor):
        job = await self._payable_job(db_session)

        resp = await client.post(f"{API}/jobs/{job.id}/payouts")
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert [r["outcome"] for r in results] == ["transfer_requested"] * 2
        assert all(r["net_amount"] == 4500 for r in results)
        assert all(r["status"] == "processing" for r in results)

        payouts = await _payouts_for(db_session, job.id)
        assert len(payouts) == 2
        assert all(p.external_transfer_id for p in payouts)

    async def test_second_request_sends_nothing(self, client, db_session, fake_processor):
        job = await self._payable_job(db_session)
        await client.post(f"{API}/jobs/{job.id}/payouts")

        resp = await client.post(f"{API}/jobs/{job.id}/payouts")
        assert [r["outcome"] for r in resp.json()["results"]] == ["in_flight"] * 2
        assert len(fake_processor.called("create_transfer")) == 2

    async def test_incomplete_job_is_rejected(self, client, db_session):
        job = await seed_job(db_session, providers=[PROVIDER_ID], payment_captured=True)
        resp = await client.post(f"{API}/jobs/{job.id}/payouts")
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "JOB_NOT_COMPLETE"

    async def test_missing_account_reported_per_provider(self, client, db_session):
        await seed_account(db_session, PROVIDER_ID, external_account_id="acct_one")
        job = await seed_job(
            db_session,
            providers=[PROVIDER_ID, SECOND_PROVIDER_ID],
            payment_captured=True,
            completed=True,
        )

        resp = await client.post(f"{API}/jobs/{job.id}/payouts")
        by_provider = {r["provider_id"]: r for r in resp.json()["results"]}
        assert by_provider[str(PROVIDER_ID)]["outcome"] == "transfer_requested"
        assert by_provider[str(SECOND_PROVIDER_ID)]["outcome"] == "ineligible"
        assert by_provider[str(SECOND_PROVIDER_ID)]["error_code"] == "NO_CONNECT_ACCOUNT"

    async def test_retry_failed_payout(self, client, db_session, fake_processor):
        await seed_account(db_session, PROVIDER_ID, external_account_id="acct_one")
        job = await seed_job(
            db_session, providers=[PROVIDER_ID], payment_captured=True, completed=True
        )
        fake_processor.fail_once("create_transfer", declined("Insufficient funds"))

        first = await client.post(f"{API}/jobs/{job.id}/payouts")
        (result,) = first.json()["results"]
        assert result["outcome"] == "transfer_failed"
        assert result["status"] == "failed"

        retry = await client.post(f"{API}/payouts/{result['payout_id']}/retry")
        assert retry.status_code == 200
        assert retry.json()["outcome"] == "transfer_requested"

        again = await client.post(f"{API}/payouts/{result['payout_id']}/retry")
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "INVALID_TRANSITION"

    async def test_rejected_retry_keeps_failure(self, client, db_session, fake_processor):
        await seed_account(db_session, PROVIDER_ID, external_account_id="acct_one")
        job = await seed_job(
            db_session, providers=[PROVIDER_ID], payment_captured=True, completed=True
        )
        fake_processor.fail("create_transfer", declined("Destination closed"))
        first = await client.post(f"{API}/jobs/{job.id}/payouts")
        payout_id = first.json()["results"][0]["payout_id"]

        resp = await client.post(f"{API}/payouts/{payout_id}/retry")
        assert resp.status_code == 402

        payout = await reload(db_session, Payout, uuid.UUID(payout_id))
        assert payout.status == PayoutStatus.FAILED.value
        assert payout.attempt_count == 2

    async def test_provider_history(self, client, db_session):
        job = await self._payable_job(db_session)
        await client.post(f"{API}/jobs/{job.id}/payouts")

        resp = await client.get(f"{API}/providers/{PROVIDER_ID}/payouts")
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["payouts"]) == 1
        assert data["pending_amount_cents"] == 4500
        assert data["total_paid_cents"] == 0
        assert Decimal(data["platform_fee_percent"]) == Decimal("10")


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:

    async def test_preview_standard(self, client, db_session):
        job = await seed_job(db_session, providers=[PROVIDER_ID], scheduled_in_days=1)

        resp = await client.get(f"{API}/jobs/{job.id}/cancellation")
        assert resp.status_code == 200
        data = resp.json()
        assert data["policy"] == "standard"
        assert data["refund_amount"] == 5000
        assert data["provider_compensation"] == 4500
        assert data["platform_fee_total"] == 500
        assert data["platform_retention"] == 500

    async def test_preview_deep_discount(self, client, db_session):
        job = await seed_job(
            db_session,
            providers=[PROVIDER_ID],
            price_cents=2500,
            original_price_cents=10000,
            discount_applied=True,
            scheduled_in_days=2,
        )
        data = (await client.get(f"{API}/jobs/{job.id}/cancellation")).json()
        assert data["policy"] == "incentive"
        assert data["refund_amount"] == 250
        assert data["provider_compensation"] == 4000
        assert data["platform_retention"] == -1750

    async def test_execute_standard(self, client, db_session, fake_processor):
        await seed_account(db_session, PROVIDER_ID, external_account_id="acct_one")
        job = await seed_job(db_session, providers=[PROVIDER_ID], scheduled_in_days=1)

        resp = await client.post(f"{API}/jobs/{job.id}/cancellation")
        assert resp.status_code == 200
        data = resp.json()
        assert data["captured"] is True
        assert data["refund_id"] is not None
        assert data["compensations"][0]["amount"] == 4500
        assert data["compensations"][0]["transfer_id"] is not None
        assert fake_processor.called("refund") == [("pi_seeded", 5000, "cancellation_standard")]

        again = await client.post(f"{API}/jobs/{job.id}/cancellation")
        assert again.status_code == 409

    async def test_execute_outside_window_releases(self, client, db_session, fake_processor):
        job = await seed_job(db_session, providers=[PROVIDER_ID], scheduled_in_days=10)

        data = (await client.post(f"{API}/jobs/{job.id}/cancellation")).json()
        assert data["breakdown"]["policy"] == "full_refund"
        assert data["authorization_released"] is True
        assert data["compensations"] == []
        assert fake_processor.called("cancel_authorization") == [("pi_seeded",)]

    async def test_completed_job_cannot_be_cancelled(self, client, db_session):
        job = await seed_job(db_session, providers=[PROVIDER_ID], completed=True)
        resp = await client.get(f"{API}/jobs/{job.id}/cancellation")
        assert resp.status_code == 409


# ---------------------------------------------------------------------------
# Provider accounts
# ---------------------------------------------------------------------------


class TestProviderAccounts:

    async def test_create_account_and_onboarding_link(self, client):
        resp = await client.post(
            f"{API}/providers/accounts",
            json={"provider_id": str(PROVIDER_ID), "email": "pro@example.com"},
        )
        assert resp.status_code == 201
        account = resp.json()
        assert account["account_status"] == "pending"
        assert account["external_account_id"].startswith("acct_test_")

        again = await client.post(
            f"{API}/providers/accounts", json={"provider_id": str(PROVIDER_ID)}
        )
        assert again.json()["external_account_id"] == account["external_account_id"]

        link = await client.post(
            f"{API}/providers/{PROVIDER_ID}/onboarding-link",
            json={"refresh_url": "https://app/refresh", "return_url": "https://app/return"},
        )
        assert link.status_code == 200
        assert link.json()["account_id"] == account["external_account_id"]

    async def test_onboarding_link_without_account(self, client):
        resp = await client.post(
            f"{API}/providers/{PROVIDER_ID}/onboarding-link",
            json={"refresh_url": "r", "return_url": "u"},
        )
        assert resp.status_code == 404

    async def test_refresh_status(self, client, db_session, fake_processor):
        await seed_account(
            db_session, PROVIDER_ID, external_account_id="acct_one", status=AccountStatus.PENDING
        )
        fake_processor.accounts["acct_one"] = AccountSnapshot(
            account_id="acct_one",
            payouts_enabled=True,
            charges_enabled=True,
            details_submitted=True,
        )

        resp = await client.post(f"{API}/providers/{PROVIDER_ID}/refresh")
        assert resp.status_code == 200
        assert resp.json()["account_status"] == "active"
        assert resp.json()["onboarding_complete"] is True


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


class TestWebhook:

    async def test_transfer_failed_is_applied_once(self, client, db_session):
        await seed_account(db_session, PROVIDER_ID, external_account_id="acct_one")
        job = await seed_job(
            db_session, providers=[PROVIDER_ID], payment_captured=True, completed=True
        )
        paid = await client.post(f"{API}/jobs/{job.id}/payouts")
        transfer_id = paid.json()["results"][0]["transfer_id"]
        body = _webhook_body("transfer.failed", {"id": transfer_id, "failure_message": "Closed"})

        first = await client.post(f"{API}/webhook", content=body)
        second = await client.post(f"{API}/webhook", content=body)

        assert first.status_code == 200
        assert first.json()["processed"] is True
        assert second.status_code == 200
        assert second.json()["processed"] is False

        (payout,) = await _payouts_for(db_session, job.id)
        assert payout.status == PayoutStatus.FAILED.value
        assert payout.failure_reason == "Closed"

    async def test_account_updated(self, client, db_session):
        account = await seed_account(
            db_session, PROVIDER_ID, external_account_id="acct_one", status=AccountStatus.PENDING
        )
        body = _webhook_body(
            "account.updated",
            {
                "id": "acct_one",
                "payouts_enabled": True,
                "charges_enabled": True,
                "details_submitted": True,
                "requirements": {"currently_due": []},
            },
        )

        resp = await client.post(f"{API}/webhook", content=body)
        assert resp.json()["processed"] is True

        account = await reload(db_session, ProviderAccount, account.id)
        assert account.account_status == AccountStatus.ACTIVE.value

    async def test_unhandled_event_is_acknowledged(self, client):
        resp = await client.post(f"{API}/webhook", content=_webhook_body("charge.refunded", {"id": "ch_1"}))
        assert resp.status_code == 200
        assert resp.json()["processed"] is False

    async def test_missing_secret_in_production(self, client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")
        resp = await client.post(f"{API}/webhook", content=_webhook_body("transfer.failed", {"id": "tr_1"}))
        assert resp.status_code == 503
        assert resp.json()["detail"]["code"] == "WEBHOOK_SECRET_MISSING"

    async def test_bad_signature(self, client, monkeypatch):
        monkeypatch.setattr(settings, "stripe_connect_webhook_secret", "whsec_e2e")
        resp = await client.post(
            f"{API}/webhook",
            content=_webhook_body("transfer.failed", {"id": "tr_1"}),
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "INVALID_SIGNATURE"
