from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from affiliate_ledger import crud
from affiliate_ledger.database import SessionLocal
from affiliate_ledger.errors import JobAlreadyRunning, PayloadError
from affiliate_ledger.models import AuditLog, CommissionEvent, JobLock, Lead, Merchant
from affiliate_ledger.services import ENFORCEMENT_JOB_NAME, EnforcementService

NOW = datetime(2025, 6, 1, 9, 0)


def _seed_entry(session, click, *, payable_days_ago=None, amount="100.00", status=None):
    """Write a lead and its ledger entry directly, bypassing the threshold rule."""
    lead = Lead(
        click_pk=click.id,
        click_id=click.click_id,
        offer_id=click.offer_id,
        merchant_id=click.merchant_id,
        affiliate_id=click.affiliate_id,
        link_id=click.link_id,
        event_type="purchase",
        amount=Decimal(amount),
        currency="USD",
        external_reference=f"ord-{uuid.uuid4().hex[:8]}",
    )
    session.add(lead)
    session.flush()
    payable_at = NOW - timedelta(days=payable_days_ago) if payable_days_ago is not None else None
    event = CommissionEvent(
        merchant_id=lead.merchant_id,
        offer_id=lead.offer_id,
        affiliate_id=lead.affiliate_id,
        link_id=lead.link_id,
        lead_id=lead.id,
        click_id=lead.click_id,
        affiliate_commission_amount=Decimal(amount) * Decimal("0.3"),
        platform_commission_amount=Decimal(amount) * Decimal("0.1"),
        currency="USD",
        status=status or ("payable" if payable_at else "pending"),
        payable_at=payable_at,
    )
    session.add(event)
    session.commit()
    return event


def test_fifty_days_late_flags_without_suspending(test_db, make_link, make_click):
    link = make_link()
    _seed_entry(test_db, make_click(link), payable_days_ago=50)

    summary = EnforcementService(test_db).enforce_late_payments(now=NOW)

    assert summary.processed == 1
    assert summary.flagged == 1
    assert summary.suspended == 0
    merchant = test_db.get(Merchant, link.merchant_id)
    assert merchant.late_payout_flag is True
    assert merchant.is_suspended is False
    assert merchant.is_live is True
    assert merchant.max_days_late == 50
    assert merchant.unpaid_affiliate_total == Decimal("30.00")
    assert merchant.unpaid_platform_total == Decimal("10.00")


def test_seventy_one_days_late_suspends_once(test_db, make_link, make_click):
    link = make_link()
    _seed_entry(test_db, make_click(link), payable_days_ago=71)

    first = EnforcementService(test_db).enforce_late_payments(now=NOW)
    merchant = test_db.get(Merchant, link.merchant_id)
    assert first.suspended == 1
    assert merchant.is_suspended is True
    assert merchant.is_live is False
    assert merchant.late_payout_flag is True
    assert merchant.suspended_at == NOW

    later = NOW + timedelta(days=1)
    second = EnforcementService(test_db).enforce_late_payments(now=later)
    test_db.expire_all()
    merchant = test_db.get(Merchant, link.merchant_id)
    assert second.suspended == 1
    assert merchant.suspended_at == NOW
    assert merchant.max_days_late == 72


def test_repeated_runs_are_idempotent(test_db, make_link, make_click):
    link = make_link()
    click = make_click(link)
    _seed_entry(test_db, click, payable_days_ago=46, amount="20.00")
    _seed_entry(test_db, click, payable_days_ago=5, amount="80.00")

    first = EnforcementService(test_db).enforce_late_payments(now=NOW)
    snapshot = test_db.get(Merchant, link.merchant_id)
    state = (snapshot.max_days_late, snapshot.unpaid_affiliate_total, snapshot.late_payout_flag)
    second = EnforcementService(test_db).enforce_late_payments(now=NOW)
    test_db.expire_all()
    merchant = test_db.get(Merchant, link.merchant_id)

    assert first.model_dump(exclude={"ran_at"}) == second.model_dump(exclude={"ran_at"})
    assert (merchant.max_days_late, merchant.unpaid_affiliate_total, merchant.late_payout_flag) == state
    assert merchant.unpaid_affiliate_total == Decimal("30.00")


def test_paid_debt_resets_flag_but_keeps_suspension(test_db, make_link, make_click):
    link = make_link()
    event = _seed_entry(test_db, make_click(link), payable_days_ago=80)
    EnforcementService(test_db).enforce_late_payments(now=NOW)

    event.status = "paid"
    event.paid_at = NOW
    test_db.commit()
    summary = EnforcementService(test_db).enforce_late_payments(now=NOW)

    merchant = test_db.get(Merchant, link.merchant_id)
    assert summary.processed == 0
    assert summary.reset == 1
    assert merchant.late_payout_flag is False
    assert merchant.max_days_late == 0
    assert merchant.unpaid_affiliate_total == Decimal("0")
    assert merchant.is_suspended is True
    assert merchant.is_live is False


def test_pending_entries_without_payable_date_are_ignored(test_db, make_link, make_click):
    link = make_link()
    _seed_entry(test_db, make_click(link), payable_days_ago=None, amount="10.00")

    summary = EnforcementService(test_db).enforce_late_payments(now=NOW)

    assert summary.processed == 0
    merchant = test_db.get(Merchant, link.merchant_id)
    assert merchant.late_payout_flag is False
    assert merchant.max_days_late == 0


def test_held_job_lock_blocks_second_run(test_db):
    test_db.add(JobLock(name=ENFORCEMENT_JOB_NAME, holder="other-worker", acquired_at=NOW))
    test_db.commit()

    with pytest.raises(JobAlreadyRunning):
        EnforcementService(test_db).enforce_late_payments(now=NOW + timedelta(minutes=5))

    test_db.expire_all()
    assert test_db.get(JobLock, ENFORCEMENT_JOB_NAME).holder == "other-worker"


def test_stale_job_lock_is_taken_over_and_released(test_db):
    test_db.add(JobLock(name=ENFORCEMENT_JOB_NAME, holder="crashed-worker", acquired_at=NOW - timedelta(hours=3)))
    test_db.commit()

    summary = EnforcementService(test_db).enforce_late_payments(now=NOW, holder="fresh-worker")

    assert summary.success is True
    test_db.expire_all()
    assert test_db.get(JobLock, ENFORCEMENT_JOB_NAME) is None


def test_acquire_job_lock_directly(test_db):
    ttl = timedelta(minutes=60)
    assert crud.acquire_job_lock(test_db, "nightly", "a", NOW, ttl) is True
    assert crud.acquire_job_lock(test_db, "nightly", "b", NOW + timedelta(minutes=1), ttl) is False
    crud.release_job_lock(test_db, "nightly", "a")
    assert crud.acquire_job_lock(test_db, "nightly", "b", NOW + timedelta(minutes=2), ttl) is True


def test_enforcement_endpoint_requires_admin_token(client, admin_headers):
    assert client.post("/jobs/enforce-late-payments").status_code == 403
    assert client.post("/jobs/enforce-late-payments", headers={"X-Admin-Token": "wrong"}).status_code == 403

    response = client.post("/jobs/enforce-late-payments", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["processed"] == 0


def test_enforcement_endpoint_reports_running_job(client, admin_headers):
    session = SessionLocal()
    try:
        session.add(JobLock(name=ENFORCEMENT_JOB_NAME, holder="cron", acquired_at=datetime.now()))
        session.commit()
    finally:
        session.close()

    response = client.post("/jobs/enforce-late-payments", headers=admin_headers)

    assert response.status_code == 409
    assert response.json()["error"] == "JOB_ALREADY_RUNNING"
    assert response.json()["retryable"] is True


def test_standing_endpoint_reflects_enforcement(client, test_db, make_link, make_click):
    link = make_link()
    _seed_entry(test_db, make_click(link), payable_days_ago=60)
    EnforcementService(test_db).enforce_late_payments(now=NOW)

    response = client.get(f"/merchants/{link.merchant_id}/standing")

    assert response.status_code == 200
    body = response.json()
    assert body["standing"] == "flagged"
    assert body["max_days_late"] == 60
    assert body["unpaid_affiliate_total"] == 30.0
    assert client.get("/merchants/999999/standing").status_code == 404


def test_lift_suspension_restores_merchant_and_audits(client, test_db, make_link, make_click, admin_headers):
    link = make_link()
    _seed_entry(test_db, make_click(link), payable_days_ago=90)
    EnforcementService(test_db).enforce_late_payments(now=NOW)

    response = client.post(
        f"/merchants/{link.merchant_id}/lift-suspension", json={"actor": "ops@example.com"}, headers=admin_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["is_suspended"] is False
    assert body["is_live"] is True
    assert body["suspended_at"] is None

    audit = test_db.execute(select(AuditLog)).scalars().one()
    assert audit.actor == "ops@example.com"
    assert audit.action == "lift_suspension"
    assert json.loads(audit.details)["merchant_id"] == link.merchant_id


def test_lift_suspension_rejects_merchant_in_good_standing(test_db, make_link, client, admin_headers):
    link = make_link()

    with pytest.raises(PayloadError):
        EnforcementService(test_db).lift_suspension(link.merchant_id, actor="ops")

    response = client.post(f"/merchants/{link.merchant_id}/lift-suspension", headers=admin_headers)
    assert response.status_code == 400
    assert client.post("/merchants/999999/lift-suspension", headers=admin_headers).status_code == 404


def test_lifted_merchant_is_resuspended_while_debt_remains(test_db, make_link, make_click):
    link = make_link()
    _seed_entry(test_db, make_click(link), payable_days_ago=90)
    service = EnforcementService(test_db)
    service.enforce_late_payments(now=NOW)

    service.lift_suspension(link.merchant_id, actor="ops")
    merchant = test_db.get(Merchant, link.merchant_id)
    assert merchant.is_suspended is False
    assert merchant.suspended_at is None

    later = NOW + timedelta(days=1)
    service.enforce_late_payments(now=later)
    merchant = test_db.get(Merchant, link.merchant_id)
    assert merchant.is_suspended is True
    assert merchant.suspended_at == later


def test_suspended_merchant_without_debt_is_not_reset_again(test_db, make_link, make_click):
    link = make_link()
    event = _seed_entry(test_db, make_click(link), payable_days_ago=80)
    service = EnforcementService(test_db)
    service.enforce_late_payments(now=NOW)
    event.status = "paid"
    test_db.commit()

    assert service.enforce_late_payments(now=NOW).reset == 1
    assert service.enforce_late_payments(now=NOW).reset == 0
    assert test_db.get(Merchant, link.merchant_id).is_suspended is True


def test_failed_run_discards_partial_updates_and_releases_lock(test_db, make_link, make_click, monkeypatch):
    link = make_link()
    _seed_entry(test_db, make_click(link), payable_days_ago=80)

    def broken_reset_query(db, exclude_ids=()):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(crud, "list_merchants_with_cached_exposure", broken_reset_query)

    with pytest.raises(RuntimeError):
        EnforcementService(test_db).enforce_late_payments(now=NOW)

    session = SessionLocal()
    try:
        merchant = session.get(Merchant, link.merchant_id)
        assert merchant.is_suspended is False
        assert merchant.late_payout_flag is False
        assert merchant.max_days_late == 0
        assert session.get(JobLock, ENFORCEMENT_JOB_NAME) is None
    finally:
        session.close()
