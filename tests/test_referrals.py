from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select

from affiliate_ledger.models import PaymentCustomer, PlatformUser, ReferralCommission
from affiliate_ledger.schemas import ReferralPaymentPayload
from affiliate_ledger.services import ReferralCommissionService


def _seed_referral(session, referred=True):
    referrer = PlatformUser(email="coach@example.com")
    session.add(referrer)
    session.flush()
    user = PlatformUser(email="newbie@example.com", referred_by_user_id=referrer.id if referred else None)
    session.add(user)
    session.flush()
    session.add(PaymentCustomer(customer_id="cus_123", user_id=user.id))
    session.commit()
    return referrer, user


def _payment(amount="99.00", reference="in_001"):
    return ReferralPaymentPayload(customer_id="cus_123", payment_reference=reference, amount=amount)


def test_referrer_earns_twenty_percent(test_db):
    referrer, user = _seed_referral(test_db)

    result = ReferralCommissionService(test_db).record_payment(_payment())

    assert result.recorded is True
    assert result.duplicate is False
    assert result.referrer_user_id == referrer.id
    assert result.commission_amount == Decimal("19.80")
    assert result.currency == "USD"

    commission = test_db.execute(select(ReferralCommission)).scalars().one()
    assert commission.referred_user_id == user.id
    assert commission.status == "payable"
    assert commission.commission_rate == Decimal("20")


def test_same_payment_reference_is_recorded_once(test_db):
    _seed_referral(test_db)
    service = ReferralCommissionService(test_db)

    first = service.record_payment(_payment())
    second = service.record_payment(_payment())

    assert second.duplicate is True
    assert second.commission_id == first.commission_id
    assert test_db.execute(select(func.count(ReferralCommission.id))).scalar_one() == 1


def test_user_without_referrer_is_skipped(test_db):
    _seed_referral(test_db, referred=False)

    result = ReferralCommissionService(test_db).record_payment(_payment())

    assert result.recorded is False
    assert result.reason == "User has no referrer"


def test_zero_amount_and_unknown_customer_are_skipped(test_db):
    _seed_referral(test_db)
    service = ReferralCommissionService(test_db)

    assert service.record_payment(_payment(amount="0")).reason == "Payment amount is zero"
    unknown = ReferralPaymentPayload(customer_id="cus_missing", payment_reference="in_002", amount="10")
    assert service.record_payment(unknown).reason == "No user found for customer"
    assert test_db.execute(select(func.count(ReferralCommission.id))).scalar_one() == 0


def test_referral_endpoint_requires_admin_token(client, test_db, admin_headers):
    _seed_referral(test_db)
    payload = {"customer_id": "cus_123", "payment_reference": "cs_abc", "amount": 250, "currency": "usd"}

    assert client.post("/referrals/payments", json=payload).status_code == 403

    response = client.post("/referrals/payments", json=payload, headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["recorded"] is True
    assert body["commission_amount"] == 50.0
