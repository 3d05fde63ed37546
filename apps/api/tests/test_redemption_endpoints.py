from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from riselocal_api.core.settings import settings
from riselocal_api.models import CouponRedemptionType


@pytest_asyncio.fixture
async def client(app_with_db):
    app, _ = app_with_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


def _as(user) -> dict[str, str]:
    return {"X-Session-User": str(user.id)}


@pytest.mark.asyncio
async def test_deal_access_for_anonymous_and_member(client, seeded, make_deal) -> None:
    deal = await make_deal(is_pass_locked=True)

    anonymous = await client.get(f"/api/v1/deals/{deal.id}/access")
    assert anonymous.status_code == 200
    body = anonymous.json()
    assert body["access"]["reason"] == "locked_no_user"
    assert body["lockStatus"] == {
        "isLocked": True,
        "showLockOverlay": True,
        "showMemberBadge": True,
        "canRedeem": False,
    }

    member = await client.get(f"/api/v1/deals/{deal.id}/access", headers=_as(seeded.member))
    assert member.json()["access"]["reason"] == "member_with_pass"
    assert member.json()["lockStatus"]["canRedeem"] is True

    missing = await client.get(f"/api/v1/deals/{uuid4()}/access")
    assert missing.status_code == 404
    assert missing.json()["reason"] == "not_found"


@pytest.mark.asyncio
async def test_session_header_is_required_and_validated(client, seeded, make_deal) -> None:
    deal = await make_deal()

    missing = await client.post(f"/api/v1/deals/{deal.id}/codes")
    invalid = await client.post(f"/api/v1/deals/{deal.id}/codes", headers={"X-Session-User": "nope"})
    unknown = await client.post(f"/api/v1/deals/{deal.id}/codes", headers={"X-Session-User": str(uuid4())})

    assert missing.status_code == 401
    assert invalid.status_code == 400
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_issue_code_returns_201_then_replays_with_200(client, seeded, make_deal) -> None:
    deal = await make_deal()

    first = await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))
    second = await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))

    assert first.status_code == 201
    assert first.json()["reused"] is False
    assert second.status_code == 200
    assert second.json()["reused"] is True
    assert second.json()["code"] == first.json()["code"]
    assert second.json()["redemptionId"] == first.json()["redemptionId"]


@pytest.mark.asyncio
async def test_locked_deal_returns_403_for_non_members(client, seeded, make_deal) -> None:
    deal = await make_deal(is_pass_locked=True)

    response = await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))

    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "reason": "membership_required",
        "message": "This deal is for Rise Local Pass members. Join to unlock it.",
    }


@pytest.mark.asyncio
async def test_vendor_verification_flow(client, seeded, make_deal) -> None:
    deal = await make_deal()
    issued = (await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))).json()
    verify_url = f"/api/v1/vendors/{seeded.vendor.id}/redemptions/verify"

    not_owner = await client.post(verify_url, json={"code": issued["code"]}, headers=_as(seeded.shopper))
    assert not_owner.status_code == 403

    verified = await client.post(verify_url, json={"code": issued["code"].lower()}, headers=_as(seeded.owner))
    assert verified.status_code == 200
    assert verified.json()["redemption"]["status"] == "verified"
    assert verified.json()["redemption"]["id"] == issued["redemptionId"]

    replay = await client.post(verify_url, json={"code": issued["code"]}, headers=_as(seeded.owner))
    assert replay.status_code == 409
    assert replay.json()["reason"] == "already_consumed"

    unknown = await client.post(verify_url, json={"code": "ZZZZZZ"}, headers=_as(seeded.owner))
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_vendor_routes_check_ownership(client, seeded) -> None:
    foreign = await client.get(f"/api/v1/vendors/{seeded.other_vendor.id}/redemptions", headers=_as(seeded.owner))
    missing = await client.get(f"/api/v1/vendors/{uuid4()}/redemptions", headers=_as(seeded.owner))

    assert foreign.status_code == 403
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_cooldown_maps_to_429_with_retry_after(client, seeded, make_deal) -> None:
    deal = await make_deal(cooldown_hours=24, max_redemptions_per_user=5)
    issued = (await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))).json()
    await client.post(
        f"/api/v1/vendors/{seeded.vendor.id}/redemptions/verify",
        json={"code": issued["code"]},
        headers=_as(seeded.owner),
    )

    blocked = await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))

    assert blocked.status_code == 429
    assert blocked.json()["reason"] == "cooldown_active"
    assert 0 < int(blocked.headers["Retry-After"]) <= 24 * 3600
    assert blocked.json()["retryAfterSeconds"] == int(blocked.headers["Retry-After"])


@pytest.mark.asyncio
async def test_button_redeem_and_can_redeem(client, seeded, make_deal) -> None:
    deal = await make_deal(title="Free cookie")

    eligible = await client.get(f"/api/v1/deals/{deal.id}/can-redeem", headers=_as(seeded.shopper))
    assert eligible.json() == {"success": True, "canRedeem": True, "reason": None, "message": None}

    redeemed = await client.post(
        f"/api/v1/deals/{deal.id}/redeem",
        json={"source": "deal_page"},
        headers=_as(seeded.shopper),
    )
    assert redeemed.status_code == 201
    assert redeemed.json()["dealTitle"] == "Free cookie"
    assert redeemed.json()["vendorName"] == "Corner Bakery"
    assert redeemed.json()["redemption"]["source"] == "deal_page"

    again = await client.post(f"/api/v1/deals/{deal.id}/redeem", headers=_as(seeded.shopper))
    assert again.status_code == 429
    assert again.json()["reason"] == "frequency_window_active"

    after = await client.get(f"/api/v1/deals/{deal.id}/can-redeem", headers=_as(seeded.shopper))
    assert after.status_code == 200
    assert after.json()["canRedeem"] is False
    assert after.json()["reason"] == "frequency_window_active"

    missing = await client.get(f"/api/v1/deals/{uuid4()}/can-redeem", headers=_as(seeded.shopper))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_inactive_deal_maps_to_400(client, seeded, make_deal) -> None:
    deal = await make_deal(is_active=False)

    response = await client.post(f"/api/v1/deals/{deal.id}/redeem", headers=_as(seeded.shopper))

    assert response.status_code == 400
    assert response.json()["reason"] == "inactive_deal"


@pytest.mark.asyncio
async def test_member_history_pagination(client, seeded, make_deal) -> None:
    for title in ("One", "Two", "Three"):
        deal = await make_deal(title=title)
        await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))

    first = await client.get("/api/v1/redemptions", params={"limit": 2}, headers=_as(seeded.shopper))
    assert first.status_code == 200
    assert len(first.json()["redemptions"]) == 2
    cursor = first.json()["nextCursor"]
    assert cursor

    second = await client.get("/api/v1/redemptions", params={"limit": 2, "cursor": cursor}, headers=_as(seeded.shopper))
    assert len(second.json()["redemptions"]) == 1
    assert second.json()["nextCursor"] is None

    seen = {item["id"] for item in first.json()["redemptions"] + second.json()["redemptions"]}
    assert len(seen) == 3

    filtered = await client.get("/api/v1/redemptions", params={"status": "verified"}, headers=_as(seeded.shopper))
    assert filtered.json()["redemptions"] == []

    broken = await client.get("/api/v1/redemptions", params={"cursor": "%%%"}, headers=_as(seeded.shopper))
    assert broken.status_code == 400

    too_many = await client.get("/api/v1/redemptions", params={"limit": 500}, headers=_as(seeded.shopper))
    assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_redemption_detail_is_owner_only(client, seeded, make_deal) -> None:
    deal = await make_deal()
    issued = (await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))).json()

    mine = await client.get(f"/api/v1/redemptions/{issued['redemptionId']}", headers=_as(seeded.shopper))
    theirs = await client.get(f"/api/v1/redemptions/{issued['redemptionId']}", headers=_as(seeded.member))

    assert mine.status_code == 200
    assert mine.json()["redemption"]["code"] == issued["code"]
    assert theirs.status_code == 404


@pytest.mark.asyncio
async def test_void_requires_admin_key_and_is_idempotent(client, seeded, make_deal, monkeypatch) -> None:
    monkeypatch.setattr(settings, "admin_api_key", "secret")
    deal = await make_deal()
    issued = (await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))).json()
    url = f"/api/v1/redemptions/{issued['redemptionId']}/void"

    unauthorized = await client.post(url, json={"reason": "Mistake"})
    assert unauthorized.status_code == 401

    admin = {"X-API-Key": "secret"}
    first = await client.post(url, json={"reason": "Mistake"}, headers=admin)
    assert first.status_code == 200
    assert first.json()["alreadyVoided"] is False
    assert first.json()["redemption"]["voidReason"] == "Mistake"

    second = await client.post(url, json={"reason": "Again"}, headers=admin)
    assert second.json()["alreadyVoided"] is True

    blank = await client.post(url, json={"reason": "   "}, headers=admin)
    assert blank.status_code == 400

    missing = await client.post(f"/api/v1/redemptions/{uuid4()}/void", json={"reason": "Mistake"}, headers=admin)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_void_is_closed_without_configured_admin_key(client, seeded, make_deal, monkeypatch) -> None:
    monkeypatch.setattr(settings, "admin_api_key", "")
    deal = await make_deal()
    redeemed = await client.post(f"/api/v1/deals/{deal.id}/redeem", headers=_as(seeded.shopper))
    assert redeemed.status_code == 201

    url = f"/api/v1/redemptions/{redeemed.json()['redemption']['id']}/void"
    self_void = await client.post(url, json={"reason": "Changed my mind"}, headers=_as(seeded.shopper))
    assert self_void.status_code == 503

    again = await client.post(f"/api/v1/deals/{deal.id}/redeem", headers=_as(seeded.shopper))
    assert again.status_code == 429
    assert again.json()["reason"] == "frequency_window_active"

    counters = await client.get("/api/v1/observability/redemptions")
    assert counters.status_code == 503


@pytest.mark.asyncio
async def test_coupon_pool_endpoints(client, seeded, make_deal) -> None:
    deal = await make_deal(coupon_redemption_type=CouponRedemptionType.PASS_UNIQUE_CODE_POOL)
    base = f"/api/v1/vendors/{seeded.vendor.id}/deals/{deal.id}/codes"

    uploaded = await client.post(base, json={"codes": ["POOL-1", "POOL-2", "POOL-1"]}, headers=_as(seeded.owner))
    assert uploaded.status_code == 201
    assert uploaded.json() == {"success": True, "added": 2}

    blank = await client.post(base, json={"codes": ["  "]}, headers=_as(seeded.owner))
    assert blank.status_code == 400

    denied = await client.post(f"/api/v1/deals/{deal.id}/coupon-code", headers=_as(seeded.shopper))
    assert denied.status_code == 403

    claimed = await client.post(f"/api/v1/deals/{deal.id}/coupon-code", headers=_as(seeded.member))
    assert claimed.status_code == 200
    assert claimed.json()["type"] == "UNIQUE"
    assert claimed.json()["code"] in {"POOL-1", "POOL-2"}

    redeemed = await client.post(f"{base}/redeem", json={"code": claimed.json()["code"]}, headers=_as(seeded.owner))
    assert redeemed.status_code == 200
    assert redeemed.json()["userId"] == str(seeded.member.id)

    stats = await client.get(f"{base}/stats", headers=_as(seeded.owner))
    assert stats.json() == {
        "success": True,
        "available": 1,
        "reserved": 0,
        "redeemed": 1,
        "expired": 0,
        "total": 2,
    }


@pytest.mark.asyncio
async def test_observability_endpoints_report_outcomes(client, seeded, make_deal, monkeypatch) -> None:
    monkeypatch.setattr(settings, "admin_api_key", "secret")
    admin = {"X-API-Key": "secret"}
    deal = await make_deal()
    await client.post(f"/api/v1/deals/{deal.id}/codes", headers=_as(seeded.shopper))

    snapshot = await client.get("/api/v1/observability/redemptions", headers=admin)
    assert snapshot.status_code == 200
    assert snapshot.json()["outcomes"]["issue_code"] == {"success": 1}

    metrics = await client.get("/api/v1/observability/prometheus", headers=admin)
    assert metrics.status_code == 200
    assert 'riselocal_redemption_outcomes_total{operation="issue_code",outcome="success"} 1' in metrics.text
