import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from hivex.models.coupon import Coupon
from hivex.models.coupon_event import CouponEvent
from hivex.services import redemption
from hivex.services.allocation import claim_coupon
from hivex.services.coupons import pool_summary
from hivex.services.exceptions import (
    AlreadyRedeemedError,
    ExpiredError,
    NotFoundError,
    NotOwnedError,
    StorageError,
)
from hivex.services.redemption import lookup_coupon, redeem_coupon

from conftest import utc


async def _unclaimed_code(db, deal_id):
    res = await db.execute(
        select(Coupon.code).where(Coupon.deal_id == deal_id, Coupon.member_id.is_(None)).order_by(Coupon.id).limit(1)
    )
    return res.scalar_one()


async def _event_types(db, code):
    res = await db.execute(
        select(CouponEvent.event_type).where(CouponEvent.coupon_code == code).order_by(CouponEvent.id)
    )
    return list(res.scalars().all())


def _claimed(seed, *, total_created=2, expiry=None):
    venue = seed.venue()
    member = seed.member()
    deal = seed.deal(venue.id, total_created=total_created, expiry=expiry)
    coupon = seed.call(claim_coupon, deal_id=deal.id, member_id=member.id)
    return venue, member, deal, coupon


def test_redeem_once_then_already_redeemed(seed):
    _, member, deal, coupon = _claimed(seed)

    redeemed = seed.call(redeem_coupon, code=coupon.code, member_id=member.id)
    assert redeemed.redeemed is True
    assert redeemed.redeemed_at is not None
    assert redeemed.state == "redeemed"

    with pytest.raises(AlreadyRedeemedError):
        seed.call(redeem_coupon, code=coupon.code, member_id=member.id)

    assert seed.call(pool_summary, deal_id=deal.id)["redeemed"] == 1
    assert seed.call(_event_types, code=coupon.code) == ["issued", "claimed", "redeemed"]


def test_redeem_unclaimed_coupon_is_not_owned(seed):
    _, member, deal, _ = _claimed(seed)
    code = seed.call(_unclaimed_code, deal_id=deal.id)

    with pytest.raises(NotOwnedError):
        seed.call(redeem_coupon, code=code, member_id=member.id)


def test_redeem_someone_elses_coupon_is_not_owned(seed):
    _, _, _, coupon = _claimed(seed)
    stranger = seed.member("stranger@members.example.com")

    with pytest.raises(NotOwnedError):
        seed.call(redeem_coupon, code=coupon.code, member_id=stranger.id)


def test_redeem_unknown_code(seed):
    member = seed.member()
    with pytest.raises(NotFoundError):
        seed.call(redeem_coupon, code="NOPE", member_id=member.id)


def test_expired_coupon_cannot_be_redeemed(seed):
    _, member, _, coupon = _claimed(seed, expiry=utc(1))

    with pytest.raises(ExpiredError):
        seed.call(redeem_coupon, code=coupon.code, member_id=member.id, now=utc(2))


def test_expired_wins_over_already_redeemed(seed):
    _, member, _, coupon = _claimed(seed, expiry=utc(1))
    seed.call(redeem_coupon, code=coupon.code, member_id=member.id)

    with pytest.raises(ExpiredError):
        seed.call(redeem_coupon, code=coupon.code, member_id=member.id, now=utc(2))


def test_concurrent_redeem_loser_gets_already_redeemed(seed, monkeypatch):
    _, member, deal, coupon = _claimed(seed)
    real_mark = redemption._mark_redeemed

    async def racing_mark(db, **kwargs):
        # a parallel request commits its redemption first
        async with seed.factory() as other:
            assert await real_mark(other, **kwargs)
            await other.commit()
        return await real_mark(db, **kwargs)

    monkeypatch.setattr(redemption, "_mark_redeemed", racing_mark)

    with pytest.raises(AlreadyRedeemedError):
        seed.call(redeem_coupon, code=coupon.code, member_id=member.id)

    assert seed.call(pool_summary, deal_id=deal.id)["redeemed"] == 1


def test_mark_redeemed_is_compare_and_set(seed):
    _, member, _, coupon = _claimed(seed)
    now = utc()

    async def _twice(db):
        first = await redemption._mark_redeemed(db, coupon_id=coupon.id, member_id=member.id, now=now)
        second = await redemption._mark_redeemed(db, coupon_id=coupon.id, member_id=member.id, now=now)
        await db.commit()
        return first, second

    assert seed.call(_twice) == (True, False)


def test_venue_lookup(seed):
    venue, _, _, coupon = _claimed(seed, expiry=utc(1))
    other_venue = seed.venue("Red Bar")

    assert seed.call(lookup_coupon, code=coupon.code, venue_id=venue.id).id == coupon.id
    with pytest.raises(NotFoundError):
        seed.call(lookup_coupon, code=coupon.code, venue_id=other_venue.id)
    with pytest.raises(ExpiredError):
        seed.call(lookup_coupon, code=coupon.code, venue_id=venue.id, now=utc(2))


def test_redeem_database_failure_is_storage_error(seed, monkeypatch):
    _, member, deal, coupon = _claimed(seed)

    async def broken_mark(db, **kwargs):
        raise OperationalError("UPDATE coupons", {}, Exception("disk I/O error"))

    monkeypatch.setattr(redemption, "_mark_redeemed", broken_mark)

    with pytest.raises(StorageError):
        seed.call(redeem_coupon, code=coupon.code, member_id=member.id)

    assert seed.call(pool_summary, deal_id=deal.id)["redeemed"] == 0
