import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from hivex.core.config import settings
from hivex.models.coupon import AssignedTo, Coupon
from hivex.services import allocation
from hivex.services import deals as deal_service
from hivex.services.allocation import claim_coupon, count_member_coupons, list_member_coupons
from hivex.services.coupons import pool_summary
from hivex.services.exceptions import (
    AlreadyClaimedError,
    CapExceededError,
    DealInactiveError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    PoolExhaustedError,
    StorageError,
)

from conftest import utc


async def _first_coupon_id(db, deal_id):
    res = await db.execute(select(Coupon.id).where(Coupon.deal_id == deal_id).order_by(Coupon.id).limit(1))
    return res.scalar_one()


def test_claim_assigns_first_unclaimed_coupon(seed):
    venue = seed.venue()
    member = seed.member()
    deal = seed.deal(venue.id, total_created=3)
    first_id = seed.call(_first_coupon_id, deal_id=deal.id)

    coupon = seed.call(claim_coupon, deal_id=deal.id, member_id=member.id)

    assert coupon.id == first_id
    assert coupon.assignment == AssignedTo(member_id=member.id)
    assert coupon.claimed_at is not None
    assert coupon.state == "claimed"
    assert seed.call(pool_summary, deal_id=deal.id)["unclaimed"] == 2
    assert [c.code for c in seed.call(list_member_coupons, member_id=member.id)] == [coupon.code]


def test_second_claim_on_same_deal_is_rejected(seed):
    venue = seed.venue()
    member = seed.member()
    deal = seed.deal(venue.id, total_created=3)

    seed.call(claim_coupon, deal_id=deal.id, member_id=member.id)
    with pytest.raises(AlreadyClaimedError):
        seed.call(claim_coupon, deal_id=deal.id, member_id=member.id)

    assert seed.call(count_member_coupons, member_id=member.id) == 1


def test_pool_exhausted_for_second_member(seed):
    venue = seed.venue()
    m1 = seed.member("m1@members.example.com")
    m2 = seed.member("m2@members.example.com")
    deal = seed.deal(venue.id, total_created=1)

    seed.call(claim_coupon, deal_id=deal.id, member_id=m1.id)
    with pytest.raises(PoolExhaustedError):
        seed.call(claim_coupon, deal_id=deal.id, member_id=m2.id)

    summary = seed.call(pool_summary, deal_id=deal.id)
    assert summary["total"] == 1
    assert summary["unclaimed"] == 0


def test_cap_is_enforced_across_deals(seed):
    venue = seed.venue()
    member = seed.member()
    cap = settings.MEMBER_COUPON_CAP
    deals = [seed.deal(venue.id, title=f"Deal {i}", total_created=1) for i in range(cap + 1)]

    for deal in deals[:cap]:
        seed.call(claim_coupon, deal_id=deal.id, member_id=member.id)

    with pytest.raises(CapExceededError):
        seed.call(claim_coupon, deal_id=deals[cap].id, member_id=member.id)

    assert seed.call(count_member_coupons, member_id=member.id) == cap
    assert seed.call(pool_summary, deal_id=deals[cap].id)["unclaimed"] == 1


def test_claim_requires_active_unexpired_deal(seed):
    venue = seed.venue()
    member = seed.member()
    inactive = seed.deal(venue.id, title="Inactive", activate=False)
    with pytest.raises(DealInactiveError):
        seed.call(claim_coupon, deal_id=inactive.id, member_id=member.id)

    short = seed.deal(venue.id, title="Short", expiry=utc(1))
    with pytest.raises(ExpiredError):
        seed.call(claim_coupon, deal_id=short.id, member_id=member.id, now=utc(2))

    with pytest.raises(NotFoundError):
        seed.call(claim_coupon, deal_id=999_999, member_id=member.id)


def test_claim_restricted_to_eligible_members(seed):
    venue = seed.venue()
    invited = seed.member("invited@members.example.com")
    outsider = seed.member("outsider@members.example.com")
    deal = seed.deal(venue.id)
    seed.call(deal_service.set_eligible_members, deal_id=deal.id, venue_id=venue.id, member_ids=[invited.id])

    with pytest.raises(ForbiddenError):
        seed.call(claim_coupon, deal_id=deal.id, member_id=outsider.id)

    coupon = seed.call(claim_coupon, deal_id=deal.id, member_id=invited.id)
    assert coupon.member_id == invited.id


def test_claim_moves_past_a_candidate_taken_concurrently(seed, monkeypatch):
    venue = seed.venue()
    rival = seed.member("rival@members.example.com")
    member = seed.member()
    deal = seed.deal(venue.id, total_created=2)
    first_id = seed.call(_first_coupon_id, deal_id=deal.id)

    real_next = allocation._next_unclaimed_id
    calls = []

    async def stale_first_read(db, *, deal_id, skip):
        calls.append(set(skip))
        if not skip:
            # rival takes the row between our read and our write
            await allocation._assign(db, coupon_id=first_id, member_id=rival.id, now=utc())
            return first_id
        return await real_next(db, deal_id=deal_id, skip=skip)

    monkeypatch.setattr(allocation, "_next_unclaimed_id", stale_first_read)

    coupon = seed.call(claim_coupon, deal_id=deal.id, member_id=member.id)

    assert coupon.id != first_id
    assert calls == [set(), {first_id}]
    assert seed.call(pool_summary, deal_id=deal.id) == {
        "deal_id": deal.id,
        "total": 2,
        "unclaimed": 0,
        "claimed": 2,
        "redeemed": 0,
    }


def test_member_deals_lists_only_claimable(seed):
    venue = seed.venue()
    member = seed.member()
    other = seed.member("other@members.example.com")
    open_deal = seed.deal(venue.id, title="Open")
    seed.deal(venue.id, title="Draft", issue=False, activate=False)
    private = seed.deal(venue.id, title="Private")
    seed.call(deal_service.set_eligible_members, deal_id=private.id, venue_id=venue.id, member_ids=[other.id])

    titles = [d.title for d in seed.call(deal_service.list_member_deals, member_id=member.id)]
    assert titles == [open_deal.title]


def test_claim_losing_race_for_last_coupon_reports_pool_exhausted(seed, monkeypatch):
    venue = seed.venue()
    winner = seed.member("winner@members.example.com")
    loser = seed.member("loser@members.example.com")
    deal = seed.deal(venue.id, total_created=1)
    only_id = seed.call(_first_coupon_id, deal_id=deal.id)

    real_next = allocation._next_unclaimed_id

    async def winner_commits_after_read(db, *, deal_id, skip):
        if not skip:
            async with seed.factory() as other:
                assert await allocation._assign(other, coupon_id=only_id, member_id=winner.id, now=utc())
                await other.commit()
            return only_id
        return await real_next(db, deal_id=deal_id, skip=skip)

    monkeypatch.setattr(allocation, "_next_unclaimed_id", winner_commits_after_read)

    with pytest.raises(PoolExhaustedError):
        seed.call(claim_coupon, deal_id=deal.id, member_id=loser.id)

    assert [c.id for c in seed.call(list_member_coupons, member_id=winner.id)] == [only_id]
    assert seed.call(count_member_coupons, member_id=loser.id) == 0
    summary = seed.call(pool_summary, deal_id=deal.id)
    assert summary["unclaimed"] == 0
    assert summary["claimed"] == 1


def test_claim_database_failure_is_storage_error(seed, monkeypatch):
    venue = seed.venue()
    member = seed.member()
    deal = seed.deal(venue.id, total_created=1)

    async def broken_assign(db, **kwargs):
        raise OperationalError("UPDATE coupons", {}, Exception("database is locked"))

    monkeypatch.setattr(allocation, "_assign", broken_assign)

    with pytest.raises(StorageError):
        seed.call(claim_coupon, deal_id=deal.id, member_id=member.id)

    assert seed.call(pool_summary, deal_id=deal.id)["unclaimed"] == 1
