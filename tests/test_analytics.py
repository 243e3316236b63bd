import pytest

from hivex.services.allocation import claim_coupon
from hivex.services.analytics import redemption_analytics
from hivex.services.exceptions import ForbiddenError
from hivex.services.redemption import redeem_coupon

from conftest import utc


def test_analytics_requires_broker(seed):
    member = seed.member()
    with pytest.raises(ForbiddenError):
        seed.call(redemption_analytics, broker=member)


def test_analytics_per_title(seed):
    venue = seed.venue()
    broker = seed.member("broker@members.example.com", is_broker=True)
    alice = seed.member("alice@members.example.com")
    bob = seed.member("bob@members.example.com")

    happy = seed.deal(venue.id, title="Happy hour", total_created=4, expiry=utc(10))
    seed.deal(venue.id, title="Free fries", total_created=2, expiry=utc(10))

    for who, days in ((alice, 2), (bob, 4)):
        coupon = seed.call(claim_coupon, deal_id=happy.id, member_id=who.id)
        seed.call(redeem_coupon, code=coupon.code, member_id=who.id, now=utc(days))

    rows = {r["title"]: r for r in seed.call(redemption_analytics, broker=broker)}

    assert set(rows) == {"Happy hour", "Free fries"}
    happy_row = rows["Happy hour"]
    assert happy_row["count"] == 4
    assert happy_row["total_usage"] == 2
    assert happy_row["redemption_rate"] == 0.5
    assert happy_row["total_span_days"] == pytest.approx(6, abs=0.01)
    assert happy_row["average_span_days"] == pytest.approx(3, abs=0.01)

    fries = rows["Free fries"]
    assert fries["count"] == 2
    assert fries["total_usage"] == 0
    assert fries["average_span_days"] is None
    assert fries["redemption_rate"] == 0.0
