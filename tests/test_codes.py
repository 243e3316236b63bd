import pytest
from sqlalchemy import select

from hivex.models.coupon import Coupon
from hivex.services import codes
from hivex.services.exceptions import CodeSpaceExhaustedError, ValidationError


def test_resolve_charset_named_and_literal():
    assert codes.resolve_charset("numbers") == "0123456789"
    assert len(codes.resolve_charset("alphanumeric")) == 62
    assert codes.resolve_charset("ABBA") == "AB"


def test_resolve_charset_rejects_empty():
    with pytest.raises(ValidationError):
        codes.resolve_charset("")


def test_random_code_uses_charset_and_length():
    for _ in range(50):
        code = codes.random_code("XYZ", 6)
        assert len(code) == 6
        assert set(code) <= set("XYZ")


def test_random_code_rejects_zero_length():
    with pytest.raises(ValidationError):
        codes.random_code("XYZ", 0)


def test_code_space():
    assert codes.code_space("0123456789", 4) == 10_000
    assert codes.code_space(codes.resolve_charset("alphanumeric"), 4) == 62**4


def test_generate_skips_codes_already_in_use(seed, monkeypatch):
    venue = seed.venue()
    seed.deal(venue.id, total_created=1)

    async def _existing(db):
        return (await db.execute(select(Coupon.code))).scalar_one()

    existing = seed.call(_existing)
    draws = iter([existing, existing, "FRESH1"])
    monkeypatch.setattr(codes, "random_code", lambda charset, length: next(draws))

    assert seed.call(codes.generate) == "FRESH1"


def test_generate_honours_reserved_batch(seed, monkeypatch):
    draws = iter(["AAAA", "AAAA", "BBBB"])
    monkeypatch.setattr(codes, "random_code", lambda charset, length: next(draws))

    reserved = {"AAAA"}
    assert seed.call(codes.generate, reserved=reserved) == "BBBB"
    assert reserved == {"AAAA", "BBBB"}


def test_generate_gives_up_after_max_retries(seed, monkeypatch):
    monkeypatch.setattr(codes, "random_code", lambda charset, length: "SAME")

    with pytest.raises(CodeSpaceExhaustedError):
        seed.call(codes.generate, reserved={"SAME"}, max_retries=3)
