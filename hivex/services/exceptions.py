"""
Service-layer exceptions.

Every error carries a stable ``code`` string and the HTTP status the API
layer answers with. Routers never catch these; ``hivex.main`` renders them.
"""

from __future__ import annotations


class HivexError(Exception):
    code = "error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(HivexError):
    code = "validation_error"
    default_message = "Invalid input"


class NotFoundError(HivexError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class ForbiddenError(HivexError):
    code = "forbidden"
    status_code = 403
    default_message = "Not allowed"


class DuplicateTitleError(HivexError):
    code = "duplicate_title"
    default_message = "Deal title must be unique"


class DealInactiveError(HivexError):
    code = "deal_inactive"
    default_message = "Deal is not active"


class DealAlreadyIssuedError(HivexError):
    code = "already_issued"
    default_message = "Coupons were already issued for this deal"


class DealFrozenError(HivexError):
    code = "deal_frozen"
    default_message = "Deal cannot be edited after coupons were issued"


class CapExceededError(HivexError):
    code = "cap_exceeded"
    default_message = "Member coupon limit reached"


class PoolExhaustedError(HivexError):
    code = "pool_exhausted"
    default_message = "No coupons left for this deal"


class AlreadyClaimedError(HivexError):
    code = "already_claimed"
    default_message = "Member already holds a coupon for this deal"


class AlreadyRedeemedError(HivexError):
    code = "already_redeemed"
    default_message = "Coupon already redeemed"


class ExpiredError(HivexError):
    code = "expired"
    default_message = "Coupon expired"


class NotOwnedError(HivexError):
    code = "not_owned"
    status_code = 403
    default_message = "Coupon does not belong to this member"


class ConcurrencyConflictError(HivexError):
    """An atomic update lost its race. Claim may be retried; redeem must re-read first."""

    code = "concurrency_conflict"
    default_message = "Concurrent update, try again"


class CodeSpaceExhaustedError(HivexError):
    """Could not draw a free coupon code; the configured length is too short."""

    code = "code_space_exhausted"
    status_code = 500
    default_message = "Coupon code space exhausted"


class StorageError(HivexError):
    code = "storage_error"
    status_code = 500
    default_message = "Storage failure"
