# hivex/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from hivex.models.member import Member  # noqa: F401
from hivex.models.venue import Venue  # noqa: F401

from hivex.models.deal import Deal, deal_members  # noqa: F401

from hivex.models.qr_image import QrImage  # noqa: F401
from hivex.models.coupon import AssignedTo, Coupon, Unassigned  # noqa: F401
from hivex.models.coupon_event import CouponEvent  # noqa: F401
