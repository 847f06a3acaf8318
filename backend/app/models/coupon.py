from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True)
    type = Column(String, index=True)
    months = Column(Integer, nullable=True)
    discount_percent = Column(Integer, nullable=True)
    max_uses = Column(Integer, nullable=True)
    uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, index=True)
    user_id = Column(String, index=True)
    redemption_key = Column(String, unique=True, index=True)
    credits_granted = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
