from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class Purchase(Base):
    __tablename__ = "user_purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True)
    product_id = Column(String, index=True)
    product_type = Column(String, index=True)
    amount_cents = Column(Integer, default=0)
    # Provider charge id; unique so a replayed grant fails on insert.
    charge_id = Column(String, unique=True, index=True, nullable=True)
    status = Column(String, index=True, default="completed")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
