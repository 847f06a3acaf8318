from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.core.database import Base


class FanbasesProduct(Base):
    __tablename__ = "fanbases_products"

    id = Column(Integer, primary_key=True, index=True)
    fanbases_product_id = Column(String, unique=True, index=True)
    product_type = Column(String, index=True)
    internal_reference = Column(String, unique=True, index=True)
    price_cents = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class FanbasesCustomer(Base):
    __tablename__ = "fanbases_customers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, index=True)
    fanbases_customer_id = Column(String, index=True, nullable=True)
    payment_method_id = Column(String, nullable=True)
    email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
