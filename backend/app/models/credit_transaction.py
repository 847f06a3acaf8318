from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func

from app.core.database import Base


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True)
    amount = Column(Numeric(14, 2))
    type = Column(String, index=True)
    payment_method = Column(String, index=True, nullable=True)
    charge_id = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    transaction_metadata = Column("metadata", JSON, nullable=True)
