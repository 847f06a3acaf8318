from sqlalchemy import Column, DateTime, Numeric, String
from sqlalchemy.sql import func

from app.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String, nullable=True)
    role = Column(String, default="user")
    credits = Column(Numeric(14, 2), nullable=False, default=0)
    subscription_tier = Column(String, index=True, default="free")
    last_credit_update = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
