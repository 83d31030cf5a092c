from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    func,
)
from sqlalchemy.orm import relationship
from app.models.base import Base


class Business(Base):
    __tablename__ = "businesses"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("Users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    owner = relationship("Users", back_populates="businesses")
    subscription = relationship("Subscription", back_populates="business", uselist=False)
