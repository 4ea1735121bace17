import uuid
from sqlalchemy import Column, String, Integer, DateTime, Uuid, func
from sqlalchemy.orm import relationship
from marginlens.db.base import Base

class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    timezone = Column(String(50), nullable=False, server_default='UTC', default='UTC')
    seat_count = Column(Integer, nullable=True)  # Falls back to DEFAULT_SEAT_COUNT
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    menu_items = relationship("MenuItem", back_populates="restaurant", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="restaurant", cascade="all, delete-orphan")
    servers = relationship("Server", back_populates="restaurant", cascade="all, delete-orphan")
