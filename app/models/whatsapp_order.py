import uuid

from sqlalchemy import Boolean, Column, Numeric, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.sql import func

from app.database import Base

ORDER_STATUSES = ("pending", "contacted", "confirmed", "cancelled", "completed")


class WhatsAppOrder(Base):
    __tablename__ = "whatsapp_orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_number = Column(Text, nullable=False, unique=True)
    customer_phone = Column(Text, nullable=False)
    customer_name = Column(Text)
    items = Column(JSONB, nullable=False, default=list)
    subtotal = Column(Numeric(14, 2), nullable=False)
    commission_percentage = Column(Numeric(5, 2), nullable=False)
    commission_amount = Column(Numeric(14, 2), nullable=False)
    final_total = Column(Numeric(14, 2), nullable=False)  # net amount for the store
    style = Column(Text)
    budget = Column(Text)
    status = Column(Text, nullable=False, default="pending")  # see ORDER_STATUSES
    notified_to_intermediary = Column(Boolean, nullable=False, default=False)
    notified_to_owner = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
