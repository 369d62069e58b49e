"""
Order Service — テーブル定義

  order_headers  注文ヘッダ (1) ──< order_lines 注文明細 (N)  ※ ON DELETE CASCADE
  audit_events   監査ログ (追記のみ)

金額はすべて NUMERIC(18,2) + Decimal で扱う。float は使わない。
"""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MONEY = Numeric(18, 2, asdecimal=True)

SUBMITTING_USER_MAX_LENGTH = 100
EVENT_NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000


class AuditEventName(str, enum.Enum):
    ORDER_STARTED = "ORDER_STARTED"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_REJECTED = "ORDER_REJECTED"
    ORDER_ERROR = "ORDER_ERROR"


class OrderHeader(Base):
    __tablename__ = "order_headers"
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    total = Column(MONEY, nullable=False)
    submitting_user = Column(String(SUBMITTING_USER_MAX_LENGTH), nullable=False)
    lines = relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class OrderLine(Base):
    __tablename__ = "order_lines"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("order_headers.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    order = relationship("OrderHeader", back_populates="lines")


class AuditEvent(Base):
    __tablename__ = "audit_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_name = Column(String(EVENT_NAME_MAX_LENGTH), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
