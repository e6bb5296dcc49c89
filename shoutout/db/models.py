"""SQLAlchemy async database models for Shout Out.

Maps to the hosted Postgres schema. Every ingested table carries a natural
unique key so that upserts are idempotent.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class EstimateModel(Base):
    """One sold ServiceTitan estimate, keyed by its external id."""

    __tablename__ = "estimates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    estimate_id: Mapped[str] = mapped_column(Text, nullable=False)

    # Denormalized display names
    salesperson: Mapped[str] = mapped_column(Text, nullable=False)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    option_name: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Event flags
    is_tgl: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_big_sale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Cross-sale attribution
    has_water_quality: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    water_quality_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    water_quality_item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_air_quality: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    air_quality_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    air_quality_item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Provenance: "poll" or "backfill"
    source: Mapped[str] = mapped_column(Text, nullable=False, default="poll")
    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("estimate_id", name="uq_estimates_estimate_id"),
        Index("idx_estimates_tgl_sold", "is_tgl", "sold_at"),
    )


class PricebookItemModel(Base):
    """Material, equipment or service from the ServiceTitan pricebook."""

    __tablename__ = "pricebook_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sku_code: Mapped[str | None] = mapped_column(Text)
    sku_type: Mapped[str] = mapped_column(Text, nullable=False)  # Material/Equipment/Service
    display_name: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    cross_sale_group: Mapped[str | None] = mapped_column(Text, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("sku_id", name="uq_pricebook_items_sku_id"),)


class SalespersonModel(Base):
    """Technician who sells estimates."""

    __tablename__ = "salespeople"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    technician_id: Mapped[int | None] = mapped_column(BigInteger)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    business_unit: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("technician_id", name="uq_salespeople_technician_id"),
    )


class AppStateModel(Base):
    """Process-wide key/value settings (values stored as JSON)."""

    __tablename__ = "app_state"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[Any] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class WebhookModel(Base):
    """Google Chat incoming-webhook destination."""

    __tablename__ = "webhooks"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class WebhookLogModel(Base):
    """One delivery attempt of a celebration to one webhook."""

    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    webhook_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), index=True)
    celebration_type: Mapped[str] = mapped_column(Text, nullable=False)
    estimate_id: Mapped[str | None] = mapped_column(Text, index=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)  # success / failed
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class PollLogModel(Base):
    """Operational record of one poll run or polling toggle."""

    __tablename__ = "poll_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    estimates_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimates_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


class CelebrationGifModel(Base):
    """GIF attached to celebration messages, tagged tgl and/or big_sale."""

    __tablename__ = "celebration_gifs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class CelebrationMessageModel(Base):
    """Message template with ``{name}`` and ``{amount}`` placeholders."""

    __tablename__ = "celebration_messages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    category: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    message_text: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
