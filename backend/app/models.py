from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


# -------------------------
# Tenancy
# -------------------------

class Firm(Base):
    """
    Tenant boundary. Every firm-scoped row carries firm_id and cascades on delete.
    """
    __tablename__ = "firms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    memberships = relationship(
        "FirmMembership",
        back_populates="firm",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    clients = relationship(
        "Client",
        back_populates="firm",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    matters = relationship(
        "Matter",
        back_populates="firm",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class FirmMembership(Base):
    __tablename__ = "firm_memberships"
    __table_args__ = (
        UniqueConstraint("firm_id", "user_id", name="uq_firm_memberships_firm_user"),
        Index("ix_firm_memberships_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    firm_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("firms.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="fee_earner")  # viewer/fee_earner/admin
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    firm = relationship("Firm", back_populates="memberships")
    user = relationship("User")


# -------------------------
# Practice data
# -------------------------

class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (
        Index("ix_clients_firm_id", "firm_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    firm_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("firms.id", ondelete="CASCADE"),
        nullable=False,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False, default="individual")  # individual | company
    title: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    company_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    address_line1: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    address_line2: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    county: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    firm = relationship("Firm", back_populates="clients")


class Matter(Base):
    __tablename__ = "matters"
    __table_args__ = (
        UniqueConstraint("firm_id", "reference", name="uq_matters_firm_reference"),
        Index("ix_matters_firm_id", "firm_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    firm_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("firms.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    fee_earner_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    reference: Mapped[str] = mapped_column(String(60), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    practice_area: Mapped[str] = mapped_column(String(60), nullable=False)
    sub_type: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    firm = relationship("Firm", back_populates="matters")
    client = relationship("Client")


class PipelineFinding(Base):
    """
    A single extracted fact for a matter. Multiple rows may share a field_key;
    the newest one is the current value.
    """
    __tablename__ = "pipeline_findings"
    __table_args__ = (
        Index("ix_pipeline_findings_matter_created", "matter_id", "created_at"),
        Index("ix_pipeline_findings_firm_id", "firm_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    firm_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("firms.id", ondelete="CASCADE"),
        nullable=False,
    )
    matter_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("matters.id", ondelete="CASCADE"),
        nullable=False,
    )

    field_key: Mapped[str] = mapped_column(String(120), nullable=False)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    impact: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    source_quote: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_key: Mapped[str] = mapped_column(String(120), nullable=False, default="general")
    page_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    page_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# -------------------------
# Templates + generated documents
# -------------------------

class Template(Base):
    """
    firm_id NULL marks a system template visible to every firm.
    """
    __tablename__ = "templates"
    __table_args__ = (
        Index("ix_templates_firm_id", "firm_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    firm_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("firms.id", ondelete="CASCADE"),
        nullable=True,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # document | email
    category: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    merge_fields: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_firm_matter", "firm_id", "matter_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    firm_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("firms.id", ondelete="CASCADE"),
        nullable=False,
    )
    matter_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("matters.id", ondelete="CASCADE"),
        nullable=True,
    )

    title: Mapped[str] = mapped_column(String(400), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    filename: Mapped[str] = mapped_column(String(300), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(120), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    document_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ai_model: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    ai_tokens_used: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class TimelineEvent(Base):
    """
    Append-only matter timeline.
    """
    __tablename__ = "timeline_events"
    __table_args__ = (
        Index("ix_timeline_events_firm_matter", "firm_id", "matter_id"),
        Index("ix_timeline_events_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    firm_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("firms.id", ondelete="CASCADE"),
        nullable=False,
    )
    matter_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("matters.id", ondelete="CASCADE"),
        nullable=False,
    )

    type: Mapped[str] = mapped_column(String(80), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False, default="user")  # user | ai | system
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
