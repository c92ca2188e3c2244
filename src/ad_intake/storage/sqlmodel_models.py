"""SQLModel ORM tables for intake storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlmodel import Field, SQLModel


class MessageRecord(SQLModel, table=True):
    __tablename__ = "message_records"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    message_id: str = Field(sa_column=Column(String, nullable=False, unique=True))
    request_text: str = Field(sa_column=Column(Text, nullable=False))
    agent_used: str
    status: str = Field(index=True)
    output_data: str = Field(
        default="{}",
        sa_column=Column(Text, nullable=False, server_default="{}"),
    )
    source: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueMessageRecord(SQLModel, table=True):
    __tablename__ = "extract_queue"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_extract_queue_visible", "status", "run_after"),)

    id: int | None = Field(default=None, primary_key=True)
    message_id: str = Field(index=True)
    body_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    delivery_count: int = Field(default=0)
    run_after: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    lease_expires_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class KeyValueEntry(SQLModel, table=True):
    __tablename__ = "kv_store"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class MediaRecord(SQLModel, table=True):
    __tablename__ = "whatsapp_media"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    file_name: str
    url: str | None = None
    uploaded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
