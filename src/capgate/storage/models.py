from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    pass


class ModelConfigRow(Base):
    __tablename__ = "model_configs"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    base_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")

    encrypted_api_key: Mapped[str] = mapped_column(String(1024), nullable=False, default="")  # never plaintext
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)

    capabilities: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=lambda: ["chat"])
    protocol_family: Mapped[str] = mapped_column(String(32), nullable=False, default="openai-compatible")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    defaults: Mapped[list["ModelConfigDefault"]] = relationship(
        back_populates="config", cascade="all, delete-orphan", lazy="selectin"
    )


class ModelConfigDefault(Base):
    """Default pointer: capability -> config id. The primary key allows one default per capability."""

    __tablename__ = "model_config_defaults"

    capability: Mapped[str] = mapped_column(String(32), primary_key=True)
    config_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("model_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    config: Mapped[ModelConfigRow] = relationship(back_populates="defaults")
