from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Service(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Name of a <template>.sql file under the schema template directory.
    schema_template: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ClientService(Base):
    __tablename__ = "client_services"
    __table_args__ = (
        UniqueConstraint("client_id", "service_id", name="uq_client_services_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    service_id: Mapped[int] = mapped_column(Integer, ForeignKey("services.id", ondelete="CASCADE"), index=True)
    # Subscription-level switch, independent of Service.is_active.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Database(Base):
    __tablename__ = "databases"
    __table_args__ = (
        UniqueConstraint("client_id", "database_name", name="uq_databases_client_database_name"),
    )
    # Load server-side defaults (timestamps) right after insert.
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    service_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String)
    instance_identifier: Mapped[str] = mapped_column(String, unique=True)
    # Identifier echoed back by the provider on create.
    provider_instance_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Null until the provider reports the instance available.
    host: Mapped[str | None] = mapped_column(String, nullable=True)
    port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    database_name: Mapped[str] = mapped_column(String)
    username: Mapped[str] = mapped_column(String)
    # Write-once; redacted from every read path.
    password: Mapped[str] = mapped_column(Text)
    # Free-form provider state (creating, available, deleting, ...).
    status: Mapped[str] = mapped_column(String, default="pending", nullable=False)
    provisioning_status: Mapped[str] = mapped_column(String, default="queued", nullable=False, index=True)
    engine: Mapped[str] = mapped_column(String)
    engine_version: Mapped[str | None] = mapped_column(String, nullable=True)
    instance_class: Mapped[str] = mapped_column(String)
    storage_type: Mapped[str] = mapped_column(String)
    allocated_storage: Mapped[int] = mapped_column(Integer)
    encrypted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Last failure cause; never cleared.
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def to_public_dict(self) -> dict[str, Any]:
        # Password never leaves the provisioning path.
        return {
            "id": self.id,
            "client_id": self.client_id,
            "service_id": self.service_id,
            "name": self.name,
            "instance_identifier": self.instance_identifier,
            "host": self.host,
            "port": self.port,
            "database_name": self.database_name,
            "username": self.username,
            "status": self.status,
            "provisioning_status": self.provisioning_status,
            "engine": self.engine,
            "engine_version": self.engine_version,
            "instance_class": self.instance_class,
            "storage_type": self.storage_type,
            "allocated_storage": self.allocated_storage,
            "encrypted": self.encrypted,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class RdsInstance(Base):
    __tablename__ = "rds_instances"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Opaque caller reference, not a foreign key.
    client_ref: Mapped[str] = mapped_column(String, index=True)
    instance_identifier: Mapped[str] = mapped_column(String, unique=True)
    status: Mapped[str] = mapped_column(String)
    endpoint: Mapped[str | None] = mapped_column(String, nullable=True)
    port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
