"""
Modelos de base de datos (ORM).

Tablas:
- connections / sync_watermarks: estado de la conexion con la cuenta remota
- sync_jobs: cola durable de jobs con checkpoint por pagina
- clio_*: proyecciones locales tipadas de las entidades remotas
"""
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from practice_sync.infrastructure.database.session import Base
from practice_sync.shared.constants.sync_constants import ConnectionStatus, JobStatus


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class ConnectionModel(Base):
    """Modelo de base de datos para conexiones (una activa por usuario)."""

    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    remote_account_id = Column(String(64), nullable=False)
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    credentials_version = Column(Integer, nullable=False, default=0)
    status = Column(
        SQLEnum(ConnectionStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=ConnectionStatus.ACTIVE,
    )
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    webhook_subscriptions = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Connection(id={self.id}, user_id={self.user_id}, status={self.status})>"


class SyncWatermarkModel(Base):
    """Marca de agua por (conexion, tipo de entidad) para syncs incrementales."""

    __tablename__ = "sync_watermarks"
    __table_args__ = (
        UniqueConstraint("connection_id", "entity_type", name="uq_sync_watermarks_key"),
    )

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False)
    entity_type = Column(String(32), nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=False)


class SyncJobModel(Base):
    """Modelo de base de datos para la cola durable de jobs."""

    __tablename__ = "sync_jobs"
    __table_args__ = (
        Index("ix_sync_jobs_key_status", "connection_id", "entity_type", "status"),
        Index("ix_sync_jobs_status_available", "status", "available_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(String(36), nullable=True, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False)
    entity_type = Column(String(32), nullable=False)
    mode = Column(String(16), nullable=False)
    remote_id = Column(String(64), nullable=True)
    status = Column(
        SQLEnum(JobStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=JobStatus.PENDING,
    )
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)

    # Checkpoint por pagina
    cursor = Column(Text, nullable=True)
    pages_completed = Column(Integer, nullable=False, default=0)
    records_processed = Column(Integer, nullable=False, default=0)

    # Filtros congelados en el primer claim (los reintentos reusan los mismos)
    updated_since = Column(DateTime(timezone=True), nullable=True)
    sync_started_at = Column(DateTime(timezone=True), nullable=True)

    available_at = Column(DateTime(timezone=True), nullable=False)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    worker_id = Column(String(64), nullable=True)
    cancel_requested = Column(Boolean, nullable=False, default=False)

    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    error_chain = Column(JSON, nullable=True)

    enqueued_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<SyncJob(id={self.id}, entity_type={self.entity_type}, "
            f"mode={self.mode}, status={self.status})>"
        )


class _RemoteEntityColumns:
    """Columnas tecnicas comunes a todas las proyecciones remotas."""

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(Integer, nullable=False, index=True)
    remote_id = Column(String(64), nullable=False)
    remote_created_at = Column(DateTime(timezone=True), nullable=True)
    remote_updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class MatterModel(_RemoteEntityColumns, Base):
    """Proyeccion local de un matter (expediente)."""

    __tablename__ = "clio_matters"
    __table_args__ = (UniqueConstraint("connection_id", "remote_id", name="uq_clio_matters_natural_key"),)

    display_number = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=True)
    open_date = Column(Date, nullable=True)
    close_date = Column(Date, nullable=True)
    billable = Column(Boolean, nullable=True)
    practice_area = Column(String(255), nullable=True)
    client_remote_id = Column(String(64), nullable=True)
    responsible_attorney_remote_id = Column(String(64), nullable=True)


class ContactModel(_RemoteEntityColumns, Base):
    """Proyeccion local de un contacto (persona u organizacion)."""

    __tablename__ = "clio_contacts"
    __table_args__ = (UniqueConstraint("connection_id", "remote_id", name="uq_clio_contacts_natural_key"),)

    name = Column(String(255), nullable=False)
    contact_type = Column(String(32), nullable=True)
    primary_email_address = Column(String(255), nullable=True)
    primary_phone_number = Column(String(64), nullable=True)
    is_client = Column(Boolean, nullable=True)


class ActivityModel(_RemoteEntityColumns, Base):
    """Proyeccion local de una actividad (time entry / expense entry)."""

    __tablename__ = "clio_activities"
    __table_args__ = (UniqueConstraint("connection_id", "remote_id", name="uq_clio_activities_natural_key"),)

    activity_type = Column(String(32), nullable=True)
    activity_date = Column(Date, nullable=True)
    quantity = Column(Numeric(18, 4), nullable=True)
    price = Column(Numeric(18, 4), nullable=True)
    total = Column(Numeric(18, 4), nullable=True)
    note = Column(Text, nullable=True)
    billed = Column(Boolean, nullable=True)
    matter_remote_id = Column(String(64), nullable=True)
    user_remote_id = Column(String(64), nullable=True)


class TaskModel(_RemoteEntityColumns, Base):
    """Proyeccion local de una tarea."""

    __tablename__ = "clio_tasks"
    __table_args__ = (UniqueConstraint("connection_id", "remote_id", name="uq_clio_tasks_natural_key"),)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=True)
    priority = Column(String(32), nullable=True)
    due_at = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    matter_remote_id = Column(String(64), nullable=True)
    assignee_remote_id = Column(String(64), nullable=True)


class UserModel(_RemoteEntityColumns, Base):
    """Proyeccion local de un usuario de la firma (timekeeper)."""

    __tablename__ = "clio_users"
    __table_args__ = (UniqueConstraint("connection_id", "remote_id", name="uq_clio_users_natural_key"),)

    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    enabled = Column(Boolean, nullable=True)
    rate = Column(Numeric(18, 4), nullable=True)
