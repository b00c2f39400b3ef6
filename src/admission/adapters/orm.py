"""
Mapping ORM avec SQLAlchemy (classical mapping).

On définit les tables séparément, puis on mappe les classes
du domaine sur ces tables. Cela permet au modèle de domaine
de rester ignorant de la persistance (persistence ignorance).

Les instants sont stockés en UTC.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    event,
    text,
)
from sqlalchemy.orm import registry

from admission.domain import model

metadata = MetaData()
mapper_registry = registry(metadata=metadata)


def _status(enum_class: type) -> Enum:
    """Colonne texte contrainte aux valeurs d'un Enum du domaine."""
    return Enum(
        enum_class,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
    )


# --- Définition des tables ---

events = Table(
    "events",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("total_capacity", Integer, nullable=False),
    Column("occupied_count", Integer, nullable=False, server_default="0"),
    Column("status", _status(model.EventStatus), nullable=False),
    Column("registration_opens_at", DateTime(timezone=True), nullable=True),
    Column("registration_closes_at", DateTime(timezone=True), nullable=True),
    Column("allow_multiple_modalities", Boolean, nullable=False, default=False),
    Column("shirt_grid_per_modality", Boolean, nullable=False, default=False),
)

modalities = Table(
    "modalities",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("event_id", String(36), ForeignKey("events.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("access_type", _status(model.AccessType), nullable=False),
    Column("capacity", Integer, nullable=True),
    Column("occupied_count", Integer, nullable=False, server_default="0"),
    Column("convenience_fee", Numeric(10, 2), nullable=False, server_default="0"),
    Column("minimum_age", Integer, nullable=True),
    Column("position", Integer, nullable=False, server_default="0"),
)

batches = Table(
    "batches",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("event_id", String(36), ForeignKey("events.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("position", Integer, nullable=False),
    Column("starts_at", DateTime(timezone=True), nullable=False),
    Column("ends_at", DateTime(timezone=True), nullable=True),
    Column("max_uses", Integer, nullable=True),
    Column("used_count", Integer, nullable=False, server_default="0"),
    Column("status", _status(model.BatchStatus), nullable=False),
    Column("visible", Boolean, nullable=False, default=True),
    Index("ix_batches_event_status_position", "event_id", "status", "position"),
)

prices = Table(
    "prices",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("modality_id", String(36), ForeignKey("modalities.id"), nullable=False),
    Column("batch_id", String(36), ForeignKey("batches.id"), nullable=False),
    Column("amount", Numeric(10, 2), nullable=False),
    Index("uq_prices_modality_batch", "modality_id", "batch_id", unique=True),
)

shirt_sizes = Table(
    "shirt_sizes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("event_id", String(36), ForeignKey("events.id"), nullable=False),
    Column("modality_id", String(36), ForeignKey("modalities.id"), nullable=True),
    Column("size", String(10), nullable=False),
    Column("total_quantity", Integer, nullable=False),
    Column("available_quantity", Integer, nullable=False),
    Index("ix_shirt_sizes_event_size", "event_id", "size"),
)

athletes = Table(
    "athletes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("full_name", String(255), nullable=False),
    Column("cpf", String(14), nullable=False, unique=True),
    Column("birth_date", Date, nullable=True),
    Column("sex", String(20), nullable=True),
)

orders = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("number", Integer, nullable=False),
    Column("event_id", String(36), ForeignKey("events.id"), nullable=False),
    Column("buyer_id", String(36), nullable=False),
    Column("total_amount", Numeric(10, 2), nullable=False),
    Column("discount_amount", Numeric(10, 2), nullable=False, server_default="0"),
    Column("discount_code", String(50), nullable=True),
    Column("status", _status(model.OrderStatus), nullable=False),
    Column("payment_method", String(30), nullable=True),
    Column("expires_at", DateTime(timezone=True), nullable=True),
    Column("gateway_payment_id", String(100), nullable=True, index=True),
    Column("pix_payment_id", String(100), nullable=True, index=True),
    Column("pix_expires_at", DateTime(timezone=True), nullable=True),
    Column("paid_at", DateTime(timezone=True), nullable=True),
    Column("buyer_ip", String(45), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_orders_status_expires_at", "status", "expires_at"),
)

registrations = Table(
    "registrations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("number", Integer, nullable=False),
    Column("order_id", String(36), ForeignKey("orders.id"), nullable=False, index=True),
    Column("event_id", String(36), ForeignKey("events.id"), nullable=False),
    Column("modality_id", String(36), ForeignKey("modalities.id"), nullable=False),
    Column("batch_id", String(36), ForeignKey("batches.id"), nullable=False),
    Column("athlete_id", String(36), nullable=False),
    Column("unit_price", Numeric(10, 2), nullable=False),
    Column("convenience_fee", Numeric(10, 2), nullable=False, server_default="0"),
    Column("status", _status(model.RegistrationStatus), nullable=False),
    Column("shirt_size", String(10), nullable=True),
    Column("shirt_reserved", Boolean, nullable=False, default=False),
    Column("team", Text, nullable=True),
    Column("full_name", Text, nullable=True),
    Column("cpf", String(14), nullable=True),
    Column("birth_date", Date, nullable=True),
    Column("sex", String(20), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    # Filet de sécurité base de données pour la détection des doublons.
    Index(
        "uq_registrations_active_athlete_modality",
        "event_id",
        "athlete_id",
        "modality_id",
        unique=True,
        postgresql_where=text("status <> 'cancelled'"),
        sqlite_where=text("status <> 'cancelled'"),
    ),
)

status_change_logs = Table(
    "status_change_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", String(20), nullable=False),
    Column("entity_id", String(36), nullable=False),
    Column("old_status", String(20), nullable=True),
    Column("new_status", String(20), nullable=False),
    Column("reason", Text, nullable=False),
    Column("changed_by_type", String(20), nullable=False),
    Column("changed_by_id", String(36), nullable=True),
    Column("metadata", JSON, nullable=True, key="details"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_status_change_logs_entity", "entity_type", "entity_id"),
)


def start_mappers() -> None:
    """
    Configure le mapping entre les classes du domaine et les tables SQL.

    Utilise le classical mapping : les classes du domaine ne connaissent
    pas SQLAlchemy. Les attributs portent le même nom que les colonnes.
    Un second appel est sans effet.
    """
    if mapper_registry.mappers:
        return
    mapper_registry.map_imperatively(model.Event, events)
    mapper_registry.map_imperatively(model.Modality, modalities)
    mapper_registry.map_imperatively(model.Batch, batches)
    mapper_registry.map_imperatively(model.Price, prices)
    mapper_registry.map_imperatively(model.ShirtSize, shirt_sizes)
    mapper_registry.map_imperatively(model.Order, orders)
    mapper_registry.map_imperatively(model.Registration, registrations)
    mapper_registry.map_imperatively(model.StatusChange, status_change_logs)


@event.listens_for(model.Event, "load")
def receive_event_load(sport_event: model.Event, _: object) -> None:
    """Initialise la liste d'events du domaine quand un Event est chargé depuis la BDD."""
    sport_event.domain_events = []


@event.listens_for(model.Order, "load")
def receive_order_load(order: model.Order, _: object) -> None:
    """Idem pour les commandes."""
    order.domain_events = []
