"""
Views (lecture) pour le pattern CQRS.

Les views sont des fonctions de lecture pure qui interrogent
directement la base de données, sans passer par le modèle de domaine.

Les vues de disponibilité recalculent d'abord les lots (via le message
bus) pour ne jamais afficher un état périmé.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import select, text

from admission.adapters import orm
from admission.domain import clock, commands, model
from admission.service_layer import unit_of_work

if TYPE_CHECKING:
    from admission.service_layer.messagebus import MessageBus

FREE_ACCESS_TYPES = tuple(t.value for t in model.ACCESS_TYPES_WITHOUT_MANDATORY_PRICE)
CENTS = Decimal("0.01")


def _amount(value: Any) -> Optional[Decimal]:
    # SQLite rend les NUMERIC sans leur échelle.
    return None if value is None else Decimal(str(value)).quantize(CENTS)


def modalities_availability(event_id: str, bus: MessageBus) -> Optional[dict]:
    """
    Disponibilité de chaque modalité d'un événement.

    Une modalité est 'sold_out' si l'événement est complet, si elle a
    atteint sa limite, ou si aucun lot actif non plein ne lui offre un
    prix valide (strictement positif pour une modalité payante, facultatif
    pour une modalité gratuite ou sur voucher).
    """
    bus.handle(commands.RecalculateBatches(event_id=event_id))
    with bus.uow as uow:
        event_row = uow.session.execute(
            text(
                "SELECT status, total_capacity, occupied_count FROM events"
                " WHERE id = :event_id"
            ),
            dict(event_id=event_id),
        ).first()
        if event_row is None:
            return None
        batch_row = uow.session.execute(
            text(
                "SELECT id FROM batches"
                " WHERE event_id = :event_id AND status = 'active'"
                " AND (max_uses IS NULL OR used_count < max_uses)"
                " ORDER BY position LIMIT 1"
            ),
            dict(event_id=event_id),
        ).first()
        active_batch_id = batch_row.id if batch_row else None
        rows = uow.session.execute(
            text(
                "SELECT m.id, m.name, m.access_type, m.capacity, m.occupied_count,"
                " p.amount AS price"
                " FROM modalities m"
                " LEFT JOIN prices p ON p.modality_id = m.id AND p.batch_id = :batch_id"
                " WHERE m.event_id = :event_id"
                " ORDER BY m.position, m.name"
            ),
            dict(event_id=event_id, batch_id=active_batch_id),
        ).all()

    event_sold_out = (
        event_row.status == model.EventStatus.SOLD_OUT.value
        or event_row.occupied_count >= event_row.total_capacity
    )
    modalities = []
    for row in rows:
        price = _amount(row.price)
        modality_full = row.capacity is not None and row.occupied_count >= row.capacity
        has_valid_price = row.access_type in FREE_ACCESS_TYPES or (
            price is not None and price > 0
        )
        sold_out = (
            event_sold_out or modality_full or active_batch_id is None or not has_valid_price
        )
        modalities.append(
            {
                "id": row.id,
                "name": row.name,
                "access_type": row.access_type,
                "capacity": row.capacity,
                "occupied_count": row.occupied_count,
                "available": not sold_out,
                "sold_out": sold_out,
                "active_batch_id": None if event_sold_out else active_batch_id,
                "active_batch_price": None if price is None else str(price),
            }
        )
    return {
        "event_status": event_row.status,
        "event_sold_out": event_sold_out,
        "modalities": modalities,
    }


def can_accept_registrations(event_id: str, bus: MessageBus) -> dict:
    """Indique si l'événement accepte des inscriptions, avec un code de raison."""
    bus.handle(commands.RecalculateBatches(event_id=event_id))
    now = bus.dependencies.get("clock", clock.now)()
    with bus.uow as uow:
        event_row = uow.session.execute(
            select(
                orm.events.c.status,
                orm.events.c.total_capacity,
                orm.events.c.occupied_count,
                orm.events.c.registration_opens_at,
                orm.events.c.registration_closes_at,
            ).where(orm.events.c.id == event_id)
        ).first()
        if event_row is None:
            return _refusal("EVENT_NOT_FOUND", "Événement introuvable")
        has_active_batch = uow.session.execute(
            text(
                "SELECT id FROM batches"
                " WHERE event_id = :event_id AND status = 'active'"
                " AND (max_uses IS NULL OR used_count < max_uses)"
                " LIMIT 1"
            ),
            dict(event_id=event_id),
        ).first() is not None

    status = model.EventStatus(event_row.status)
    if status == model.EventStatus.SOLD_OUT:
        return _refusal("EVENT_SOLD_OUT", "Inscriptions closes : événement complet")
    if status == model.EventStatus.DRAFT:
        return _refusal("EVENT_NOT_PUBLISHED", "Événement pas encore publié")
    if status in (model.EventStatus.CANCELLED, model.EventStatus.FINISHED):
        return _refusal("EVENT_CLOSED", "Inscriptions closes pour cet événement")
    if event_row.occupied_count >= event_row.total_capacity:
        return _refusal("EVENT_FULL", "Plus aucune place disponible")
    if not clock.has_arrived(event_row.registration_opens_at, now):
        return _refusal("REGISTRATION_NOT_OPEN", "Les inscriptions ne sont pas encore ouvertes")
    if clock.has_passed(event_row.registration_closes_at, now):
        return _refusal("REGISTRATION_PERIOD_ENDED", "Période d'inscription terminée")
    if not has_active_batch:
        return _refusal("NO_ACTIVE_BATCH", "Aucun lot actif disponible")
    return {"can_accept": True}


def _refusal(code: str, reason: str) -> dict:
    return {"can_accept": False, "error_code": code, "reason": reason}


def available_spots(event_id: str, uow: unit_of_work.AbstractUnitOfWork) -> Optional[dict]:
    """Places totales, occupées et restantes : événement, modalités, lot actif."""
    with uow:
        event_row = uow.session.execute(
            text(
                "SELECT id, name, total_capacity, occupied_count FROM events"
                " WHERE id = :event_id"
            ),
            dict(event_id=event_id),
        ).first()
        if event_row is None:
            return None
        modality_rows = uow.session.execute(
            text(
                "SELECT id, name, capacity, occupied_count FROM modalities"
                " WHERE event_id = :event_id ORDER BY position, name"
            ),
            dict(event_id=event_id),
        ).all()
        batch_row = uow.session.execute(
            text(
                "SELECT id, name, max_uses, used_count FROM batches"
                " WHERE event_id = :event_id AND status = 'active'"
                " ORDER BY position LIMIT 1"
            ),
            dict(event_id=event_id),
        ).first()

    return {
        "event": {
            "total": event_row.total_capacity,
            "occupied": event_row.occupied_count,
            "available": max(event_row.total_capacity - event_row.occupied_count, 0),
        },
        "modalities": [
            {
                "id": m.id,
                "name": m.name,
                "total": m.capacity,
                "occupied": m.occupied_count,
                "available": (
                    None if m.capacity is None else max(m.capacity - m.occupied_count, 0)
                ),
            }
            for m in modality_rows
        ],
        "active_batch": (
            {
                "id": batch_row.id,
                "name": batch_row.name,
                "total": batch_row.max_uses,
                "occupied": batch_row.used_count,
                "available": (
                    None
                    if batch_row.max_uses is None
                    else max(batch_row.max_uses - batch_row.used_count, 0)
                ),
            }
            if batch_row
            else None
        ),
    }


def status_history(
    entity_type: str, entity_id: str, uow: unit_of_work.AbstractUnitOfWork
) -> list[dict]:
    """Journal des changements de statut d'une entité, du plus récent au plus ancien."""
    logs = orm.status_change_logs
    with uow:
        rows = uow.session.execute(
            select(
                logs.c.old_status,
                logs.c.new_status,
                logs.c.reason,
                logs.c.changed_by_type,
                logs.c.changed_by_id,
                logs.c.details.label("details"),
                logs.c.created_at,
            )
            .where(logs.c.entity_type == entity_type, logs.c.entity_id == entity_id)
            .order_by(logs.c.created_at.desc(), logs.c.id.desc())
        ).all()
    return [
        {
            "old_status": row.old_status,
            "new_status": row.new_status,
            "reason": row.reason,
            "changed_by_type": row.changed_by_type,
            "changed_by_id": row.changed_by_id,
            "metadata": row.details,
            "created_at": clock.as_utc(row.created_at).isoformat(),
        }
        for row in rows
    ]
