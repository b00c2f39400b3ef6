"""
Journal des changements de statut.

Chaque transition (événement, lot, commande, inscription) laisse une
entrée immuable. L'entrée est ajoutée dans la transaction de l'appelant :
une transition annulée ne laisse aucune trace.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from admission.domain import model

if TYPE_CHECKING:
    from admission.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Status = Union[str, Enum, None]


def _value(status: Status) -> Optional[str]:
    if isinstance(status, Enum):
        return status.value
    return status


def log_status_change(
    uow: AbstractUnitOfWork,
    entity_type: str,
    entity_id: str,
    old_status: Status,
    new_status: Status,
    reason: str,
    changed_by_type: str = "system",
    changed_by_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> model.StatusChange:
    entry = model.StatusChange(
        entity_type=entity_type,
        entity_id=entity_id,
        old_status=_value(old_status),
        new_status=_value(new_status),
        reason=reason,
        changed_by_type=changed_by_type,
        changed_by_id=changed_by_id,
        details=metadata,
    )
    uow.status_log.add(entry)
    logger.info(
        "[status] %s %s: %s -> %s (%s)",
        entity_type, entity_id, entry.old_status, entry.new_status, reason,
    )
    return entry
