"""
Cycle de vie des lots.

Fonctions utilisées à l'intérieur d'une transaction déjà ouverte, par le
recalcul des lots comme par la transaction d'admission. Les lots sont
verrouillés par position croissante, après l'événement.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from admission import config
from admission.domain import events, model
from admission.domain.errors import ErrorCode
from admission.service_layer.status_log import log_status_change

if TYPE_CHECKING:
    from admission.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


def close(
    uow: AbstractUnitOfWork,
    sport_event: model.Event,
    batch: model.Batch,
    reason: str,
) -> None:
    old_status = batch.status
    batch.close()
    log_status_change(
        uow, "batch", batch.id, old_status, batch.status, reason,
        metadata={"position": batch.position, "used_count": batch.used_count},
    )
    sport_event.domain_events.append(
        events.BatchClosed(event_id=sport_event.id, batch_id=batch.id, reason=reason)
    )


def cascade(
    uow: AbstractUnitOfWork,
    sport_event: model.Event,
    now: datetime,
    after_position: Optional[int] = None,
) -> model.CascadeOutcome:
    """
    Active le prochain lot valide après `after_position` (ou depuis le
    début), en fermant au passage les lots pleins ou expirés.
    """
    candidates = uow.batches.list_future(sport_event.id, after_position, lock=True)
    outcome = model.activate_next_batch(candidates, now)

    for batch in outcome.closed:
        reason = batch.closing_reason(now)
        log_status_change(
            uow, "batch", batch.id, model.BatchStatus.FUTURE, batch.status,
            f"{reason}, ignoré lors de l'activation",
        )
        sport_event.domain_events.append(
            events.BatchClosed(event_id=sport_event.id, batch_id=batch.id, reason=reason)
        )

    if outcome.activated is not None:
        batch = outcome.activated
        log_status_change(
            uow, "batch", batch.id, model.BatchStatus.FUTURE, batch.status,
            "Activation automatique du lot suivant",
            metadata={"position": batch.position},
        )
        sport_event.domain_events.append(
            events.BatchActivated(event_id=sport_event.id, batch_id=batch.id)
        )
    elif outcome.waiting is not None:
        logger.info(
            "Lot %s pas encore ouvert (début %s), activation reportée",
            outcome.waiting.id, outcome.waiting.starts_at,
        )
    return outcome


def resolve_active_batch(
    uow: AbstractUnitOfWork,
    sport_event: model.Event,
    now: datetime,
    max_attempts: Optional[int] = None,
) -> model.Batch:
    """
    Retourne le lot actif (verrouillé) qui accueillera la prochaine admission.

    Un lot actif expiré ou plein est fermé puis remplacé dans la même
    transaction. Le nombre de bascules est borné.
    """
    last_closed_position: Optional[int] = None
    for _ in range(max_attempts or config.MAX_BATCH_SWITCH_ATTEMPTS):
        batch = uow.batches.first_active(sport_event.id, lock=True)
        if batch is None:
            outcome = cascade(uow, sport_event, now, after_position=last_closed_position)
            if outcome.activated is None:
                raise model.OperationRefused(
                    ErrorCode.NO_ACTIVE_BATCH_AVAILABLE,
                    "Aucun lot disponible pour les inscriptions",
                )
            return outcome.activated
        if not batch.needs_closing(now):
            return batch
        close(uow, sport_event, batch, batch.closing_reason(now))
        last_closed_position = batch.position

    logger.error(
        "Nombre maximal de bascules de lot atteint pour l'événement %s", sport_event.id
    )
    raise model.OperationRefused(
        ErrorCode.INTERNAL_ERROR,
        "Impossible de déterminer le lot actif, merci de réessayer",
    )


def close_if_full(
    uow: AbstractUnitOfWork,
    sport_event: model.Event,
    batch: model.Batch,
    now: datetime,
) -> Optional[model.Batch]:
    """Ferme le lot qui vient d'atteindre sa limite et active le suivant."""
    if not batch.is_full:
        return None
    close(uow, sport_event, batch, batch.closing_reason(now))
    return cascade(uow, sport_event, now, after_position=batch.position).activated
