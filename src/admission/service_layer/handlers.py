"""
Handlers pour les commands et events.

Les handlers sont les fonctions qui traitent les commands et events
transitant par le message bus.

- Command handlers : exécutent une transaction et renvoient un Result ;
  une règle métier qui refuse l'opération lève OperationRefused à
  l'intérieur du `with uow:`, ce qui annule toute la transaction.
- Event handlers : réagissent à un fait validé (ne doivent pas échouer)

Ordre des verrous, partout : commande -> inscriptions -> événement ->
modalités -> lots -> stock de t-shirts ; à un même niveau, par id
croissant.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from admission import config
from admission.adapters.discounts import DiscountRejected
from admission.adapters.payments import PaymentLookupError
from admission.domain import commands, events, model
from admission.domain.errors import ErrorCode
from admission.service_layer import batches
from admission.service_layer.results import (
    AdmissionReceipt,
    BatchSummary,
    PollReport,
    ReleaseReceipt,
    Result,
    SettlementReceipt,
    SweepReport,
)
from admission.service_layer.status_log import log_status_change

if TYPE_CHECKING:
    from admission.adapters.athletes import AbstractAthleteDirectory
    from admission.adapters.discounts import AbstractDiscountResolver
    from admission.adapters.payments import AbstractPaymentGateway
    from admission.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _refused(refusal: model.OperationRefused) -> Result:
    logger.info("Opération refusée [%s] : %s", refusal.code.value, refusal.message)
    return Result.failure(refusal.code, refusal.message)


def _internal_error() -> Result:
    return Result.failure(
        ErrorCode.INTERNAL_ERROR, "Erreur interne, merci de réessayer"
    )


def _mark_event_sold_out(
    uow: AbstractUnitOfWork, sport_event: model.Event, reason: str
) -> bool:
    old_status = sport_event.mark_sold_out()
    if old_status is None:
        return False
    log_status_change(
        uow, "event", sport_event.id, old_status, sport_event.status, reason,
        metadata={
            "occupied_count": sport_event.occupied_count,
            "total_capacity": sport_event.total_capacity,
        },
    )
    return True


def _stock_for(
    uow: AbstractUnitOfWork,
    sport_event: model.Event,
    modality_id: str,
    size: str,
) -> Optional[model.ShirtSize]:
    """Stock (verrouillé) de la grille applicable : par modalité ou globale."""
    grid_modality = modality_id if sport_event.shirt_grid_per_modality else None
    return uow.shirt_sizes.get_stock(sport_event.id, size, grid_modality, lock=True)


# --- Command Handlers ---


def register_for_event(
    cmd: commands.RegisterForEvent,
    uow: AbstractUnitOfWork,
    athletes: AbstractAthleteDirectory,
    discounts: AbstractDiscountResolver,
    clock: Clock,
) -> Result:
    """
    Admet un athlète dans une modalité, dans une seule transaction.

    Débite les compteurs de l'événement, de la modalité et du lot, et le
    stock de t-shirts pour une inscription gratuite. Toute étape en échec
    annule l'ensemble.
    """
    try:
        athlete = athletes.get(cmd.athlete_id)
    except SQLAlchemyError:
        logger.exception("Erreur lors de la lecture de l'athlète %s", cmd.athlete_id)
        return _internal_error()
    if athlete is None:
        return Result.failure(ErrorCode.ATHLETE_NOT_FOUND, "Athlète introuvable")

    now = clock()
    try:
        with uow:
            receipt = _admit(cmd, athlete, uow, discounts, now)
            uow.commit()
    except model.OperationRefused as refusal:
        return _refused(refusal)
    except IntegrityError:
        logger.warning(
            "Doublon détecté par la base pour l'athlète %s (événement %s)",
            cmd.athlete_id, cmd.event_id,
        )
        return Result.failure(
            ErrorCode.ALREADY_REGISTERED, "Athlète déjà inscrit"
        )
    except SQLAlchemyError:
        logger.exception("Erreur lors de l'admission (événement %s)", cmd.event_id)
        return _internal_error()

    logger.info(
        "Inscription #%s créée (commande #%s, lot %s, %s)",
        receipt.registration_number, receipt.order_number,
        receipt.batch_id, receipt.registration_status,
    )
    return Result.success(receipt)


def _admit(
    cmd: commands.RegisterForEvent,
    athlete: model.AthleteProfile,
    uow: AbstractUnitOfWork,
    discounts: AbstractDiscountResolver,
    now: datetime,
) -> AdmissionReceipt:
    sport_event = uow.events.get(cmd.event_id, lock=True)
    if sport_event is None:
        raise model.OperationRefused(ErrorCode.EVENT_NOT_FOUND, "Événement introuvable")
    if sport_event.is_sold_out:
        raise model.OperationRefused(
            ErrorCode.EVENT_SOLD_OUT, "Inscriptions closes : événement complet"
        )
    if sport_event.is_full:
        # La bascule en 'sold_out' est conservée malgré le refus.
        _mark_event_sold_out(uow, sport_event, "Capacité totale de l'événement atteinte")
        uow.commit()
        raise model.OperationRefused(
            ErrorCode.EVENT_FULL, "Plus aucune place disponible pour cet événement"
        )

    modality = uow.modalities.get(cmd.modality_id, lock=True)
    if modality is None or modality.event_id != sport_event.id:
        raise model.OperationRefused(ErrorCode.MODALITY_NOT_FOUND, "Modalité introuvable")
    if modality.is_full:
        raise model.OperationRefused(
            ErrorCode.MODALITY_FULL, "Plus aucune place disponible pour cette modalité"
        )

    batch = batches.resolve_active_batch(uow, sport_event, now)

    price = uow.prices.get(modality.id, batch.id)
    if modality.requires_price and (price is None or not price.is_positive):
        raise model.OperationRefused(
            ErrorCode.NO_VALID_PRICE,
            f"Aucun prix valide pour la modalité {modality.name} dans le lot {batch.name}",
        )
    unit_price = Decimal(price.amount) if price is not None else Decimal("0")

    same_modality_only = modality.id if sport_event.allow_multiple_modalities else None
    if uow.registrations.has_active(sport_event.id, athlete.id, same_modality_only):
        raise model.OperationRefused(
            ErrorCode.ALREADY_REGISTERED,
            "Athlète déjà inscrit à cet événement"
            if same_modality_only is None
            else "Athlète déjà inscrit dans cette modalité",
        )

    fee = Decimal(modality.convenience_fee or 0)
    base_amount = unit_price + fee
    discount_amount = Decimal("0")
    if cmd.discount_code:
        try:
            discount = discounts.resolve(
                cmd.discount_code, sport_event.id, modality.id, athlete.id, base_amount
            )
        except DiscountRejected as rejection:
            raise model.OperationRefused(ErrorCode.DISCOUNT_REJECTED, str(rejection))
        if discount is not None:
            discount_amount = min(Decimal(discount.amount), base_amount)
    total = max(base_amount - discount_amount, Decimal("0"))

    # Seul un montant dû nul permet une confirmation immédiate.
    confirmed = cmd.requested_status == "confirmed" and total <= 0
    if confirmed:
        expires_at = None
    else:
        expires_at = cmd.expires_at or now + timedelta(minutes=config.ORDER_EXPIRATION_MINUTES)

    order = model.Order(
        number=cmd.order_number or uow.orders.next_number(),
        event_id=sport_event.id,
        buyer_id=athlete.id,
        total_amount=total,
        discount_amount=discount_amount,
        discount_code=cmd.discount_code if discount_amount > 0 else None,
        status=model.OrderStatus.PAID if confirmed else model.OrderStatus.PENDING,
        payment_method=(cmd.payment_method or "free") if confirmed else cmd.payment_method,
        expires_at=expires_at,
        paid_at=now if confirmed else None,
        buyer_ip=cmd.buyer_ip,
        created_at=now,
    )
    uow.orders.add(order)

    registration = model.Registration(
        number=cmd.registration_number or uow.registrations.next_number(),
        order_id=order.id,
        event_id=sport_event.id,
        modality_id=modality.id,
        batch_id=batch.id,
        athlete_id=athlete.id,
        unit_price=unit_price,
        convenience_fee=fee,
        status=(
            model.RegistrationStatus.CONFIRMED
            if confirmed
            else model.RegistrationStatus.PENDING
        ),
        shirt_size=cmd.shirt_size,
        team=cmd.team,
        full_name=athlete.full_name,
        cpf=athlete.cpf,
        birth_date=athlete.birth_date,
        sex=athlete.sex,
        created_at=now,
    )
    uow.registrations.add(registration)

    sport_event.occupy()
    modality.occupy()
    batch.use()

    if confirmed and cmd.shirt_size:
        stock = _stock_for(uow, sport_event, modality.id, cmd.shirt_size)
        # Pas de grille configurée pour cette taille : rien à débiter.
        if stock is not None:
            stock.take()
            registration.shirt_reserved = True

    log_status_change(
        uow, "order", order.id, None, order.status, "Commande créée",
        changed_by_type="athlete", changed_by_id=athlete.id,
        metadata={"total_amount": str(total), "batch_id": batch.id},
    )
    log_status_change(
        uow, "registration", registration.id, None, registration.status,
        "Inscription créée", changed_by_type="athlete", changed_by_id=athlete.id,
    )

    batches.close_if_full(uow, sport_event, batch, now)

    sport_event.domain_events.append(
        events.RegistrationAdmitted(
            order_id=order.id,
            registration_id=registration.id,
            event_id=sport_event.id,
            modality_id=modality.id,
            batch_id=batch.id,
            athlete_id=athlete.id,
            status=registration.status.value,
            discount_code=order.discount_code,
        )
    )

    return AdmissionReceipt(
        order_id=order.id,
        order_number=order.number,
        order_status=order.status.value,
        total_amount=total,
        expires_at=order.expires_at,
        registration_id=registration.id,
        registration_number=registration.number,
        registration_status=registration.status.value,
        batch_id=batch.id,
        unit_price=unit_price,
    )


def confirm_payment(
    cmd: commands.ConfirmPayment,
    uow: AbstractUnitOfWork,
    clock: Clock,
) -> Result:
    """
    Passe une commande en attente à 'paid' et ses inscriptions à 'confirmed'.

    Le stock de t-shirts, différé pour les inscriptions payantes, est
    débité ici. Toutes les tailles sont vérifiées avant toute écriture.
    """
    now = clock()
    try:
        with uow:
            receipt = _settle(cmd, uow, now)
            uow.commit()
    except model.OperationRefused as refusal:
        return _refused(refusal)
    except SQLAlchemyError:
        logger.exception("Erreur lors de la confirmation de la commande %s", cmd.order_id)
        return _internal_error()

    if not receipt.already_paid:
        logger.info(
            "Commande %s payée (%s), %d inscription(s) confirmée(s)",
            cmd.order_id, cmd.payment_method, len(receipt.confirmed_registrations),
        )
    return Result.success(receipt)


def _settle(
    cmd: commands.ConfirmPayment, uow: AbstractUnitOfWork, now: datetime
) -> SettlementReceipt:
    order = uow.orders.get(cmd.order_id, lock=True)
    if order is None:
        raise model.OperationRefused(ErrorCode.ORDER_NOT_FOUND, "Commande introuvable")
    if order.status == model.OrderStatus.PAID:
        return SettlementReceipt(order_id=order.id, already_paid=True)
    if order.status == model.OrderStatus.CANCELLED:
        raise model.OperationRefused(ErrorCode.ORDER_CANCELLED, "Commande annulée")
    if order.status == model.OrderStatus.EXPIRED:
        raise model.OperationRefused(ErrorCode.ORDER_EXPIRED, "Commande expirée")

    registrations = uow.registrations.list_for_order(order.id, lock=True)
    pending = [r for r in registrations if r.status == model.RegistrationStatus.PENDING]
    sport_event = uow.events.get(order.event_id)

    # Demande regroupée par ligne de stock : deux inscriptions de même
    # taille doivent voir la même disponibilité.
    demand: dict[tuple[str, str], list[model.Registration]] = {}
    per_modality = sport_event is not None and sport_event.shirt_grid_per_modality
    for registration in pending:
        if registration.needs_shirt:
            grid = registration.modality_id if per_modality else ""
            demand.setdefault((grid, registration.shirt_size), []).append(registration)

    stocks: dict[tuple[str, str], Optional[model.ShirtSize]] = {}
    for key in sorted(demand):
        size = key[1]
        stock = (
            _stock_for(uow, sport_event, demand[key][0].modality_id, size)
            if sport_event is not None
            else None
        )
        if stock is not None and not stock.can_supply(len(demand[key])):
            raise model.SizeSoldOut(size)
        stocks[key] = stock

    for key, wanting in demand.items():
        stock = stocks[key]
        if stock is None:
            continue
        for registration in wanting:
            stock.take()
            registration.shirt_reserved = True

    for registration in pending:
        old_status = registration.status
        registration.confirm()
        log_status_change(
            uow, "registration", registration.id, old_status, registration.status,
            "Paiement confirmé",
            metadata={"order_id": order.id, "payment_method": cmd.payment_method},
        )

    old_status = order.status
    order.mark_paid(cmd.payment_method, now, cmd.payment_id)
    log_status_change(
        uow, "order", order.id, old_status, order.status, "Paiement confirmé",
        metadata={"payment_method": cmd.payment_method, "payment_id": cmd.payment_id},
    )
    return SettlementReceipt(
        order_id=order.id,
        confirmed_registrations=[r.id for r in pending],
    )


def recalculate_batches(
    cmd: commands.RecalculateBatches,
    uow: AbstractUnitOfWork,
    clock: Clock,
) -> Result:
    """
    Recalcule l'état des lots d'un événement.

    Ferme les lots actifs expirés ou pleins, active au plus un lot, et
    passe l'événement en 'sold_out' quand plus aucun lot ne peut servir.
    Idempotent : un second appel immédiat ne change rien.
    """
    now = clock()
    try:
        with uow:
            summary = _recalculate(cmd.event_id, uow, now)
            uow.commit()
    except model.OperationRefused as refusal:
        return _refused(refusal)
    except SQLAlchemyError:
        logger.exception("Erreur lors du recalcul des lots de l'événement %s", cmd.event_id)
        return _internal_error()

    if summary.batches_updated or summary.event_marked_sold_out:
        logger.info(
            "Lots recalculés pour %s : %d mis à jour, actif=%s, sold_out=%s",
            cmd.event_id, summary.batches_updated,
            summary.active_batch_id, summary.event_marked_sold_out,
        )
    return Result.success(summary)


def _recalculate(event_id: str, uow: AbstractUnitOfWork, now: datetime) -> BatchSummary:
    sport_event = uow.events.get(event_id, lock=True)
    if sport_event is None:
        raise model.OperationRefused(ErrorCode.EVENT_NOT_FOUND, "Événement introuvable")

    if sport_event.is_full:
        marked = _mark_event_sold_out(
            uow, sport_event, "Capacité totale de l'événement atteinte"
        )
        return BatchSummary(
            event_id=sport_event.id,
            event_status=sport_event.status.value,
            event_marked_sold_out=marked,
        )

    updated = 0
    survivors: list[model.Batch] = []
    last_closed_position: Optional[int] = None
    for batch in uow.batches.list_active(sport_event.id, lock=True):
        if batch.needs_closing(now):
            batches.close(uow, sport_event, batch, batch.closing_reason(now))
            last_closed_position = batch.position
            updated += 1
        else:
            survivors.append(batch)

    if survivors:
        active = survivors[0]
    else:
        outcome = batches.cascade(uow, sport_event, now, after_position=last_closed_position)
        updated += len(outcome.closed) + (1 if outcome.activated else 0)
        active = outcome.activated

    has_future = bool(uow.batches.list_future(sport_event.id))
    marked = False
    if active is None and not has_future:
        marked = _mark_event_sold_out(
            uow, sport_event, "Aucun lot valide restant pour l'événement"
        )

    return BatchSummary(
        event_id=sport_event.id,
        event_status=sport_event.status.value,
        batches_updated=updated,
        event_marked_sold_out=marked,
        active_batch_id=active.id if active else None,
        has_valid_batches=active is not None,
    )


def _release(
    uow: AbstractUnitOfWork,
    order: model.Order,
    releasable: Iterable[model.RegistrationStatus],
    reason: str,
    changed_by_type: str = "system",
    changed_by_id: Optional[str] = None,
) -> int:
    """
    Annule les inscriptions d'une commande et rend leurs places.

    Inverse des étapes de débit de l'admission : compteurs décrémentés
    (jamais sous zéro), stock recrédité seulement s'il avait été débité.
    L'appelant tient déjà le verrou sur la commande.
    """
    statuses = set(releasable)
    registrations = [
        r for r in uow.registrations.list_for_order(order.id, lock=True)
        if r.status in statuses
    ]
    if not registrations:
        return 0

    sport_event = uow.events.get(order.event_id, lock=True)
    modalities = {
        modality_id: uow.modalities.get(modality_id, lock=True)
        for modality_id in sorted({r.modality_id for r in registrations})
    }
    batch_rows = {
        batch_id: uow.batches.get(batch_id, lock=True)
        for batch_id in sorted({r.batch_id for r in registrations})
    }
    stocks: dict[tuple[str, str], Optional[model.ShirtSize]] = {}
    if sport_event is not None:
        for registration in sorted(
            (r for r in registrations if r.shirt_reserved and r.shirt_size),
            key=lambda r: (r.modality_id, r.shirt_size),
        ):
            key = (registration.modality_id, registration.shirt_size)
            if key not in stocks:
                stocks[key] = _stock_for(
                    uow, sport_event, registration.modality_id, registration.shirt_size
                )

    for registration in registrations:
        old_status = registration.status
        registration.cancel()
        log_status_change(
            uow, "registration", registration.id, old_status, registration.status,
            reason, changed_by_type=changed_by_type, changed_by_id=changed_by_id,
            metadata={"order_id": order.id},
        )
        if sport_event is not None:
            sport_event.release()
        modality = modalities.get(registration.modality_id)
        if modality is not None:
            modality.release()
        batch = batch_rows.get(registration.batch_id)
        if batch is not None:
            batch.release()
        if registration.shirt_reserved:
            stock = stocks.get((registration.modality_id, registration.shirt_size))
            if stock is not None:
                stock.give_back()
            registration.shirt_reserved = False
    return len(registrations)


def expire_orders(
    cmd: commands.ExpireOrders,
    uow: AbstractUnitOfWork,
    clock: Clock,
) -> SweepReport:
    """
    Balaye les commandes en attente dont le délai de paiement est dépassé.

    Chaque commande est traitée dans sa propre transaction. Une commande
    déjà verrouillée par un autre balayage est ignorée. Une commande dont
    le paiement PIX est encore valide voit son délai prolongé au lieu
    d'être annulée.
    """
    report = SweepReport()
    now = clock()
    try:
        with uow:
            candidates = uow.orders.list_overdue_ids(now, cmd.limit)
    except SQLAlchemyError:
        logger.exception("Impossible de lister les commandes expirées")
        report.errors += 1
        return report

    for order_id in candidates:
        try:
            with uow:
                order = uow.orders.claim_overdue(order_id, now)
                if order is None:
                    continue
                if order.has_valid_pix(now):
                    order.extend_expiration(order.pix_expires_at)
                    uow.commit()
                    report.extended += 1
                    logger.info(
                        "Commande %s : PIX encore valide, délai prolongé jusqu'à %s",
                        order_id, order.expires_at,
                    )
                    continue
                released = _release(
                    uow, order, [model.RegistrationStatus.PENDING],
                    "Délai de paiement expiré",
                )
                old_status = order.status
                order.expire(released)
                log_status_change(
                    uow, "order", order.id, old_status, order.status,
                    "Délai de paiement expiré",
                    metadata={"released_registrations": released},
                )
                uow.commit()
                report.processed += 1
                report.released += released
        except Exception:
            logger.exception("Erreur lors de l'expiration de la commande %s", order_id)
            report.errors += 1

    if report.processed or report.extended or report.errors:
        logger.info(
            "Balayage terminé : %d expirée(s), %d place(s) rendue(s),"
            " %d prolongée(s), %d erreur(s)",
            report.processed, report.released, report.extended, report.errors,
        )
    return report


def cancel_order(
    cmd: commands.CancelOrder,
    uow: AbstractUnitOfWork,
) -> Result:
    """Annule une commande (en attente ou payée) et rend toutes ses places."""
    try:
        with uow:
            order = uow.orders.get(cmd.order_id, lock=True)
            if order is None:
                raise model.OperationRefused(
                    ErrorCode.ORDER_NOT_FOUND, "Commande introuvable"
                )
            if order.status in (model.OrderStatus.CANCELLED, model.OrderStatus.EXPIRED):
                return Result.success(ReleaseReceipt(order.id, order.status.value))
            released = _release(
                uow, order,
                [model.RegistrationStatus.PENDING, model.RegistrationStatus.CONFIRMED],
                cmd.reason, cmd.changed_by_type, cmd.changed_by_id,
            )
            old_status = order.status
            order.cancel(released, cmd.reason)
            log_status_change(
                uow, "order", order.id, old_status, order.status, cmd.reason,
                changed_by_type=cmd.changed_by_type, changed_by_id=cmd.changed_by_id,
                metadata={"released_registrations": released},
            )
            receipt = ReleaseReceipt(order.id, order.status.value, released)
            uow.commit()
    except model.OperationRefused as refusal:
        return _refused(refusal)
    except SQLAlchemyError:
        logger.exception("Erreur lors de l'annulation de la commande %s", cmd.order_id)
        return _internal_error()
    return Result.success(receipt)


def process_payment_notification(
    cmd: commands.ProcessPaymentNotification,
    uow: AbstractUnitOfWork,
    payments: AbstractPaymentGateway,
    clock: Clock,
) -> Result:
    """
    Traite une notification de la passerelle de paiement.

    Le statut est toujours relu auprès de la passerelle ; seul un
    paiement approuvé et couvrant le montant déclenche la confirmation.
    """
    try:
        payment = payments.get_payment_status(cmd.payment_id)
    except PaymentLookupError as error:
        logger.warning("Consultation du paiement %s impossible : %s", cmd.payment_id, error)
        return Result.failure(ErrorCode.PAYMENT_LOOKUP_FAILED, str(error))

    try:
        with uow:
            order = uow.orders.get_by_payment_id(cmd.payment_id)
            if order is None:
                return Result.failure(
                    ErrorCode.ORDER_NOT_FOUND, "Aucune commande pour ce paiement"
                )
            order_id = order.id
            total = Decimal(order.total_amount)
    except SQLAlchemyError:
        logger.exception(
            "Erreur lors de la recherche de la commande du paiement %s", cmd.payment_id
        )
        return _internal_error()

    if not payment.is_approved:
        logger.info(
            "Paiement %s au statut %s, commande %s inchangée",
            cmd.payment_id, payment.status, order_id,
        )
        return Result.success()

    if Decimal(payment.amount) < total:
        logger.warning(
            "Montant payé %s inférieur au total %s de la commande %s",
            payment.amount, total, order_id,
        )
        return Result.failure(
            ErrorCode.PAYMENT_AMOUNT_MISMATCH,
            "Le montant payé ne couvre pas le total de la commande",
        )

    return confirm_payment(
        commands.ConfirmPayment(
            order_id=order_id, payment_method=payment.method, payment_id=cmd.payment_id
        ),
        uow=uow,
        clock=clock,
    )


def poll_payments(
    cmd: commands.PollPayments,
    uow: AbstractUnitOfWork,
    payments: AbstractPaymentGateway,
    clock: Clock,
) -> PollReport:
    """Interroge la passerelle pour les commandes en attente de paiement."""
    report = PollReport()
    if not payments.configured:
        logger.debug("Passerelle de paiement non configurée, interrogation ignorée")
        return report

    try:
        with uow:
            pending = [
                order.gateway_payment_id
                for order in uow.orders.list_pending_with_payment(cmd.limit)
            ]
    except SQLAlchemyError:
        logger.exception("Impossible de lister les commandes en attente de paiement")
        report.errors += 1
        return report

    for payment_id in pending:
        report.processed += 1
        result = process_payment_notification(
            commands.ProcessPaymentNotification(payment_id=payment_id),
            uow=uow,
            payments=payments,
            clock=clock,
        )
        if not result.ok:
            report.errors += 1
        elif result.value is not None and not result.value.already_paid:
            report.confirmed += 1

    if report.processed:
        logger.info(
            "Interrogation des paiements : %d vérifié(s), %d confirmé(s), %d erreur(s)",
            report.processed, report.confirmed, report.errors,
        )
    return report


# --- Event Handlers ---


def commit_discount_usage(
    event: events.RegistrationAdmitted,
    discounts: AbstractDiscountResolver,
) -> None:
    """Confirme l'usage du code de réduction une fois l'admission validée."""
    if not event.discount_code:
        return
    discounts.commit_usage(
        code=event.discount_code,
        order_id=event.order_id,
        registration_id=event.registration_id,
        athlete_id=event.athlete_id,
    )


def publish_registration_admitted(event: events.RegistrationAdmitted) -> None:
    """
    Publie l'admission vers l'extérieur.

    Placeholder : dans un système complet, on publierait vers un broker.
    """
    logger.info(
        "Admission publiée : inscription %s (événement %s, modalité %s, lot %s)",
        event.registration_id, event.event_id, event.modality_id, event.batch_id,
    )


def publish_batch_change(event: events.BatchClosed | events.BatchActivated) -> None:
    logger.info("Lot %s de l'événement %s : %s", event.batch_id, event.event_id, event)


def publish_event_sold_out(event: events.EventSoldOut) -> None:
    logger.info("Événement %s complet", event.event_id)


def publish_order_outcome(
    event: events.OrderPaid | events.OrderExpired | events.OrderCancelled,
) -> None:
    logger.info("Commande %s : %s", event.order_id, type(event).__name__)
