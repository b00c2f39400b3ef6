"""
Bootstrap : assemblage de l'application (Composition Root).

Ce module construit le message bus avec toutes ses dépendances.
C'est ici que l'injection de dépendances est réalisée :
on assemble les composants concrets (ou les fakes pour les tests).

C'est le seul endroit de l'application qui connaît les
implémentations concrètes de chaque abstraction.
"""

from __future__ import annotations

import functools
import inspect
from datetime import datetime
from typing import Any, Callable

from admission.adapters import athletes, discounts, orm, payments
from admission.domain import clock as domain_clock
from admission.domain import commands, events
from admission.service_layer import handlers, messagebus, unit_of_work


def bootstrap(
    start_orm: bool = True,
    uow: unit_of_work.AbstractUnitOfWork | None = None,
    payments_gateway: payments.AbstractPaymentGateway | None = None,
    discount_resolver: discounts.AbstractDiscountResolver | None = None,
    athlete_directory: athletes.AbstractAthleteDirectory | None = None,
    clock: Callable[[], datetime] = domain_clock.now,
    **extra_dependencies: Any,
) -> messagebus.MessageBus:
    """
    Construit et retourne un MessageBus configuré.

    En production, utilise les implémentations concrètes.
    En test, on injecte des fakes via les paramètres.
    """
    if start_orm:
        orm.start_mappers()

    if uow is None:
        uow = unit_of_work.SqlAlchemyUnitOfWork()

    if payments_gateway is None:
        payments_gateway = payments.UnconfiguredPaymentGateway()

    if discount_resolver is None:
        discount_resolver = discounts.NoDiscounts()

    if athlete_directory is None:
        athlete_directory = athletes.SqlAlchemyAthleteDirectory(
            getattr(uow, "session_factory", unit_of_work.DEFAULT_SESSION_FACTORY)
        )

    dependencies: dict[str, Any] = {
        "uow": uow,
        "payments": payments_gateway,
        "discounts": discount_resolver,
        "athletes": athlete_directory,
        "clock": clock,
        **extra_dependencies,
    }

    return messagebus.MessageBus(
        uow=uow,
        event_handlers={
            event_type: [inject_dependencies(handler, dependencies) for handler in subscribers]
            for event_type, subscribers in EVENT_HANDLERS.items()
        },
        command_handlers={
            command_type: inject_dependencies(handler, dependencies)
            for command_type, handler in COMMAND_HANDLERS.items()
        },
        dependencies=dependencies,
    )


def inject_dependencies(handler: Callable, dependencies: dict[str, Any]) -> Callable:
    """
    Lie au handler les dépendances qu'il attend, par nom de paramètre.

    Le premier paramètre est le message ; il reste libre. Un paramètre
    sans dépendance du même nom garde sa valeur par défaut.
    """
    wanted = list(inspect.signature(handler).parameters)[1:]
    return functools.partial(
        handler, **{name: dependencies[name] for name in wanted if name in dependencies}
    )


# --- Routage des messages vers les handlers ---

EVENT_HANDLERS: dict[type[events.Event], list] = {
    events.RegistrationAdmitted: [
        handlers.commit_discount_usage,
        handlers.publish_registration_admitted,
    ],
    events.BatchClosed: [handlers.publish_batch_change],
    events.BatchActivated: [handlers.publish_batch_change],
    events.EventSoldOut: [handlers.publish_event_sold_out],
    events.OrderPaid: [handlers.publish_order_outcome],
    events.OrderExpired: [handlers.publish_order_outcome],
    events.OrderCancelled: [handlers.publish_order_outcome],
}

COMMAND_HANDLERS: dict[type[commands.Command], Any] = {
    commands.RegisterForEvent: handlers.register_for_event,
    commands.ConfirmPayment: handlers.confirm_payment,
    commands.RecalculateBatches: handlers.recalculate_batches,
    commands.ExpireOrders: handlers.expire_orders,
    commands.CancelOrder: handlers.cancel_order,
    commands.ProcessPaymentNotification: handlers.process_payment_notification,
    commands.PollPayments: handlers.poll_payments,
}
