"""
Tâches périodiques (Celery).

Celery beat planifie deux tâches :
- le balayage des commandes expirées (toutes les SWEEP_INTERVAL_SECONDS) ;
- l'interrogation de la passerelle de paiement
  (toutes les PAYMENT_POLLING_INTERVAL_SECONDS).

Chaque tâche envoie une command au message bus du processus worker.
Une exécution en échec est loggée par Celery ; le passage suivant a
lieu normalement.

Lancement :
    # Worker et planificateur dans le même processus
    celery -A admission.entrypoints.jobs worker -B -l INFO
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

from celery import Celery

from admission import config
from admission.domain import commands
from admission.service_layer import bootstrap, messagebus

logger = logging.getLogger(__name__)

app = Celery("admission")

app.conf.update(
    broker_url=config.get_broker_url(),
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=config.BUSINESS_TIMEZONE,
    enable_utc=True,
    task_ignore_result=True,
    # Un balayage à la fois par worker : les commandes sont réclamées une à une.
    worker_prefetch_multiplier=1,
)

app.conf.beat_schedule = {
    "expire-orders": {
        "task": "admission.expire_orders",
        "schedule": float(config.SWEEP_INTERVAL_SECONDS),
    },
    "poll-payments": {
        "task": "admission.poll_payments",
        "schedule": float(config.PAYMENT_POLLING_INTERVAL_SECONDS),
    },
}

# Construit au premier usage, dans le processus worker (après le fork).
bus: Optional[messagebus.MessageBus] = None


def get_bus() -> messagebus.MessageBus:
    global bus
    if bus is None:
        bus = bootstrap.bootstrap()
    return bus


@app.task(name="admission.expire_orders")
def expire_orders() -> dict:
    """Expire les commandes dont le délai de paiement est dépassé."""
    report = get_bus().handle(commands.ExpireOrders(limit=config.SWEEP_BATCH_SIZE)).pop(0)
    if report.errors:
        logger.warning("Balayage avec %d erreur(s)", report.errors)
    return dataclasses.asdict(report)


@app.task(name="admission.poll_payments")
def poll_payments() -> dict:
    report = get_bus().handle(commands.PollPayments(limit=config.SWEEP_BATCH_SIZE)).pop(0)
    return dataclasses.asdict(report)
