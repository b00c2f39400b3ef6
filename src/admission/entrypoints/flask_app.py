"""
Point d'entrée Flask.

L'API Flask est un thin adapter : elle se contente de
convertir les requêtes HTTP en commands, les envoie au
message bus, et convertit les résultats en réponses HTTP.

L'API ne contient aucune logique métier.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import Flask, jsonify, request

from admission.domain import commands
from admission.domain.errors import ErrorKind
from admission.service_layer import bootstrap
from admission.service_layer.results import Result
from admission.views import views

logger = logging.getLogger(__name__)

app = Flask(__name__)
bus = bootstrap.bootstrap()

HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CAPACITY_EXHAUSTED: 409,
    ErrorKind.DUPLICATE_ADMISSION: 409,
    ErrorKind.CONFIGURATION_GAP: 422,
    ErrorKind.NOT_ALLOWED: 400,
    ErrorKind.INTERNAL: 500,
}


def _respond(result: Result, success_status: int = 200):
    if result.ok:
        return jsonify(result.to_dict()), success_status
    return jsonify(result.to_dict()), HTTP_STATUS[result.kind]


@app.route("/events/<event_id>/registrations", methods=["POST"])
def register_endpoint(event_id: str):
    """
    POST /events/<event_id>/registrations
    Body JSON : { modality_id, athlete_id, shirt_size?, team?, status?,
                  payment_method?, expires_at?, discount_code? }
    """
    data = request.json
    expires_at = data.get("expires_at")
    if expires_at is not None:
        expires_at = datetime.fromisoformat(expires_at)

    cmd = commands.RegisterForEvent(
        event_id=event_id,
        modality_id=data["modality_id"],
        athlete_id=data["athlete_id"],
        shirt_size=data.get("shirt_size"),
        team=data.get("team"),
        requested_status=data.get("status", "pending"),
        payment_method=data.get("payment_method"),
        expires_at=expires_at,
        discount_code=data.get("discount_code"),
        buyer_ip=request.remote_addr,
    )
    result = bus.handle(cmd).pop(0)
    return _respond(result, 201)


@app.route("/events/<event_id>/batches/recalculate", methods=["POST"])
def recalculate_endpoint(event_id: str):
    result = bus.handle(commands.RecalculateBatches(event_id=event_id)).pop(0)
    return _respond(result)


@app.route("/events/<event_id>/availability", methods=["GET"])
def availability_endpoint(event_id: str):
    """GET /events/<event_id>/availability (lecture CQRS, après recalcul des lots)."""
    result = views.modalities_availability(event_id, bus)
    if result is None:
        return jsonify({"error_code": "EVENT_NOT_FOUND"}), 404
    result["registrations"] = views.can_accept_registrations(event_id, bus)
    return jsonify(result), 200


@app.route("/events/<event_id>/spots", methods=["GET"])
def spots_endpoint(event_id: str):
    result = views.available_spots(event_id, bus.uow)
    if result is None:
        return jsonify({"error_code": "EVENT_NOT_FOUND"}), 404
    return jsonify(result), 200


@app.route("/orders/<order_id>/cancel", methods=["POST"])
def cancel_order_endpoint(order_id: str):
    """
    POST /orders/<order_id>/cancel
    Body JSON : { reason, changed_by_id? }
    """
    data = request.json or {}
    cmd = commands.CancelOrder(
        order_id=order_id,
        reason=data.get("reason", "Annulation administrative"),
        changed_by_type="admin",
        changed_by_id=data.get("changed_by_id"),
    )
    result = bus.handle(cmd).pop(0)
    return _respond(result)


@app.route("/webhooks/payments", methods=["POST"])
def payment_webhook_endpoint():
    """
    POST /webhooks/payments
    Body JSON : { type, data: { id } }

    Le statut éventuellement présent dans le corps est ignoré : il est
    relu auprès de la passerelle. La passerelle attend toujours un 200.
    """
    data = request.json or {}
    payment_id = (data.get("data") or {}).get("id")
    if data.get("type") != "payment" or not payment_id:
        return jsonify({"received": True}), 200

    result = bus.handle(
        commands.ProcessPaymentNotification(payment_id=str(payment_id))
    ).pop(0)
    if not result.ok:
        logger.warning(
            "Notification de paiement %s non appliquée : %s", payment_id, result.message
        )
    return jsonify({"received": True, **result.to_dict()}), 200


@app.route("/status-history/<entity_type>/<entity_id>", methods=["GET"])
def status_history_endpoint(entity_type: str, entity_id: str):
    return jsonify(views.status_history(entity_type, entity_id, bus.uow)), 200
