"""
Adapter pour la passerelle de paiement.

Le moteur ne fait jamais confiance au statut envoyé par un client :
il interroge la passerelle, qui fait autorité sur l'état d'un paiement.
Le client concret de la passerelle vit hors de ce dépôt ; seul le
contrat est défini ici.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from admission.domain import model


class PaymentLookupError(Exception):
    """Levée quand la passerelle ne peut pas répondre sur un paiement."""
    pass


@dataclass(frozen=True)
class PaymentStatus:
    """État d'un paiement tel que rapporté par la passerelle."""

    payment_id: str
    status: str
    amount: Decimal
    method: str = "pix"

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"


@dataclass(frozen=True)
class Charge:
    """Paiement créé auprès de la passerelle pour une commande."""

    payment_id: str
    status: str
    expires_at: Optional[datetime] = None
    qr_code: Optional[str] = None


class AbstractPaymentGateway(abc.ABC):
    """Interface abstraite de la passerelle de paiement."""

    configured: bool = True

    @abc.abstractmethod
    def create_pix_charge(self, order: model.Order) -> Charge:
        raise NotImplementedError

    @abc.abstractmethod
    def create_card_charge(
        self, order: model.Order, card_token: str, installments: int = 1
    ) -> Charge:
        raise NotImplementedError

    @abc.abstractmethod
    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        """Lève PaymentLookupError si le paiement ne peut pas être consulté."""
        raise NotImplementedError


class UnconfiguredPaymentGateway(AbstractPaymentGateway):
    """Passerelle par défaut, quand aucun identifiant n'est fourni."""

    configured = False

    def create_pix_charge(self, order: model.Order) -> Charge:
        raise PaymentLookupError("Passerelle de paiement non configurée")

    def create_card_charge(
        self, order: model.Order, card_token: str, installments: int = 1
    ) -> Charge:
        raise PaymentLookupError("Passerelle de paiement non configurée")

    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        raise PaymentLookupError("Passerelle de paiement non configurée")
