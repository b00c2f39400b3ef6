"""
Adapter pour les codes de réduction.

Les règles d'éligibilité (coupons, vouchers) sont hors du moteur : il
demande seulement le montant de la réduction, puis confirme l'usage du
code une fois l'inscription validée.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


class DiscountRejected(Exception):
    """Levée quand un code de réduction ne peut pas être appliqué."""
    pass


@dataclass(frozen=True)
class Discount:
    code: str
    amount: Decimal


class AbstractDiscountResolver(abc.ABC):
    """Interface abstraite du résolveur de réductions."""

    @abc.abstractmethod
    def resolve(
        self,
        code: str,
        event_id: str,
        modality_id: str,
        athlete_id: str,
        base_amount: Decimal,
    ) -> Optional[Discount]:
        raise NotImplementedError

    @abc.abstractmethod
    def commit_usage(
        self, code: str, order_id: str, registration_id: str, athlete_id: str
    ) -> None:
        raise NotImplementedError


class NoDiscounts(AbstractDiscountResolver):
    """Aucun code n'est reconnu."""

    def resolve(
        self,
        code: str,
        event_id: str,
        modality_id: str,
        athlete_id: str,
        base_amount: Decimal,
    ) -> Optional[Discount]:
        raise DiscountRejected(f"Code de réduction inconnu : {code}")

    def commit_usage(
        self, code: str, order_id: str, registration_id: str, athlete_id: str
    ) -> None:
        pass
