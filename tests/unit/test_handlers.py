"""
Tests des handlers via la service layer (high gear).

Ces tests utilisent des fakes (repositories en mémoire, FakeUnitOfWork,
collaborateurs externes contrôlables) pour tester le comportement métier
sans base de données ni I/O. C'est le "high gear" : on teste les cas
d'usage complets, à travers le message bus.

Le FakeUnitOfWork n'annule pas les modifications en mémoire lors d'un
rollback : l'atomicité est vérifiée dans les tests d'intégration.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.exc import OperationalError

from admission import config
from admission.adapters import repository
from admission.adapters.athletes import AbstractAthleteDirectory
from admission.adapters.discounts import AbstractDiscountResolver, Discount, DiscountRejected
from admission.adapters.payments import (
    AbstractPaymentGateway,
    Charge,
    PaymentLookupError,
    PaymentStatus,
)
from admission.domain import clock, commands, model
from admission.domain.errors import ErrorCode, ErrorKind
from admission.domain.model import (
    AccessType,
    Batch,
    BatchStatus,
    Event,
    EventStatus,
    Modality,
    Order,
    OrderStatus,
    Price,
    Registration,
    RegistrationStatus,
    ShirtSize,
)
from admission.service_layer import bootstrap, messagebus, unit_of_work

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


# --- Repositories ---


class FakeEventRepository(repository.AbstractEventRepository):
    def __init__(self) -> None:
        super().__init__()
        self._events: dict[str, model.Event] = {}

    def _add(self, sport_event: model.Event) -> None:
        self._events[sport_event.id] = sport_event

    def _get(self, event_id: str, lock: bool) -> Optional[model.Event]:
        return self._events.get(event_id)


class FakeOrderRepository(repository.AbstractOrderRepository):
    def __init__(self) -> None:
        super().__init__()
        self._orders: dict[str, model.Order] = {}

    def _add(self, order: model.Order) -> None:
        self._orders[order.id] = order

    def _get(self, order_id: str, lock: bool) -> Optional[model.Order]:
        return self._orders.get(order_id)

    def _claim_overdue(self, order_id: str, now: datetime) -> Optional[model.Order]:
        order = self._orders.get(order_id)
        if order is not None and order.is_overdue(now):
            return order
        return None

    def _get_by_payment_id(self, payment_id: str) -> Optional[model.Order]:
        return next(
            (
                o for o in self._orders.values()
                if payment_id in (o.gateway_payment_id, o.pix_payment_id)
            ),
            None,
        )

    def list_overdue_ids(self, now: datetime, limit: int) -> list[str]:
        overdue = sorted(
            (o for o in self._orders.values() if o.is_overdue(now)),
            key=lambda o: o.expires_at,
        )
        return [o.id for o in overdue][:limit]

    def list_pending_with_payment(self, limit: int) -> list[model.Order]:
        return [
            o for o in self._orders.values()
            if o.status == model.OrderStatus.PENDING and o.gateway_payment_id
        ][:limit]

    def next_number(self) -> int:
        return max((o.number for o in self._orders.values()), default=0) + 1


class FakeModalityRepository(repository.AbstractModalityRepository):
    def __init__(self) -> None:
        self._modalities: dict[str, model.Modality] = {}

    def add(self, modality: model.Modality) -> None:
        self._modalities[modality.id] = modality

    def get(self, modality_id: str, lock: bool = False) -> Optional[model.Modality]:
        return self._modalities.get(modality_id)

    def list_for_event(self, event_id: str) -> list[model.Modality]:
        return sorted(
            (m for m in self._modalities.values() if m.event_id == event_id),
            key=lambda m: m.position,
        )


class FakeBatchRepository(repository.AbstractBatchRepository):
    def __init__(self) -> None:
        self._batches: dict[str, model.Batch] = {}

    def add(self, batch: model.Batch) -> None:
        self._batches[batch.id] = batch

    def get(self, batch_id: str, lock: bool = False) -> Optional[model.Batch]:
        return self._batches.get(batch_id)

    def first_active(self, event_id: str, lock: bool = False) -> Optional[model.Batch]:
        return next(iter(self.list_active(event_id)), None)

    def list_active(self, event_id: str, lock: bool = False) -> list[model.Batch]:
        return [
            b for b in self.list_for_event(event_id)
            if b.status == model.BatchStatus.ACTIVE
        ]

    def list_future(
        self, event_id: str, after_position: Optional[int] = None, lock: bool = False
    ) -> list[model.Batch]:
        return [
            b for b in self.list_for_event(event_id)
            if b.status == model.BatchStatus.FUTURE
            and (after_position is None or b.position > after_position)
        ]

    def list_for_event(self, event_id: str) -> list[model.Batch]:
        return sorted(
            (b for b in self._batches.values() if b.event_id == event_id),
            key=lambda b: b.position,
        )


class FakePriceRepository(repository.AbstractPriceRepository):
    def __init__(self) -> None:
        self._prices: list[model.Price] = []

    def add(self, price: model.Price) -> None:
        self._prices.append(price)

    def get(self, modality_id: str, batch_id: str) -> Optional[model.Price]:
        return next(
            (
                p for p in self._prices
                if p.modality_id == modality_id and p.batch_id == batch_id
            ),
            None,
        )


class FakeShirtSizeRepository(repository.AbstractShirtSizeRepository):
    def __init__(self) -> None:
        self._stocks: list[model.ShirtSize] = []

    def add(self, stock: model.ShirtSize) -> None:
        self._stocks.append(stock)

    def get_stock(
        self,
        event_id: str,
        size: str,
        modality_id: Optional[str] = None,
        lock: bool = False,
    ) -> Optional[model.ShirtSize]:
        for stock in self._stocks:
            if stock.size != size:
                continue
            if modality_id is None and stock.event_id == event_id and stock.modality_id is None:
                return stock
            if modality_id is not None and stock.modality_id == modality_id:
                return stock
        return None


class FakeRegistrationRepository(repository.AbstractRegistrationRepository):
    def __init__(self) -> None:
        self._registrations: list[model.Registration] = []

    def add(self, registration: model.Registration) -> None:
        self._registrations.append(registration)

    def list_for_order(self, order_id: str, lock: bool = False) -> list[model.Registration]:
        return sorted(
            (r for r in self._registrations if r.order_id == order_id),
            key=lambda r: r.id,
        )

    def has_active(
        self, event_id: str, athlete_id: str, modality_id: Optional[str] = None
    ) -> bool:
        return any(
            r.event_id == event_id
            and r.athlete_id == athlete_id
            and r.status != model.RegistrationStatus.CANCELLED
            and (modality_id is None or r.modality_id == modality_id)
            for r in self._registrations
        )

    def next_number(self) -> int:
        return max((r.number for r in self._registrations), default=0) + 1


class FakeStatusLogRepository(repository.AbstractStatusLogRepository):
    def __init__(self) -> None:
        self.entries: list[model.StatusChange] = []

    def add(self, entry: model.StatusChange) -> None:
        self.entries.append(entry)

    def history(self, entity_type: str, entity_id: str) -> list[model.StatusChange]:
        return [
            e for e in reversed(self.entries)
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]


class FakeUnitOfWork(unit_of_work.AbstractUnitOfWork):
    """
    Unit of Work en mémoire pour les tests.

    L'attribut `committed` permet de vérifier que le commit
    a bien été appelé dans les tests.
    """

    def __init__(self) -> None:
        super().__init__()
        self.events = FakeEventRepository()
        self.modalities = FakeModalityRepository()
        self.batches = FakeBatchRepository()
        self.prices = FakePriceRepository()
        self.shirt_sizes = FakeShirtSizeRepository()
        self.orders = FakeOrderRepository()
        self.registrations = FakeRegistrationRepository()
        self.status_log = FakeStatusLogRepository()
        self.committed = False

    def __enter__(self) -> FakeUnitOfWork:
        return super().__enter__()

    def _commit(self) -> None:
        self.committed = True

    def _rollback(self) -> None:
        pass


# --- Collaborateurs externes ---


class FakeAthleteDirectory(AbstractAthleteDirectory):
    def __init__(self, ids: tuple[str, ...] = ("ath-1", "ath-2", "ath-3")):
        self._profiles = {
            athlete_id: model.AthleteProfile(
                id=athlete_id,
                full_name=f"Athlète {athlete_id}",
                cpf=f"000.000.000-{index:02d}",
                sex="F",
            )
            for index, athlete_id in enumerate(ids)
        }

    def get(self, athlete_id: str) -> Optional[model.AthleteProfile]:
        return self._profiles.get(athlete_id)


class FakeDiscounts(AbstractDiscountResolver):
    def __init__(self, codes: Optional[dict[str, Decimal]] = None):
        self.codes = codes or {}
        self.used: list[tuple[str, str]] = []

    def resolve(self, code, event_id, modality_id, athlete_id, base_amount):
        if code not in self.codes:
            raise DiscountRejected(f"Code {code} invalide")
        return Discount(code=code, amount=self.codes[code])

    def commit_usage(self, code, order_id, registration_id, athlete_id) -> None:
        self.used.append((code, order_id))


class FakePaymentGateway(AbstractPaymentGateway):
    def __init__(self, statuses: Optional[dict[str, PaymentStatus]] = None, configured: bool = True):
        self.statuses = statuses or {}
        self.configured = configured

    def create_pix_charge(self, order: model.Order) -> Charge:
        return Charge(
            payment_id=f"pix-{order.id}",
            status="pending",
            expires_at=clock.now() + timedelta(minutes=30),
        )

    def create_card_charge(self, order, card_token, installments=1) -> Charge:
        return Charge(payment_id=f"card-{order.id}", status="pending")

    def get_payment_status(self, payment_id: str) -> PaymentStatus:
        if payment_id not in self.statuses:
            raise PaymentLookupError(f"Paiement {payment_id} introuvable")
        return self.statuses[payment_id]


# --- Bootstrap de test ---


def bootstrap_test_bus(
    uow: Optional[FakeUnitOfWork] = None,
    payments: Optional[FakePaymentGateway] = None,
    discounts: Optional[FakeDiscounts] = None,
    athletes: Optional[FakeAthleteDirectory] = None,
    now: datetime = NOW,
) -> messagebus.MessageBus:
    """
    Construit un MessageBus configuré avec des fakes.

    Même wiring que la production, mais avec des implémentations
    en mémoire et une horloge figée.
    """
    return bootstrap.bootstrap(
        start_orm=False,
        uow=uow or FakeUnitOfWork(),
        payments_gateway=payments or FakePaymentGateway(),
        discount_resolver=discounts or FakeDiscounts(),
        athlete_directory=athletes or FakeAthleteDirectory(),
        clock=lambda: now,
    )


# --- Helpers ---


def préparer_événement(
    uow: FakeUnitOfWork,
    total_capacity: int = 100,
    occupied_count: int = 0,
    status: EventStatus = EventStatus.PUBLISHED,
    access_type: AccessType = AccessType.PAID,
    price: Optional[Decimal] = Decimal("100.00"),
    max_uses: Optional[int] = None,
    modality_capacity: Optional[int] = None,
    allow_multiple_modalities: bool = False,
    shirt_grid_per_modality: bool = False,
    convenience_fee: Decimal = Decimal("0"),
) -> tuple[Event, Modality, Batch]:
    événement = Event(
        "Corrida de São Paulo",
        total_capacity,
        occupied_count=occupied_count,
        status=status,
        allow_multiple_modalities=allow_multiple_modalities,
        shirt_grid_per_modality=shirt_grid_per_modality,
        id="evt-1",
    )
    uow.events.add(événement)
    modalité = Modality(
        événement.id,
        "10 km",
        access_type=access_type,
        capacity=modality_capacity,
        convenience_fee=convenience_fee,
        id="mod-10k",
    )
    uow.modalities.add(modalité)
    lot = Batch(
        événement.id,
        "Lot 1",
        1,
        starts_at=NOW - timedelta(days=10),
        max_uses=max_uses,
        status=BatchStatus.ACTIVE,
        id="lot-1",
    )
    uow.batches.add(lot)
    if price is not None:
        uow.prices.add(Price(modalité.id, lot.id, price))
    return événement, modalité, lot


def ajouter_lot(
    uow: FakeUnitOfWork,
    position: int,
    price: Optional[Decimal] = Decimal("150.00"),
    **kwargs,
) -> Batch:
    kwargs.setdefault("starts_at", NOW - timedelta(days=1))
    lot = Batch("evt-1", f"Lot {position}", position, id=f"lot-{position}", **kwargs)
    uow.batches.add(lot)
    if price is not None:
        uow.prices.add(Price("mod-10k", lot.id, price))
    return lot


def inscrire(bus: messagebus.MessageBus, athlete_id: str = "ath-1", **kwargs):
    kwargs.setdefault("modality_id", "mod-10k")
    [result] = bus.handle(
        commands.RegisterForEvent(event_id="evt-1", athlete_id=athlete_id, **kwargs)
    )
    return result


# --- Admission ---


class TestRegisterForEvent:
    def test_admission_en_attente_débite_les_compteurs(self):
        bus = bootstrap_test_bus()
        événement, modalité, lot = préparer_événement(bus.uow)

        result = inscrire(bus)

        assert result.ok
        reçu = result.value
        assert reçu.order_status == "pending"
        assert reçu.registration_status == "pending"
        assert reçu.batch_id == "lot-1"
        assert reçu.unit_price == Decimal("100.00")
        assert reçu.expires_at == NOW + timedelta(minutes=30)
        assert (événement.occupied_count, modalité.occupied_count, lot.used_count) == (1, 1, 1)
        assert bus.uow.committed

    def test_copie_l_identité_de_l_athlète(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)

        result = inscrire(bus, team="Equipe Azul")

        [inscription] = bus.uow.registrations.list_for_order(result.value.order_id)
        assert inscription.full_name == "Athlète ath-1"
        assert inscription.cpf == "000.000.000-00"
        assert inscription.team == "Equipe Azul"

    def test_le_total_inclut_les_frais(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, convenience_fee=Decimal("7.50"))

        result = inscrire(bus)

        assert result.value.total_amount == Decimal("107.50")

    def test_délai_de_paiement_fourni_par_l_appelant(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        délai = NOW + timedelta(hours=2)

        result = inscrire(bus, expires_at=délai)

        assert result.value.expires_at == délai

    def test_numéros_séquentiels(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)

        premier = inscrire(bus, athlete_id="ath-1").value
        second = inscrire(bus, athlete_id="ath-2").value

        assert (premier.order_number, second.order_number) == (1, 2)
        assert (premier.registration_number, second.registration_number) == (1, 2)

    def test_athlète_inconnu(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)

        result = inscrire(bus, athlete_id="ath-inconnu")

        assert result.code == ErrorCode.ATHLETE_NOT_FOUND
        assert result.kind == ErrorKind.NOT_FOUND

    def test_événement_inconnu(self):
        bus = bootstrap_test_bus()

        result = inscrire(bus)

        assert not result.ok
        assert result.code == ErrorCode.EVENT_NOT_FOUND

    def test_événement_sold_out_refusé(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, status=EventStatus.SOLD_OUT)

        result = inscrire(bus)

        assert result.code == ErrorCode.EVENT_SOLD_OUT
        assert result.kind == ErrorKind.CAPACITY_EXHAUSTED

    def test_événement_plein_passe_en_sold_out(self):
        bus = bootstrap_test_bus()
        événement, _, _ = préparer_événement(bus.uow, total_capacity=1, occupied_count=1)

        result = inscrire(bus)

        assert result.code == ErrorCode.EVENT_FULL
        assert événement.status == EventStatus.SOLD_OUT
        assert bus.uow.committed
        [entrée] = bus.uow.status_log.history("event", "evt-1")
        assert (entrée.old_status, entrée.new_status) == ("published", "sold_out")

    def test_modalité_pleine(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, modality_capacity=1)
        inscrire(bus, athlete_id="ath-1")

        result = inscrire(bus, athlete_id="ath-2")

        assert result.code == ErrorCode.MODALITY_FULL

    def test_modalité_d_un_autre_événement(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        bus.uow.modalities.add(Modality("evt-2", "Kids", id="mod-kids"))

        result = inscrire(bus, modality_id="mod-kids")

        assert result.code == ErrorCode.MODALITY_NOT_FOUND

    def test_lot_suivant_activé_quand_le_lot_est_épuisé(self):
        """Deux admissions remplissent le lot 1, la troisième passe sur le lot 2."""
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow, max_uses=2)
        lot2 = ajouter_lot(bus.uow, 2, price=Decimal("150.00"))

        résultats = [inscrire(bus, athlete_id=a) for a in ("ath-1", "ath-2", "ath-3")]

        assert all(r.ok for r in résultats)
        assert [r.value.batch_id for r in résultats] == ["lot-1", "lot-1", "lot-2"]
        assert résultats[2].value.unit_price == Decimal("150.00")
        assert lot1.status == BatchStatus.CLOSED
        assert lot2.status == BatchStatus.ACTIVE
        assert (lot1.used_count, lot2.used_count) == (2, 1)

    def test_lot_plein_remplacé_pendant_l_admission(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow, max_uses=2)
        lot1.used_count = 2
        ajouter_lot(bus.uow, 2)

        result = inscrire(bus)

        assert result.value.batch_id == "lot-2"
        assert lot1.status == BatchStatus.CLOSED

    def test_lot_expiré_remplacé_pendant_l_admission(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot1.ends_at = NOW - timedelta(minutes=1)
        ajouter_lot(bus.uow, 2)

        result = inscrire(bus)

        assert result.value.batch_id == "lot-2"
        assert lot1.status == BatchStatus.CLOSED
        fermetures = bus.uow.status_log.history("batch", "lot-1")
        assert fermetures[0].new_status == "closed"

    def test_aucun_lot_disponible(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot1.ends_at = NOW - timedelta(minutes=1)

        result = inscrire(bus)

        assert result.code == ErrorCode.NO_ACTIVE_BATCH_AVAILABLE

    def test_lot_futur_pas_encore_ouvert(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot1.status = BatchStatus.FUTURE
        lot1.starts_at = NOW + timedelta(days=1)

        result = inscrire(bus)

        assert result.code == ErrorCode.NO_ACTIVE_BATCH_AVAILABLE
        assert lot1.status == BatchStatus.FUTURE

    def test_sans_lot_actif_le_premier_lot_ouvert_est_activé(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot1.status = BatchStatus.FUTURE

        result = inscrire(bus)

        assert result.ok
        assert lot1.status == BatchStatus.ACTIVE

    def test_trop_de_bascules_de_lot(self, monkeypatch):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow, max_uses=1, price=Decimal("10"))
        lot1.used_count = 1
        for position in (2, 3):
            ajouter_lot(bus.uow, position, status=BatchStatus.ACTIVE, max_uses=1, used_count=1)
        monkeypatch.setattr(config, "MAX_BATCH_SWITCH_ATTEMPTS", 2)

        result = inscrire(bus)

        assert result.code == ErrorCode.INTERNAL_ERROR
        assert result.kind == ErrorKind.INTERNAL

    def test_modalité_payante_sans_prix(self):
        """Une modalité payante sans prix n'est jamais traitée comme gratuite."""
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, price=None)

        result = inscrire(bus, requested_status="confirmed")

        assert result.code == ErrorCode.NO_VALID_PRICE
        assert result.kind == ErrorKind.CONFIGURATION_GAP

    def test_modalité_payante_avec_prix_nul(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, price=Decimal("0"))

        result = inscrire(bus)

        assert result.code == ErrorCode.NO_VALID_PRICE

    def test_modalité_gratuite_confirmée_immédiatement(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, access_type=AccessType.FREE, price=None)

        result = inscrire(bus, requested_status="confirmed")

        reçu = result.value
        assert reçu.order_status == "paid"
        assert reçu.registration_status == "confirmed"
        assert reçu.total_amount == Decimal("0")
        assert reçu.expires_at is None
        commande = bus.uow.orders.get(reçu.order_id)
        assert commande.payment_method == "free"
        assert commande.paid_at == NOW

    def test_confirmation_refusée_si_un_montant_est_dû(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)

        result = inscrire(bus, requested_status="confirmed")

        assert result.value.order_status == "pending"
        assert result.value.registration_status == "pending"

    def test_voucher_avec_prix_reste_payant(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, access_type=AccessType.VOUCHER, price=Decimal("50"))

        result = inscrire(bus, requested_status="confirmed")

        assert result.value.order_status == "pending"
        assert result.value.total_amount == Decimal("50")

    def test_voucher_sans_prix_admis_gratuitement(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, access_type=AccessType.VOUCHER, price=None)

        result = inscrire(bus, requested_status="confirmed")

        reçu = result.value
        assert reçu.unit_price == Decimal("0")
        assert reçu.total_amount == Decimal("0")
        assert reçu.order_status == "paid"
        assert reçu.registration_status == "confirmed"


class TestDoublons:
    def test_seconde_inscription_dans_la_même_modalité(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        inscrire(bus)

        result = inscrire(bus)

        assert result.code == ErrorCode.ALREADY_REGISTERED
        assert result.kind == ErrorKind.DUPLICATE_ADMISSION

    def test_une_seule_modalité_par_défaut(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        bus.uow.modalities.add(Modality("evt-1", "21 km", id="mod-21k"))
        bus.uow.prices.add(Price("mod-21k", "lot-1", Decimal("180")))
        inscrire(bus)

        result = inscrire(bus, modality_id="mod-21k")

        assert result.code == ErrorCode.ALREADY_REGISTERED

    def test_plusieurs_modalités_autorisées(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, allow_multiple_modalities=True)
        bus.uow.modalities.add(Modality("evt-1", "21 km", id="mod-21k"))
        bus.uow.prices.add(Price("mod-21k", "lot-1", Decimal("180")))
        inscrire(bus)

        autre_modalité = inscrire(bus, modality_id="mod-21k")
        même_modalité = inscrire(bus)

        assert autre_modalité.ok
        assert même_modalité.code == ErrorCode.ALREADY_REGISTERED

    def test_réinscription_après_annulation(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        première = inscrire(bus).value
        bus.handle(commands.CancelOrder(order_id=première.order_id, reason="Désistement"))

        result = inscrire(bus)

        assert result.ok


class TestTShirts:
    def test_inscription_gratuite_débite_le_stock(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, access_type=AccessType.FREE, price=None)
        stock = ShirtSize("evt-1", "M", total_quantity=1)
        bus.uow.shirt_sizes.add(stock)

        result = inscrire(bus, requested_status="confirmed", shirt_size="M")

        assert result.ok
        assert stock.available_quantity == 0
        [inscription] = bus.uow.registrations.list_for_order(result.value.order_id)
        assert inscription.shirt_reserved

    def test_taille_épuisée(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, access_type=AccessType.FREE, price=None)
        bus.uow.shirt_sizes.add(ShirtSize("evt-1", "M", total_quantity=1, available_quantity=0))

        result = inscrire(bus, requested_status="confirmed", shirt_size="M")

        assert result.code == ErrorCode.SIZE_SOLD_OUT

    def test_grille_par_modalité(self):
        bus = bootstrap_test_bus()
        préparer_événement(
            bus.uow, access_type=AccessType.FREE, price=None, shirt_grid_per_modality=True
        )
        globale = ShirtSize("evt-1", "P", total_quantity=5)
        par_modalité = ShirtSize("evt-1", "P", total_quantity=5, modality_id="mod-10k")
        bus.uow.shirt_sizes.add(globale)
        bus.uow.shirt_sizes.add(par_modalité)

        inscrire(bus, requested_status="confirmed", shirt_size="P")

        assert globale.available_quantity == 5
        assert par_modalité.available_quantity == 4

    def test_sans_grille_configurée(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow, access_type=AccessType.FREE, price=None)

        result = inscrire(bus, requested_status="confirmed", shirt_size="GG")

        assert result.ok

    def test_inscription_payante_diffère_le_débit(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        stock = ShirtSize("evt-1", "M", total_quantity=3)
        bus.uow.shirt_sizes.add(stock)

        result = inscrire(bus, shirt_size="M")

        assert stock.available_quantity == 3
        [inscription] = bus.uow.registrations.list_for_order(result.value.order_id)
        assert not inscription.shirt_reserved


class TestRéductions:
    def test_réduction_appliquée_et_usage_confirmé(self):
        discounts = FakeDiscounts({"PROMO10": Decimal("10")})
        bus = bootstrap_test_bus(discounts=discounts)
        préparer_événement(bus.uow)

        result = inscrire(bus, discount_code="PROMO10")

        assert result.value.total_amount == Decimal("90.00")
        assert discounts.used == [("PROMO10", result.value.order_id)]

    def test_code_refusé(self):
        discounts = FakeDiscounts()
        bus = bootstrap_test_bus(discounts=discounts)
        préparer_événement(bus.uow)

        result = inscrire(bus, discount_code="FAUX")

        assert result.code == ErrorCode.DISCOUNT_REJECTED
        assert discounts.used == []

    def test_réduction_totale_permet_la_confirmation(self):
        bus = bootstrap_test_bus(discounts=FakeDiscounts({"CORTESIA": Decimal("500")}))
        préparer_événement(bus.uow)

        result = inscrire(bus, discount_code="CORTESIA", requested_status="confirmed")

        assert result.value.total_amount == Decimal("0")
        assert result.value.order_status == "paid"
        commande = bus.uow.orders.get(result.value.order_id)
        assert commande.discount_amount == Decimal("100.00")


# --- Confirmation du paiement ---


def commande_en_attente(bus: messagebus.MessageBus, **kwargs) -> Order:
    reçu = inscrire(bus, **kwargs).value
    return bus.uow.orders.get(reçu.order_id)


class TestConfirmPayment:
    def test_confirme_la_commande_et_les_inscriptions(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        stock = ShirtSize("evt-1", "M", total_quantity=2)
        bus.uow.shirt_sizes.add(stock)
        commande = commande_en_attente(bus, shirt_size="M")

        [result] = bus.handle(commands.ConfirmPayment(commande.id, "pix", "pay-1"))

        assert result.ok
        assert not result.value.already_paid
        assert commande.status == OrderStatus.PAID
        assert commande.paid_at == NOW
        assert commande.gateway_payment_id == "pay-1"
        [inscription] = bus.uow.registrations.list_for_order(commande.id)
        assert inscription.status == RegistrationStatus.CONFIRMED
        assert inscription.shirt_reserved
        assert stock.available_quantity == 1

    def test_déjà_payée_sans_effet(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        stock = ShirtSize("evt-1", "M", total_quantity=2)
        bus.uow.shirt_sizes.add(stock)
        commande = commande_en_attente(bus, shirt_size="M")
        bus.handle(commands.ConfirmPayment(commande.id, "pix"))

        [result] = bus.handle(commands.ConfirmPayment(commande.id, "pix"))

        assert result.ok
        assert result.value.already_paid
        assert stock.available_quantity == 1

    def test_commande_inconnue(self):
        bus = bootstrap_test_bus()

        [result] = bus.handle(commands.ConfirmPayment("inconnue", "pix"))

        assert result.code == ErrorCode.ORDER_NOT_FOUND

    @pytest.mark.parametrize(
        "statut, code",
        [
            (OrderStatus.CANCELLED, ErrorCode.ORDER_CANCELLED),
            (OrderStatus.EXPIRED, ErrorCode.ORDER_EXPIRED),
        ],
    )
    def test_commande_close_refusée(self, statut, code):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        commande = commande_en_attente(bus)
        commande.status = statut

        [result] = bus.handle(commands.ConfirmPayment(commande.id, "pix"))

        assert result.code == code
        assert result.kind == ErrorKind.NOT_ALLOWED

    def test_demande_regroupée_par_taille(self):
        """Deux inscriptions en M pour une seule unité : rien n'est confirmé."""
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        stock = ShirtSize("evt-1", "M", total_quantity=1)
        bus.uow.shirt_sizes.add(stock)
        commande = Order(1, "evt-1", "ath-1", Decimal("200"), id="cmd-groupe")
        bus.uow.orders.add(commande)
        for numéro, athlete_id in enumerate(("ath-1", "ath-2"), start=1):
            bus.uow.registrations.add(
                Registration(
                    numéro, commande.id, "evt-1", "mod-10k", "lot-1", athlete_id,
                    Decimal("100"), shirt_size="M",
                )
            )

        [result] = bus.handle(commands.ConfirmPayment(commande.id, "pix"))

        assert result.code == ErrorCode.SIZE_SOLD_OUT
        assert stock.available_quantity == 1
        assert commande.status == OrderStatus.PENDING
        assert all(
            r.status == RegistrationStatus.PENDING
            for r in bus.uow.registrations.list_for_order(commande.id)
        )

    def test_journal_des_transitions(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        commande = commande_en_attente(bus)

        bus.handle(commands.ConfirmPayment(commande.id, "credit_card"))

        historique = bus.uow.status_log.history("order", commande.id)
        assert [(e.old_status, e.new_status) for e in historique] == [
            ("pending", "paid"),
            (None, "pending"),
        ]


# --- Recalcul des lots ---


def recalculer(bus: messagebus.MessageBus):
    [result] = bus.handle(commands.RecalculateBatches(event_id="evt-1"))
    return result


class TestRecalculateBatches:
    def test_ferme_le_lot_expiré_et_active_le_suivant(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot1.ends_at = NOW - timedelta(hours=1)
        lot2 = ajouter_lot(bus.uow, 2)

        result = recalculer(bus)

        résumé = result.value
        assert résumé.batches_updated == 2
        assert résumé.active_batch_id == "lot-2"
        assert résumé.has_valid_batches
        assert lot1.status == BatchStatus.CLOSED
        assert lot2.status == BatchStatus.ACTIVE

    def test_idempotent(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot1.ends_at = NOW - timedelta(hours=1)
        ajouter_lot(bus.uow, 2)
        recalculer(bus)
        entrées = len(bus.uow.status_log.entries)

        second = recalculer(bus).value

        assert second.batches_updated == 0
        assert second.active_batch_id == "lot-2"
        assert len(bus.uow.status_log.entries) == entrées

    def test_un_seul_lot_activé_par_appel(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot1.status = BatchStatus.CLOSED
        lot2, lot3 = ajouter_lot(bus.uow, 2), ajouter_lot(bus.uow, 3)

        recalculer(bus)

        assert lot2.status == BatchStatus.ACTIVE
        assert lot3.status == BatchStatus.FUTURE

    def test_lot_actif_valide_conservé(self):
        bus = bootstrap_test_bus()
        _, _, lot1 = préparer_événement(bus.uow)
        lot2 = ajouter_lot(bus.uow, 2)

        résumé = recalculer(bus).value

        assert résumé.batches_updated == 0
        assert résumé.active_batch_id == "lot-1"
        assert lot2.status == BatchStatus.FUTURE

    def test_événement_plein_marqué_sold_out(self):
        bus = bootstrap_test_bus()
        événement, _, lot1 = préparer_événement(bus.uow, total_capacity=5, occupied_count=5)

        résumé = recalculer(bus).value

        assert résumé.event_marked_sold_out
        assert résumé.event_status == "sold_out"
        assert événement.status == EventStatus.SOLD_OUT
        assert lot1.status == BatchStatus.ACTIVE

    def test_plus_aucun_lot_marque_sold_out(self):
        bus = bootstrap_test_bus()
        événement, _, lot1 = préparer_événement(bus.uow, max_uses=3)
        lot1.used_count = 3

        résumé = recalculer(bus).value

        assert résumé.event_marked_sold_out
        assert not résumé.has_valid_batches
        assert événement.status == EventStatus.SOLD_OUT

    def test_lot_futur_en_attente_n_épuise_pas_l_événement(self):
        bus = bootstrap_test_bus()
        événement, _, lot1 = préparer_événement(bus.uow)
        lot1.ends_at = NOW - timedelta(hours=1)
        lot2 = ajouter_lot(bus.uow, 2, starts_at=NOW + timedelta(days=2))

        résumé = recalculer(bus).value

        assert not résumé.has_valid_batches
        assert not résumé.event_marked_sold_out
        assert événement.status == EventStatus.PUBLISHED
        assert lot2.status == BatchStatus.FUTURE

    def test_lot_futur_repris_à_l_ouverture(self):
        uow = FakeUnitOfWork()
        _, _, lot1 = préparer_événement(uow)
        lot1.ends_at = NOW - timedelta(hours=1)
        lot2 = ajouter_lot(uow, 2, starts_at=NOW + timedelta(days=2))
        recalculer(bootstrap_test_bus(uow=uow))

        plus_tard = bootstrap_test_bus(uow=uow, now=NOW + timedelta(days=3))
        résumé = recalculer(plus_tard).value

        assert résumé.active_batch_id == lot2.id
        assert lot2.status == BatchStatus.ACTIVE

    def test_événement_inconnu(self):
        bus = bootstrap_test_bus()

        result = recalculer(bus)

        assert result.code == ErrorCode.EVENT_NOT_FOUND


# --- Expiration et annulation ---


class TestExpireOrders:
    def test_commande_expirée_rend_ses_places(self):
        uow = FakeUnitOfWork()
        événement, modalité, lot = préparer_événement(uow)
        commande = commande_en_attente(bootstrap_test_bus(uow=uow))

        plus_tard = bootstrap_test_bus(uow=uow, now=NOW + timedelta(hours=1))
        [rapport] = plus_tard.handle(commands.ExpireOrders())

        assert (rapport.processed, rapport.released, rapport.extended, rapport.errors) == (1, 1, 0, 0)
        assert commande.status == OrderStatus.EXPIRED
        [inscription] = uow.registrations.list_for_order(commande.id)
        assert inscription.status == RegistrationStatus.CANCELLED
        assert (événement.occupied_count, modalité.occupied_count, lot.used_count) == (0, 0, 0)

    def test_pix_encore_valide_prolonge_le_délai(self):
        uow = FakeUnitOfWork()
        événement, _, _ = préparer_événement(uow)
        commande = commande_en_attente(bootstrap_test_bus(uow=uow))
        commande.pix_payment_id = "pix-1"
        commande.pix_expires_at = NOW + timedelta(hours=2)

        plus_tard = bootstrap_test_bus(uow=uow, now=NOW + timedelta(hours=1))
        [rapport] = plus_tard.handle(commands.ExpireOrders())

        assert (rapport.processed, rapport.released, rapport.extended) == (0, 0, 1)
        assert commande.status == OrderStatus.PENDING
        assert commande.expires_at == NOW + timedelta(hours=2)
        assert événement.occupied_count == 1

    def test_released_compte_les_inscriptions_annulées(self):
        uow = FakeUnitOfWork()
        événement, modalité, lot = préparer_événement(uow, allow_multiple_modalities=True)
        commande = commande_en_attente(bootstrap_test_bus(uow=uow))
        uow.modalities.add(Modality("evt-1", "21 km", id="mod-21k", occupied_count=1))
        uow.registrations.add(
            Registration(
                2, commande.id, "evt-1", "mod-21k", lot.id, "ath-1", Decimal("100.00")
            )
        )
        événement.occupied_count += 1
        lot.used_count += 1

        plus_tard = bootstrap_test_bus(uow=uow, now=NOW + timedelta(hours=1))
        [rapport] = plus_tard.handle(commands.ExpireOrders())

        assert (rapport.processed, rapport.released) == (1, 2)
        assert (événement.occupied_count, modalité.occupied_count, lot.used_count) == (0, 0, 0)

    def test_commande_dans_les_délais_ignorée(self):
        bus = bootstrap_test_bus()
        préparer_événement(bus.uow)
        commande = commande_en_attente(bus)

        [rapport] = bus.handle(commands.ExpireOrders())

        assert rapport.processed == 0
        assert commande.status == OrderStatus.PENDING

    def test_sold_out_reste_acquis_après_libération(self):
        uow = FakeUnitOfWork()
        événement, _, _ = préparer_événement(uow, total_capacity=1)
        commande_en_attente(bootstrap_test_bus(uow=uow))
        recalculer(bootstrap_test_bus(uow=uow))

        plus_tard = bootstrap_test_bus(uow=uow, now=NOW + timedelta(hours=1))
        plus_tard.handle(commands.ExpireOrders())

        assert événement.occupied_count == 0
        assert événement.status == EventStatus.SOLD_OUT


class TestCancelOrder:
    def test_annule_une_commande_payée_et_recrédite_le_stock(self):
        bus = bootstrap_test_bus()
        événement, _, _ = préparer_événement(bus.uow, access_type=AccessType.FREE, price=None)
        stock = ShirtSize("evt-1", "G", total_quantity=2)
        bus.uow.shirt_sizes.add(stock)
        reçu = inscrire(bus, requested_status="confirmed", shirt_size="G").value

        [result] = bus.handle(
            commands.CancelOrder(reçu.order_id, "Demande de l'athlète", "athlete", "ath-1")
        )

        assert result.ok
        assert result.value.released == 1
        assert result.value.order_status == "cancelled"
        assert stock.available_quantity == 2
        assert événement.occupied_count == 0
        [entrée, *_] = bus.uow.status_log.history("order", reçu.order_id)
        assert entrée.changed_by_type == "athlete"
        assert entrée.reason == "Demande de l'athlète"

    def test_commande_déjà_annulée_sans_effet(self):
        bus = bootstrap_test_bus()
        événement, _, _ = préparer_événement(bus.uow)
        commande = commande_en_attente(bus)
        bus.handle(commands.CancelOrder(commande.id, "Doublon"))

        [result] = bus.handle(commands.CancelOrder(commande.id, "Doublon"))

        assert result.ok
        assert result.value.released == 0
        assert événement.occupied_count == 0

    def test_commande_inconnue(self):
        bus = bootstrap_test_bus()

        [result] = bus.handle(commands.CancelOrder("inconnue", "Test"))

        assert result.code == ErrorCode.ORDER_NOT_FOUND


# --- Notifications et interrogation de la passerelle ---


def paiement(statut: str = "approved", montant: str = "100.00") -> PaymentStatus:
    return PaymentStatus(payment_id="pay-1", status=statut, amount=Decimal(montant))


class TestProcessPaymentNotification:
    def test_paiement_approuvé_confirme_la_commande(self):
        bus = bootstrap_test_bus(payments=FakePaymentGateway({"pay-1": paiement()}))
        préparer_événement(bus.uow)
        commande = commande_en_attente(bus)
        commande.gateway_payment_id = "pay-1"

        [result] = bus.handle(commands.ProcessPaymentNotification("pay-1"))

        assert result.ok
        assert commande.status == OrderStatus.PAID
        assert commande.payment_method == "pix"

    def test_paiement_non_approuvé_sans_effet(self):
        bus = bootstrap_test_bus(payments=FakePaymentGateway({"pay-1": paiement("pending")}))
        préparer_événement(bus.uow)
        commande = commande_en_attente(bus)
        commande.gateway_payment_id = "pay-1"

        [result] = bus.handle(commands.ProcessPaymentNotification("pay-1"))

        assert result.ok
        assert result.value is None
        assert commande.status == OrderStatus.PENDING

    def test_montant_insuffisant(self):
        bus = bootstrap_test_bus(
            payments=FakePaymentGateway({"pay-1": paiement(montant="10.00")})
        )
        préparer_événement(bus.uow)
        commande = commande_en_attente(bus)
        commande.gateway_payment_id = "pay-1"

        [result] = bus.handle(commands.ProcessPaymentNotification("pay-1"))

        assert result.code == ErrorCode.PAYMENT_AMOUNT_MISMATCH
        assert commande.status == OrderStatus.PENDING

    def test_passerelle_indisponible(self):
        bus = bootstrap_test_bus(payments=FakePaymentGateway())

        [result] = bus.handle(commands.ProcessPaymentNotification("pay-1"))

        assert result.code == ErrorCode.PAYMENT_LOOKUP_FAILED
        assert result.kind == ErrorKind.INTERNAL

    def test_paiement_sans_commande(self):
        bus = bootstrap_test_bus(payments=FakePaymentGateway({"pay-1": paiement()}))

        [result] = bus.handle(commands.ProcessPaymentNotification("pay-1"))

        assert result.code == ErrorCode.ORDER_NOT_FOUND


class TestPollPayments:
    def test_passerelle_non_configurée(self):
        bus = bootstrap_test_bus(payments=FakePaymentGateway(configured=False))
        préparer_événement(bus.uow)
        commande_en_attente(bus).gateway_payment_id = "pay-1"

        [rapport] = bus.handle(commands.PollPayments())

        assert rapport.processed == 0

    def test_confirme_les_paiements_approuvés(self):
        bus = bootstrap_test_bus(payments=FakePaymentGateway({"pay-1": paiement()}))
        préparer_événement(bus.uow)
        commande = commande_en_attente(bus)
        commande.gateway_payment_id = "pay-1"

        [rapport] = bus.handle(commands.PollPayments())

        assert (rapport.processed, rapport.confirmed, rapport.errors) == (1, 1, 0)
        assert commande.status == OrderStatus.PAID


def base_indisponible(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("connection lost"))


class TestErreursDeBase:
    def test_lecture_de_l_athlète_en_échec(self, monkeypatch):
        annuaire = FakeAthleteDirectory()
        monkeypatch.setattr(annuaire, "get", base_indisponible)
        bus = bootstrap_test_bus(athletes=annuaire)
        préparer_événement(bus.uow)

        result = inscrire(bus)

        assert result.code == ErrorCode.INTERNAL_ERROR
        assert result.kind == ErrorKind.INTERNAL

    def test_recherche_de_la_commande_du_paiement_en_échec(self, monkeypatch):
        bus = bootstrap_test_bus(payments=FakePaymentGateway({"pay-1": paiement()}))
        monkeypatch.setattr(bus.uow.orders, "get_by_payment_id", base_indisponible)

        [result] = bus.handle(commands.ProcessPaymentNotification("pay-1"))

        assert result.code == ErrorCode.INTERNAL_ERROR

    def test_liste_des_paiements_en_attente_en_échec(self, monkeypatch):
        bus = bootstrap_test_bus(payments=FakePaymentGateway({"pay-1": paiement()}))
        monkeypatch.setattr(bus.uow.orders, "list_pending_with_payment", base_indisponible)

        [rapport] = bus.handle(commands.PollPayments())

        assert (rapport.processed, rapport.confirmed, rapport.errors) == (0, 0, 1)
