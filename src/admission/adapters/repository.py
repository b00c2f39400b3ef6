"""
Pattern Repository.

Le repository fournit une abstraction sur la couche de persistance.
Chaque repository expose une interface de type collection (add, get)
plus les quelques requêtes dont le moteur a besoin.

Le paramètre `lock` pose un verrou de ligne (SELECT ... FOR UPDATE) :
c'est la seule primitive de concurrence du moteur. Les verrous sont
toujours pris dans l'ordre commande -> événement -> modalité -> lot ->
stock de t-shirts.
"""

from __future__ import annotations

import abc
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from admission.domain import clock, model


def _locked(query: Query, lock: bool, skip_locked: bool = False) -> Query:
    if lock:
        return query.with_for_update(skip_locked=skip_locked)
    return query


# --- Interfaces ---


class AbstractEventRepository(abc.ABC):
    """
    Repository des événements.

    Le pattern Template Method est utilisé : les méthodes publiques
    gèrent le tracking via `seen`, ce qui permet au Unit of Work de
    collecter les events du domaine émis pendant la transaction.
    """

    def __init__(self) -> None:
        self.seen: set[model.Event] = set()

    def add(self, sport_event: model.Event) -> None:
        self._add(sport_event)
        self.seen.add(sport_event)

    def get(self, event_id: str, lock: bool = False) -> model.Event | None:
        sport_event = self._get(event_id, lock)
        if sport_event:
            self.seen.add(sport_event)
        return sport_event

    @abc.abstractmethod
    def _add(self, sport_event: model.Event) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, event_id: str, lock: bool) -> model.Event | None:
        raise NotImplementedError


class AbstractOrderRepository(abc.ABC):
    """Repository des commandes, avec le même tracking `seen`."""

    def __init__(self) -> None:
        self.seen: set[model.Order] = set()

    def add(self, order: model.Order) -> None:
        self._add(order)
        self.seen.add(order)

    def get(self, order_id: str, lock: bool = False) -> model.Order | None:
        order = self._get(order_id, lock)
        if order:
            self.seen.add(order)
        return order

    def claim_overdue(self, order_id: str, now: datetime) -> model.Order | None:
        """
        Verrouille une commande en retard de paiement, sans attendre.

        Retourne None si la commande est déjà traitée par un balayage
        concurrent, ou si elle n'est plus en attente ni en retard.
        """
        order = self._claim_overdue(order_id, clock.as_utc(now))
        if order:
            self.seen.add(order)
        return order

    def get_by_payment_id(self, payment_id: str) -> model.Order | None:
        order = self._get_by_payment_id(payment_id)
        if order:
            self.seen.add(order)
        return order

    @abc.abstractmethod
    def _add(self, order: model.Order) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, order_id: str, lock: bool) -> model.Order | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _claim_overdue(self, order_id: str, now: datetime) -> model.Order | None:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_by_payment_id(self, payment_id: str) -> model.Order | None:
        raise NotImplementedError

    @abc.abstractmethod
    def list_overdue_ids(self, now: datetime, limit: int) -> list[str]:
        raise NotImplementedError

    @abc.abstractmethod
    def list_pending_with_payment(self, limit: int) -> list[model.Order]:
        raise NotImplementedError

    @abc.abstractmethod
    def next_number(self) -> int:
        raise NotImplementedError


class AbstractModalityRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, modality: model.Modality) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, modality_id: str, lock: bool = False) -> model.Modality | None:
        raise NotImplementedError

    @abc.abstractmethod
    def list_for_event(self, event_id: str) -> list[model.Modality]:
        raise NotImplementedError


class AbstractBatchRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, batch: model.Batch) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, batch_id: str, lock: bool = False) -> model.Batch | None:
        raise NotImplementedError

    @abc.abstractmethod
    def first_active(self, event_id: str, lock: bool = False) -> model.Batch | None:
        """Le lot actif de plus petite position."""
        raise NotImplementedError

    @abc.abstractmethod
    def list_active(self, event_id: str, lock: bool = False) -> list[model.Batch]:
        raise NotImplementedError

    @abc.abstractmethod
    def list_future(
        self, event_id: str, after_position: int | None = None, lock: bool = False
    ) -> list[model.Batch]:
        """Les lots 'future' de position strictement supérieure, par position croissante."""
        raise NotImplementedError

    @abc.abstractmethod
    def list_for_event(self, event_id: str) -> list[model.Batch]:
        raise NotImplementedError


class AbstractPriceRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, price: model.Price) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, modality_id: str, batch_id: str) -> model.Price | None:
        raise NotImplementedError


class AbstractShirtSizeRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, stock: model.ShirtSize) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get_stock(
        self, event_id: str, size: str, modality_id: str | None = None, lock: bool = False
    ) -> model.ShirtSize | None:
        """
        Stock d'une taille. Sans `modality_id`, le stock global de
        l'événement (ligne sans modalité).
        """
        raise NotImplementedError


class AbstractRegistrationRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, registration: model.Registration) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def list_for_order(self, order_id: str, lock: bool = False) -> list[model.Registration]:
        raise NotImplementedError

    @abc.abstractmethod
    def has_active(
        self, event_id: str, athlete_id: str, modality_id: str | None = None
    ) -> bool:
        """Vrai si l'athlète a une inscription non annulée (dans la modalité si précisée)."""
        raise NotImplementedError

    @abc.abstractmethod
    def next_number(self) -> int:
        raise NotImplementedError


class AbstractStatusLogRepository(abc.ABC):
    @abc.abstractmethod
    def add(self, entry: model.StatusChange) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def history(self, entity_type: str, entity_id: str) -> list[model.StatusChange]:
        """Les entrées d'une entité, de la plus récente à la plus ancienne."""
        raise NotImplementedError


# --- Implémentations SQLAlchemy ---


class SqlAlchemyEventRepository(AbstractEventRepository):
    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, sport_event: model.Event) -> None:
        self.session.add(sport_event)

    def _get(self, event_id: str, lock: bool) -> model.Event | None:
        query = self.session.query(model.Event).filter_by(id=event_id)
        return _locked(query, lock).first()


class SqlAlchemyOrderRepository(AbstractOrderRepository):
    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def _add(self, order: model.Order) -> None:
        self.session.add(order)
        # Pas de relationship() entre commandes et inscriptions : la ligne
        # de la commande doit exister avant que les inscriptions la référencent.
        self.session.flush([order])

    def _get(self, order_id: str, lock: bool) -> model.Order | None:
        query = self.session.query(model.Order).filter_by(id=order_id)
        return _locked(query, lock).first()

    def _claim_overdue(self, order_id: str, now: datetime) -> model.Order | None:
        query = self.session.query(model.Order).filter(
            model.Order.id == order_id,
            model.Order.status == model.OrderStatus.PENDING,
            model.Order.expires_at.isnot(None),
            model.Order.expires_at < now,
        )
        return _locked(query, lock=True, skip_locked=True).first()

    def _get_by_payment_id(self, payment_id: str) -> model.Order | None:
        return (
            self.session.query(model.Order)
            .filter(
                or_(
                    model.Order.gateway_payment_id == payment_id,
                    model.Order.pix_payment_id == payment_id,
                )
            )
            .first()
        )

    def list_overdue_ids(self, now: datetime, limit: int) -> list[str]:
        rows = (
            self.session.query(model.Order.id)
            .filter(
                model.Order.status == model.OrderStatus.PENDING,
                model.Order.expires_at.isnot(None),
                model.Order.expires_at < clock.as_utc(now),
            )
            .order_by(model.Order.expires_at)
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    def list_pending_with_payment(self, limit: int) -> list[model.Order]:
        return (
            self.session.query(model.Order)
            .filter(
                model.Order.status == model.OrderStatus.PENDING,
                model.Order.gateway_payment_id.isnot(None),
            )
            .order_by(model.Order.created_at)
            .limit(limit)
            .all()
        )

    def next_number(self) -> int:
        current = self.session.query(func.max(model.Order.number)).scalar()
        return (current or 0) + 1


class SqlAlchemyModalityRepository(AbstractModalityRepository):
    def __init__(self, session: Session):
        self.session = session

    def add(self, modality: model.Modality) -> None:
        self.session.add(modality)

    def get(self, modality_id: str, lock: bool = False) -> model.Modality | None:
        query = self.session.query(model.Modality).filter_by(id=modality_id)
        return _locked(query, lock).first()

    def list_for_event(self, event_id: str) -> list[model.Modality]:
        return (
            self.session.query(model.Modality)
            .filter_by(event_id=event_id)
            .order_by(model.Modality.position)
            .all()
        )


class SqlAlchemyBatchRepository(AbstractBatchRepository):
    def __init__(self, session: Session):
        self.session = session

    def add(self, batch: model.Batch) -> None:
        self.session.add(batch)

    def get(self, batch_id: str, lock: bool = False) -> model.Batch | None:
        query = self.session.query(model.Batch).filter_by(id=batch_id)
        return _locked(query, lock).first()

    def _active(self, event_id: str) -> Query:
        return (
            self.session.query(model.Batch)
            .filter_by(event_id=event_id, status=model.BatchStatus.ACTIVE)
            .order_by(model.Batch.position)
        )

    def first_active(self, event_id: str, lock: bool = False) -> model.Batch | None:
        return _locked(self._active(event_id), lock).first()

    def list_active(self, event_id: str, lock: bool = False) -> list[model.Batch]:
        return _locked(self._active(event_id), lock).all()

    def list_future(
        self, event_id: str, after_position: int | None = None, lock: bool = False
    ) -> list[model.Batch]:
        query = self.session.query(model.Batch).filter_by(
            event_id=event_id, status=model.BatchStatus.FUTURE
        )
        if after_position is not None:
            query = query.filter(model.Batch.position > after_position)
        return _locked(query.order_by(model.Batch.position), lock).all()

    def list_for_event(self, event_id: str) -> list[model.Batch]:
        return (
            self.session.query(model.Batch)
            .filter_by(event_id=event_id)
            .order_by(model.Batch.position)
            .all()
        )


class SqlAlchemyPriceRepository(AbstractPriceRepository):
    def __init__(self, session: Session):
        self.session = session

    def add(self, price: model.Price) -> None:
        self.session.add(price)

    def get(self, modality_id: str, batch_id: str) -> model.Price | None:
        return (
            self.session.query(model.Price)
            .filter_by(modality_id=modality_id, batch_id=batch_id)
            .first()
        )


class SqlAlchemyShirtSizeRepository(AbstractShirtSizeRepository):
    def __init__(self, session: Session):
        self.session = session

    def add(self, stock: model.ShirtSize) -> None:
        self.session.add(stock)

    def get_stock(
        self, event_id: str, size: str, modality_id: str | None = None, lock: bool = False
    ) -> model.ShirtSize | None:
        query = self.session.query(model.ShirtSize).filter_by(size=size)
        if modality_id is None:
            query = query.filter(
                model.ShirtSize.event_id == event_id,
                model.ShirtSize.modality_id.is_(None),
            )
        else:
            query = query.filter(model.ShirtSize.modality_id == modality_id)
        return _locked(query, lock).first()


class SqlAlchemyRegistrationRepository(AbstractRegistrationRepository):
    def __init__(self, session: Session):
        self.session = session

    def add(self, registration: model.Registration) -> None:
        self.session.add(registration)

    def list_for_order(self, order_id: str, lock: bool = False) -> list[model.Registration]:
        query = (
            self.session.query(model.Registration)
            .filter_by(order_id=order_id)
            .order_by(model.Registration.id)
        )
        return _locked(query, lock).all()

    def has_active(
        self, event_id: str, athlete_id: str, modality_id: str | None = None
    ) -> bool:
        query = self.session.query(model.Registration.id).filter(
            model.Registration.event_id == event_id,
            model.Registration.athlete_id == athlete_id,
            model.Registration.status != model.RegistrationStatus.CANCELLED,
        )
        if modality_id is not None:
            query = query.filter(model.Registration.modality_id == modality_id)
        return query.first() is not None

    def next_number(self) -> int:
        current = self.session.query(func.max(model.Registration.number)).scalar()
        return (current or 0) + 1


class SqlAlchemyStatusLogRepository(AbstractStatusLogRepository):
    def __init__(self, session: Session):
        self.session = session

    def add(self, entry: model.StatusChange) -> None:
        self.session.add(entry)

    def history(self, entity_type: str, entity_id: str) -> list[model.StatusChange]:
        return (
            self.session.query(model.StatusChange)
            .filter_by(entity_type=entity_type, entity_id=entity_id)
            .order_by(model.StatusChange.created_at.desc(), model.StatusChange.id.desc())
            .all()
        )
