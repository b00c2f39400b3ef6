"""
Unit of Work : une transaction du moteur d'admission.

Une admission, une confirmation ou une libération de places touche
jusqu'à quatre compteurs ; le Unit of Work garantit qu'ils sont tous
écrits ensemble, ou pas du tout.

Usage :
    with uow:
        # ... opérations sur les repositories ...
        uow.commit()

Les events du domaine ne sont remis au message bus qu'après un commit
réussi : une transaction annulée ne publie rien.
"""

from __future__ import annotations

import abc
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from admission import config
from admission.adapters import repository
from admission.domain import events


def make_session_factory(uri: str | None = None) -> sessionmaker:
    uri = uri or config.get_database_uri()
    return sessionmaker(
        bind=create_engine(uri, isolation_level=config.get_isolation_level(uri))
    )


DEFAULT_SESSION_FACTORY = make_session_factory()


class AbstractUnitOfWork(abc.ABC):
    """
    Un repository par table métier, plus commit/rollback.

    Sortir du bloc `with` sans commit() annule tout ce qui a été écrit.
    """

    events: repository.AbstractEventRepository
    modalities: repository.AbstractModalityRepository
    batches: repository.AbstractBatchRepository
    prices: repository.AbstractPriceRepository
    shirt_sizes: repository.AbstractShirtSizeRepository
    orders: repository.AbstractOrderRepository
    registrations: repository.AbstractRegistrationRepository
    status_log: repository.AbstractStatusLogRepository

    def __init__(self) -> None:
        self.committed_events: list[events.Event] = []

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args: object) -> None:
        self.rollback()

    def commit(self) -> None:
        self._commit()
        for aggregate in self._seen_aggregates():
            self.committed_events.extend(aggregate.domain_events)
            aggregate.domain_events.clear()

    def rollback(self) -> None:
        for aggregate in self._seen_aggregates():
            aggregate.domain_events.clear()
        self._rollback()

    def collect_new_events(self) -> Iterator[events.Event]:
        """
        Remet au message bus les événements des transactions validées.

        Les événements sont collectés au commit sur les agrégats trackés
        par les repositories (via `seen`).
        """
        while self.committed_events:
            yield self.committed_events.pop(0)

    def _seen_aggregates(self) -> list:
        return [*self.events.seen, *self.orders.seen]

    @abc.abstractmethod
    def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _rollback(self) -> None:
        raise NotImplementedError


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Une session SQLAlchemy par bloc `with`, fermée à la sortie.

    Les verrous de ligne pris par les repositories sont relâchés au
    commit ou au rollback.
    """

    def __init__(self, session_factory: sessionmaker = DEFAULT_SESSION_FACTORY):
        super().__init__()
        self.session_factory = session_factory

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self.session: Session = self.session_factory()
        self.events = repository.SqlAlchemyEventRepository(self.session)
        self.modalities = repository.SqlAlchemyModalityRepository(self.session)
        self.batches = repository.SqlAlchemyBatchRepository(self.session)
        self.prices = repository.SqlAlchemyPriceRepository(self.session)
        self.shirt_sizes = repository.SqlAlchemyShirtSizeRepository(self.session)
        self.orders = repository.SqlAlchemyOrderRepository(self.session)
        self.registrations = repository.SqlAlchemyRegistrationRepository(self.session)
        self.status_log = repository.SqlAlchemyStatusLogRepository(self.session)
        return super().__enter__()

    def __exit__(self, *args: object) -> None:
        super().__exit__(*args)
        self.session.close()

    def _commit(self) -> None:
        self.session.commit()

    def _rollback(self) -> None:
        self.session.rollback()
