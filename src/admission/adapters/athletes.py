"""
Annuaire des athlètes.

L'identité d'un athlète est copiée dans l'inscription au moment de
l'admission. L'annuaire n'est lu qu'en lecture, hors de la transaction
d'admission.
"""

from __future__ import annotations

import abc
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from admission.adapters import orm
from admission.domain import model


class AbstractAthleteDirectory(abc.ABC):
    @abc.abstractmethod
    def get(self, athlete_id: str) -> Optional[model.AthleteProfile]:
        raise NotImplementedError


class SqlAlchemyAthleteDirectory(AbstractAthleteDirectory):
    """Lecture directe de la table `athletes` (SQLAlchemy Core)."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, athlete_id: str) -> Optional[model.AthleteProfile]:
        with self.session_factory() as session:
            row = session.execute(
                select(orm.athletes).where(orm.athletes.c.id == athlete_id)
            ).first()
        if row is None:
            return None
        return model.AthleteProfile(
            id=row.id,
            full_name=row.full_name,
            cpf=row.cpf,
            birth_date=row.birth_date,
            sex=row.sex,
        )
