"""
Configuration partagée pour les tests.

Le mapping ORM est démarré une seule fois pour toute la session de tests.
Cela permet aux tests d'intégration et e2e d'utiliser SQLAlchemy
sans interférer avec les tests unitaires.
"""

import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from admission.adapters import orm


@pytest.fixture(scope="session", autouse=True)
def mappers():
    """Démarre le mapping ORM une fois pour toute la session."""
    orm.start_mappers()


@pytest.fixture
def sqlite_session_factory():
    """Base SQLite en mémoire, tables créées, une par test."""
    engine = create_engine("sqlite:///:memory:")
    orm.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def postgres_session_factory():
    """
    Base PostgreSQL pour les tests de concurrence.

    Ignoré si ADMISSION_TEST_POSTGRES_URI n'est pas défini : SQLite ne
    connaît pas les verrous de ligne.
    """
    uri = os.environ.get("ADMISSION_TEST_POSTGRES_URI")
    if not uri:
        pytest.skip("ADMISSION_TEST_POSTGRES_URI non défini")
    engine = create_engine(uri, isolation_level="READ COMMITTED")
    orm.metadata.drop_all(engine)
    orm.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    orm.metadata.drop_all(engine)
    engine.dispose()
