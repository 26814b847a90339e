"""Tests for model-level insert ordering with SQLite foreign keys enforced."""

import pytest

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

import database.db  # noqa: F401  registers the foreign-key pragma listener
from database.models import (
    Base, LegalEntity, Farm, Equipment, EntitySplit, OperatingLoan, CommodityType,
)


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


class TestForeignKeyOrdering:

    def test_foreign_keys_enforced(self, session):
        assert session.execute(text("PRAGMA foreign_keys")).scalar() == 1

    def test_entity_children_added_first_still_insert(self, session):
        # Children go into the session before the entity they point at
        session.add(Equipment(id=1, entity_id=1, name="Combine"))
        session.add(OperatingLoan(id=1, entity_id=1, lender="Farm Credit", year=2025,
                                  credit_limit=500000.0, interest_rate=0.07))
        session.add(EntitySplit(farm_id=1, entity_id=2, percentage=40.0))
        session.add(Farm(id=1, entity_id=1, name="Home Place", commodity=CommodityType.CORN,
                         year=2025, acres=100.0, projected_yield=200.0))
        session.add(LegalEntity(id=2, name="Farm Entity 2", slug="farm_2"))
        session.add(LegalEntity(id=1, name="Farm Entity 1", slug="farm_1"))
        session.commit()

        assert session.get(Equipment, 1).entity.name == "Farm Entity 1"
        assert session.get(OperatingLoan, 1).entity.slug == "farm_1"
