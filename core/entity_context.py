"""
Entity and farm context management.
Seeds legal entities, creates and deletes farms, and maintains fractional
entity ownership (splits) for a farm.
"""

import logging
from sqlalchemy.orm import Session

from database.models import LegalEntity, Farm, EntitySplit, CommodityType
from config.entities import ENTITIES
from core.errors import ValidationError, NotFound

logger = logging.getLogger(__name__)

SPLIT_TOLERANCE = 0.01


def seed_entities(session: Session):
    """
    Create the default legal entities in the database if they don't exist.
    Called during init-db.
    """
    for slug, cfg in ENTITIES.items():
        existing = session.query(LegalEntity).filter_by(slug=slug).first()
        if existing:
            continue

        session.add(LegalEntity(name=cfg["name"], slug=slug))
        logger.info(f"Seeded entity: {cfg['name']} ({slug})")

    session.commit()


def get_entity_by_slug(session: Session, slug: str) -> LegalEntity | None:
    """Get an entity by its slug identifier."""
    return session.query(LegalEntity).filter_by(slug=slug, active=True).first()


def get_all_entities(session: Session) -> list[LegalEntity]:
    """Get all active entities."""
    return session.query(LegalEntity).filter_by(active=True).all()


def create_farm(session: Session, entity_id, name, commodity, year, acres,
                projected_yield, aph=0.0, splits=None) -> Farm:
    """Create a farm. Acres and yield must be non-negative."""
    if acres is None or acres < 0:
        raise ValidationError(f"Farm '{name}': acres must be >= 0")
    if projected_yield is None or projected_yield < 0:
        raise ValidationError(f"Farm '{name}': projected yield must be >= 0")
    if isinstance(commodity, str):
        commodity = CommodityType(commodity.lower())
    if not session.get(LegalEntity, entity_id):
        raise NotFound(f"Entity {entity_id} not found")

    farm = Farm(
        entity_id=entity_id,
        name=name,
        commodity=commodity,
        year=year,
        acres=float(acres),
        projected_yield=float(projected_yield),
        aph=float(aph or 0.0),
    )
    session.add(farm)
    session.flush()

    if splits:
        set_entity_splits(session, farm.id, splits)

    logger.info(f"Created farm '{name}' ({commodity.value} {year}, {acres} ac)")
    return farm


def delete_farm(session: Session, farm_id) -> dict:
    """Delete a farm and everything hanging off it (costs, splits, allocations).

    Contracts the farm was allocated to are left under-allocated.
    """
    farm = session.get(Farm, farm_id)
    if not farm:
        raise NotFound(f"Farm {farm_id} not found")

    affected_contracts = sorted({a.contract_id for a in farm.allocations})
    result = {
        "farm_id": farm.id,
        "name": farm.name,
        "cost_entries_removed": len(farm.cost_entries),
        "allocations_removed": len(farm.allocations),
        "affected_contracts": affected_contracts,
    }
    session.delete(farm)
    session.flush()
    logger.info(f"Deleted farm {farm_id}; contracts now under-allocated: {affected_contracts}")
    return result


def validate_splits(splits) -> list[tuple[int, float]]:
    """Normalize and check a split list: [(entity_id, pct)] or [{"entity_id", "percentage"}].

    Percentages must be positive, entities unique, and the total exactly 100.
    """
    normalized = []
    for split in splits:
        if isinstance(split, dict):
            entity_id, pct = split.get("entity_id"), split.get("percentage")
        else:
            entity_id, pct = split
        if entity_id is None or pct is None:
            raise ValidationError("Each split needs entity_id and percentage")
        pct = float(pct)
        if pct <= 0:
            raise ValidationError(f"Split percentage for entity {entity_id} must be > 0")
        normalized.append((int(entity_id), pct))

    entity_ids = [entity_id for entity_id, _ in normalized]
    if len(set(entity_ids)) != len(entity_ids):
        raise ValidationError("An entity can appear only once in a farm's splits")

    total = sum(pct for _, pct in normalized)
    if abs(total - 100.0) > SPLIT_TOLERANCE:
        raise ValidationError(f"Entity splits must total 100% (got {total:.2f}%)")

    return normalized


def set_entity_splits(session: Session, farm_id, splits) -> list[EntitySplit]:
    """Replace a farm's entity splits. An empty list clears them (farm owned wholly by its entity)."""
    farm = session.get(Farm, farm_id)
    if not farm:
        raise NotFound(f"Farm {farm_id} not found")

    normalized = validate_splits(splits) if splits else []
    for entity_id, _ in normalized:
        if not session.get(LegalEntity, entity_id):
            raise NotFound(f"Entity {entity_id} not found")

    farm.splits.clear()
    session.flush()
    for entity_id, pct in normalized:
        farm.splits.append(EntitySplit(entity_id=entity_id, percentage=pct))
    session.flush()
    return list(farm.splits)
