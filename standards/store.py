"""
standards/store.py -- SQLAlchemy Core persistence for reference standards.

Pattern: Repository + Data Mapper, same as auth/store.py.

replace_rules() is the only multi-statement write in the project: it deletes
a standard's rules and inserts the new set inside one engine.begin() block.
Any failure part-way (bad row, driver error, process crash) rolls the delete
back, so readers see either the old rule set or the new one, never an empty
or half-written set.

Usage:
    store = StandardsStore("sqlite:///lablims.db")
    sid = store.create_standard(ReferenceStandard(name="CONAMA 357"))
    store.replace_rules(sid, [ReferenceRule(parameter_key="ph", condition_type="RANGE", min_value=6, max_value=9)])
    store.close()
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Float, ForeignKey, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine

from auth.store import make_engine
from standards.models import ReferenceRule, ReferenceStandard

logger = logging.getLogger("lablims.standards")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_standards = Table(
    "reference_standards",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("category", String(100)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_rules = Table(
    "reference_standard_rules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("standard_id", Integer, ForeignKey("reference_standards.id"), nullable=False, index=True),
    Column("parameter_key", String(100), nullable=False),
    Column("condition_type", String(20), nullable=False),
    Column("min_value", Float),
    Column("max_value", Float),
    Column("expected_text", Text),
    Column("display_reference", Text),
)

_HEADER_FIELDS = {"name", "description", "category", "is_active"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StandardsStore:
    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    def list_standards(self) -> list[ReferenceStandard]:
        """All standards ordered by name, without rules."""
        with self.engine.connect() as conn:
            rows = conn.execute(_standards.select().order_by(_standards.c.name)).fetchall()
        return [_row_to_standard(r) for r in rows]

    def get_standard(self, standard_id: int) -> Optional[ReferenceStandard]:
        """One standard with its rules, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_standards.select().where(_standards.c.id == standard_id)).fetchone()
            if row is None:
                return None
            rule_rows = conn.execute(
                _rules.select().where(_rules.c.standard_id == standard_id).order_by(_rules.c.id)
            ).fetchall()
        standard = _row_to_standard(row)
        standard.rules = [_row_to_rule(r) for r in rule_rows]
        return standard

    def create_standard(self, standard: ReferenceStandard) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _standards.insert().values(
                    name=standard.name,
                    description=standard.description,
                    category=standard.category,
                    is_active=1 if standard.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_standard(self, standard_id: int, **fields) -> bool:
        """Update header fields (name, description, category, is_active).

        Rules are never touched here; use replace_rules(). Returns False when
        the standard does not exist.
        """
        unknown = set(fields) - _HEADER_FIELDS
        if unknown:
            raise ValueError(f"Unknown standard fields: {unknown!r}")
        if not fields:
            return False
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_standards.update().where(_standards.c.id == standard_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_standard(self, standard_id: int) -> bool:
        """Delete a standard and its rules atomically."""
        with self.engine.begin() as conn:
            conn.execute(_rules.delete().where(_rules.c.standard_id == standard_id))
            result = conn.execute(_standards.delete().where(_standards.c.id == standard_id))
        return result.rowcount > 0

    def replace_rules(self, standard_id: int, rules: list[ReferenceRule]) -> int:
        """Atomically replace every rule of a standard. Returns the new rule count.

        Raises LookupError if the standard does not exist. Any other error
        raised mid-way propagates after the transaction has rolled back.
        """
        with self.engine.begin() as conn:
            exists = conn.execute(select(_standards.c.id).where(_standards.c.id == standard_id)).fetchone()
            if exists is None:
                raise LookupError(f"reference standard {standard_id} does not exist")
            conn.execute(_rules.delete().where(_rules.c.standard_id == standard_id))
            if rules:
                conn.execute(
                    _rules.insert(),
                    [
                        {
                            "standard_id": standard_id,
                            "parameter_key": r.parameter_key,
                            "condition_type": r.condition_type,
                            "min_value": r.min_value,
                            "max_value": r.max_value,
                            "expected_text": r.expected_text or None,
                            "display_reference": r.display_reference or None,
                        }
                        for r in rules
                    ],
                )
        logger.info("Replaced rules for standard %s (%d rules)", standard_id, len(rules))
        return len(rules)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_standard(row) -> ReferenceStandard:
    return ReferenceStandard(
        id=row.id,
        name=row.name,
        description=row.description,
        category=row.category,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_rule(row) -> ReferenceRule:
    return ReferenceRule(
        id=row.id,
        standard_id=row.standard_id,
        parameter_key=row.parameter_key,
        condition_type=row.condition_type,
        min_value=row.min_value,
        max_value=row.max_value,
        expected_text=row.expected_text,
        display_reference=row.display_reference,
    )
