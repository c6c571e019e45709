"""Relational layout of a config store.

Four tables, names remappable through a mapping:

    configs              id, name, description, version, updated
    config_attributes    id, config_id → configs, key, value
    properties           id, property_id → properties (nullable), config_id → configs,
                         name, caption, description, type, value, updated
    property_attributes  id, property_id → properties, key, value

Every foreign key cascades on delete. ``config_id`` is repeated on nested
properties so a whole tree comes back from one query.
"""

import logging
from typing import Mapping, NamedTuple, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from metacfg.core.errors import RepositoryError
from metacfg.models.enums import PropertyType

logger = logging.getLogger(__name__)

DEFAULT_MAPPING: dict[str, str] = {
    "configs": "configs",
    "config_attributes": "config_attributes",
    "properties": "properties",
    "property_attributes": "property_attributes",
}

# SQLite only autoincrements an INTEGER PRIMARY KEY
_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


class ConfigTables(NamedTuple):
    metadata: sa.MetaData
    configs: sa.Table
    config_attributes: sa.Table
    properties: sa.Table
    property_attributes: sa.Table


def resolve_mapping(mapping: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Fill missing table names with defaults; reject unknown keys and blank names."""
    resolved = dict(DEFAULT_MAPPING)
    for key, table in (mapping or {}).items():
        if key not in DEFAULT_MAPPING:
            raise ValueError(f"unknown table mapping key: {key!r}")
        if not table or not table.strip():
            raise ValueError(f"{key} mapping is wrong.")
        resolved[key] = table
    return resolved


def build_tables(mapping: Optional[Mapping[str, str]] = None) -> ConfigTables:
    names = resolve_mapping(mapping)
    metadata = sa.MetaData()

    configs = sa.Table(
        names["configs"],
        metadata,
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1024), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        # epoch millis supplied by the writer
        sa.Column("updated", sa.BigInteger, nullable=False),
        sa.Index(f"ix_{names['configs']}_name", "name"),
    )

    config_attributes = sa.Table(
        names["config_attributes"],
        metadata,
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column(
            "config_id",
            _ID,
            sa.ForeignKey(configs.c.id, ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", sa.String(1024), nullable=True),
        sa.Index(f"ix_{names['config_attributes']}_config_id", "config_id"),
    )

    properties = sa.Table(
        names["properties"],
        metadata,
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        # NULL for root properties of a config
        sa.Column(
            "property_id",
            _ID,
            sa.ForeignKey(f"{names['properties']}.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "config_id",
            _ID,
            sa.ForeignKey(configs.c.id, ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("caption", sa.String(255), nullable=True),
        sa.Column("description", sa.String(1024), nullable=True),
        sa.Column(
            "type",
            sa.Enum(PropertyType, native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("value", sa.String(4096), nullable=False),
        sa.Column("updated", sa.BigInteger, nullable=False),
        sa.Index(f"ix_{names['properties']}_config_id", "config_id"),
        sa.Index(f"ix_{names['properties']}_property_id", "property_id"),
    )

    property_attributes = sa.Table(
        names["property_attributes"],
        metadata,
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column(
            "property_id",
            _ID,
            sa.ForeignKey(properties.c.id, ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", sa.String(1024), nullable=True),
        sa.Index(f"ix_{names['property_attributes']}_property_id", "property_id"),
    )

    return ConfigTables(metadata, configs, config_attributes, properties, property_attributes)


def create_tables(engine: Engine, tables: ConfigTables) -> None:
    """Create the four tables (and indexes) unless they already exist."""
    try:
        tables.metadata.create_all(engine, checkfirst=True)
    except SQLAlchemyError as exc:
        raise RepositoryError(f"failed to create config tables: {exc}") from exc
    logger.info(
        "Config tables ready: %s",
        ", ".join(t.name for t in tables.metadata.sorted_tables),
    )
