"""
Relational config repository.

Read path: one LEFT JOIN query per batch of names (configs → properties,
config attributes, property attributes), folded into trees by
``metacfg.db.tree``.

Write path, all inside one transaction per call:
  - new configs (id 0) are batch-inserted, then their attributes and, level by
    level, their property subtrees;
  - persisted configs are updated only when the incoming ``updated`` stamp is
    newer than the stored one, guarded by ``version`` (optimistic lock); their
    properties are reconciled by id and attributes by a three-way diff.

Per-owner attribute failures are collected so every owner is attempted; the
batch fails once the loop is done if any were collected.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine, RowMapping
from sqlalchemy.exc import SQLAlchemyError

from metacfg.core.errors import AttributeBatchError, RepositoryError, StatementError
from metacfg.db.schema import ConfigTables, build_tables, create_tables
from metacfg.db.session import connect, make_engine, transaction
from metacfg.db.tree import fold_rows
from metacfg.models.config import Config, Property
from metacfg.models.enums import PropertyType
from metacfg.models.paging import PageRequest, PageResponse
from metacfg.repositories.attributes import diff_attributes

logger = logging.getLogger(__name__)

INITIAL_VERSION = 1

# Errors collected per owner instead of aborting the loop
_ATTRIBUTE_ERRORS = (SQLAlchemyError, StatementError)


class DbConfigRepository:
    """Config repository backed by any SQLAlchemy engine; creates its tables on construction."""

    def __init__(
        self,
        engine: Engine,
        mapping: Optional[Mapping[str, str]] = None,
        fetch_size: int = 100,
    ) -> None:
        if fetch_size < 1:
            raise ValueError("fetch_size must be positive")
        self._engine = engine
        self._tables = build_tables(mapping)
        self._fetch_size = fetch_size
        create_tables(engine, self._tables)

    @classmethod
    def from_settings(cls, settings) -> "DbConfigRepository":
        return cls(
            make_engine(settings.DATABASE_URL),
            mapping=settings.table_mapping(),
            fetch_size=settings.FETCH_SIZE,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def tables(self) -> ConfigTables:
        return self._tables

    # ── reads ─────────────────────────────────────────────────────────────────

    def find_by_names(self, names: Iterable[str]) -> list[Config]:
        unique = sorted(set(names))
        if not unique:
            return []

        stmt = self._select_trees(unique).execution_options(yield_per=self._fetch_size)
        try:
            with connect(self._engine) as conn:
                configs = fold_rows(conn.execute(stmt).mappings())
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to receive configs: {exc}") from exc

        logger.debug("Configs loaded: requested=%s found=%s", len(unique), len(configs))
        return configs

    def find_names(self) -> list[str]:
        c = self._tables.configs
        try:
            with connect(self._engine) as conn:
                return list(conn.execute(sa.select(c.c.name).order_by(c.c.name)).scalars())
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to receive config names: {exc}") from exc

    def find_by_page_request(self, request: PageRequest) -> PageResponse:
        c = self._tables.configs
        criteria = self._page_criteria(request)
        count_q = sa.select(sa.func.count(sa.distinct(c.c.name))).where(*criteria)
        order = c.c.name.asc() if request.ascending else c.c.name.desc()
        names_q = (
            sa.select(c.c.name)
            .where(*criteria)
            .distinct()
            .order_by(order)
            .offset(request.page * request.size)
            .limit(request.size)
        )

        try:
            with connect(self._engine) as conn:
                total: int = conn.execute(count_q).scalar_one()
                names = list(conn.execute(names_q).scalars()) if total > 0 else []
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to receive a page of config names: {exc}") from exc

        return PageResponse(names=names, page=request.page, total=total)

    # ── writes ────────────────────────────────────────────────────────────────

    def save_and_flush(self, configs: Sequence[Config]) -> list[Config]:
        batch = list(configs)
        if not batch:
            return []

        to_update = [c for c in batch if c.id > 0]
        to_insert = [c for c in batch if c.id == 0]

        with transaction(self._engine, "failed to save configs") as conn:
            updated = self._update_configs(conn, to_update) if to_update else []
            inserted = self._insert_configs(conn, to_insert) if to_insert else []

        logger.info(
            "Configs saved: inserted=%s updated=%s skipped=%s",
            len(inserted),
            len(updated),
            len(to_update) - len(updated),
        )
        return updated + inserted

    def delete(self, names: Iterable[str]) -> int:
        unique = sorted(set(names))
        if not unique:
            return 0

        c = self._tables.configs
        with transaction(self._engine, "failed to delete configs") as conn:
            deleted = conn.execute(c.delete().where(c.c.name.in_(unique))).rowcount

        logger.info("Configs deleted: requested=%s deleted=%s", len(unique), deleted)
        return deleted

    # ── read helpers ──────────────────────────────────────────────────────────

    def _select_trees(self, names: Sequence[str]) -> sa.Select:
        c, ca, p, pa = (
            self._tables.configs,
            self._tables.config_attributes,
            self._tables.properties,
            self._tables.property_attributes,
        )
        return (
            sa.select(
                c.c.id.label("config_id"),
                c.c.name.label("config_name"),
                c.c.description.label("config_description"),
                c.c.version.label("config_version"),
                c.c.updated.label("config_updated"),
                ca.c.key.label("config_attribute_key"),
                ca.c.value.label("config_attribute_value"),
                p.c.id.label("property_id"),
                p.c.property_id.label("property_parent_id"),
                p.c.name.label("property_name"),
                p.c.caption.label("property_caption"),
                p.c.description.label("property_description"),
                p.c.type.label("property_type"),
                p.c.value.label("property_value"),
                p.c.updated.label("property_updated"),
                pa.c.key.label("property_attribute_key"),
                pa.c.value.label("property_attribute_value"),
            )
            .select_from(
                c.outerjoin(p, p.c.config_id == c.c.id)
                .outerjoin(ca, ca.c.config_id == c.c.id)
                .outerjoin(pa, pa.c.property_id == p.c.id)
            )
            .where(c.c.name.in_(names))
            .order_by(c.c.id, p.c.id)
        )

    def _page_criteria(self, request: PageRequest) -> list:
        c, ca = self._tables.configs, self._tables.config_attributes
        criteria = []
        if request.name:
            criteria.append(c.c.name.contains(request.name, autoescape=True))
        if request.attributes:
            matches = [
                sa.exists().where(
                    ca.c.config_id == c.c.id,
                    ca.c.key.contains(key, autoescape=True),
                    ca.c.value.contains(value, autoescape=True),
                )
                for key, value in request.attributes.items()
            ]
            criteria.append(sa.and_(*matches) if request.match_all else sa.or_(*matches))
        return criteria

    # ── per-owner attribute statements ────────────────────────────────────────

    @staticmethod
    def _attempt(conn: Connection, failures: list[Exception], operation, *args) -> None:
        """
        Run one owner's attribute statements inside a SAVEPOINT.

        A failure rolls back only that owner's statements and is collected, so
        the surrounding transaction stays usable for the remaining owners.
        """
        try:
            with conn.begin_nested():
                operation(conn, *args)
        except _ATTRIBUTE_ERRORS as exc:
            logger.warning("Attribute statement failed: %s", exc)
            failures.append(exc)

    # ── insert path ───────────────────────────────────────────────────────────

    def _insert_configs(self, conn: Connection, configs: Sequence[Config]) -> list[Config]:
        c = self._tables.configs
        rows = conn.execute(
            c.insert().returning(c.c.id, sort_by_parameter_order=True),
            [
                {
                    "name": config.name,
                    "description": config.description,
                    "version": INITIAL_VERSION,
                    "updated": config.updated,
                }
                for config in configs
            ],
        ).all()
        if len(rows) != len(configs):
            raise StatementError(f"inserted {len(rows)} of {len(configs)} configs")

        failures: list[Exception] = []
        saved: list[Config] = []
        for config, (config_id,) in zip(configs, rows):
            self._attempt(
                conn, failures, self._insert_attributes,
                self._tables.config_attributes, "config_id", config_id, config.attributes,
            )
            properties = self._insert_properties(conn, config_id, None, config.properties)
            saved.append(
                config.model_copy(
                    update={"id": config_id, "version": INITIAL_VERSION, "properties": properties}
                )
            )

        if failures:
            raise AttributeBatchError("failed to insert attributes", failures)
        return saved

    def _insert_properties(
        self,
        conn: Connection,
        config_id: int,
        parent_id: Optional[int],
        properties: Sequence[Property],
    ) -> list[Property]:
        """Insert one sibling group, then recurse into each member's children."""
        if not properties:
            return []

        p = self._tables.properties
        rows = conn.execute(
            p.insert().returning(p.c.id, sort_by_parameter_order=True),
            [self._property_values(prop) | {"config_id": config_id, "property_id": parent_id}
             for prop in properties],
        ).all()
        if len(rows) != len(properties):
            raise StatementError(f"inserted {len(rows)} of {len(properties)} properties")

        failures: list[Exception] = []
        saved: list[Property] = []
        for prop, (property_id,) in zip(properties, rows):
            self._attempt(
                conn, failures, self._insert_attributes,
                self._tables.property_attributes, "property_id", property_id, prop.attributes,
            )
            children = self._insert_properties(conn, config_id, property_id, prop.properties)
            saved.append(prop.model_copy(update={"id": property_id, "properties": children}))

        if failures:
            raise AttributeBatchError("failed to insert attributes", failures)
        return saved

    def _insert_attributes(
        self,
        conn: Connection,
        table: sa.Table,
        owner_column: str,
        owner_id: int,
        attributes: Mapping[str, str],
    ) -> None:
        if not attributes:
            return
        rows = conn.execute(
            table.insert().returning(table.c.id),
            [{owner_column: owner_id, "key": k, "value": v} for k, v in attributes.items()],
        ).all()
        if len(rows) != len(attributes):
            raise StatementError(
                f"inserted {len(rows)} of {len(attributes)} attributes for {owner_column}={owner_id}"
            )

    @staticmethod
    def _property_values(prop: Property) -> dict:
        return {
            "name": prop.name,
            "caption": prop.caption,
            "description": prop.description,
            "type": prop.type,
            "value": prop.value,
            "updated": prop.updated,
        }

    # ── update path ───────────────────────────────────────────────────────────

    def _update_configs(self, conn: Connection, configs: Sequence[Config]) -> list[Config]:
        c = self._tables.configs
        stored = {
            row.id: (row.version, row.updated)
            for row in conn.execute(
                sa.select(c.c.id, c.c.version, c.c.updated).where(
                    c.c.id.in_([config.id for config in configs])
                )
            )
        }

        failures: list[Exception] = []
        saved: list[Config] = []
        for config in configs:
            current = stored.get(config.id)
            if current is None:
                logger.info("Config not stored, skipped: id=%s name=%s", config.id, config.name)
                continue
            version, updated = current
            if config.updated <= updated:
                logger.info(
                    "Config not newer than stored, skipped: id=%s name=%s", config.id, config.name
                )
                continue

            result = conn.execute(
                c.update()
                .where(c.c.id == config.id, c.c.version == config.version)
                .values(
                    name=config.name,
                    description=config.description,
                    version=version + 1,
                    updated=config.updated,
                )
            )
            if result.rowcount == 0:
                # TODO: surface a distinct conflict error once callers can handle it
                logger.warning(
                    "Optimistic lock miss, config skipped: id=%s name=%s version=%s stored_version=%s",
                    config.id,
                    config.name,
                    config.version,
                    version,
                )
                continue

            self._attempt(
                conn, failures, self._reconcile_attributes,
                self._tables.config_attributes, "config_id", config.id, config.attributes,
            )
            properties = self._reconcile_properties(conn, config.id, config.properties)
            saved.append(config.model_copy(update={"version": version + 1, "properties": properties}))

        if failures:
            raise AttributeBatchError("failed to update attributes", failures)
        return saved

    def _reconcile_attributes(
        self,
        conn: Connection,
        table: sa.Table,
        owner_column: str,
        owner_id: int,
        incoming: Mapping[str, str],
    ) -> None:
        owner = table.c[owner_column]
        stored = {
            row.key: row.value
            for row in conn.execute(sa.select(table.c.key, table.c.value).where(owner == owner_id))
        }
        diff = diff_attributes(stored, incoming)
        if not diff:
            return

        if diff.to_delete:
            conn.execute(table.delete().where(owner == owner_id, table.c.key.in_(list(diff.to_delete))))
        for key, value in diff.to_update.items():
            result = conn.execute(
                table.update().where(owner == owner_id, table.c.key == key).values(value=value)
            )
            if result.rowcount == 0:
                raise StatementError(f"failed to update attribute {key!r} of {owner_column}={owner_id}")
        self._insert_attributes(conn, table, owner_column, owner_id, diff.to_insert)

    def _reconcile_properties(
        self, conn: Connection, config_id: int, incoming: Sequence[Property]
    ) -> list[Property]:
        """
        Bring the stored property tree of one config in line with ``incoming``.

        Order: re-links and updates, then deletes of ids absent from the
        incoming tree, then inserts of new properties. Kept properties that
        were not newer than storage come back with their stored values.
        """
        p = self._tables.properties
        stored = {
            row["id"]: row
            for row in conn.execute(
                sa.select(
                    p.c.id,
                    p.c.property_id,
                    p.c.name,
                    p.c.caption,
                    p.c.description,
                    p.c.type,
                    p.c.value,
                    p.c.updated,
                ).where(p.c.config_id == config_id)
            ).mappings()
        }

        kept: set[int] = set()
        relinks: dict[int, Optional[int]] = {}
        to_update: list[Property] = []
        self._plan_properties(incoming, None, stored, kept, relinks, to_update)
        stale = [pid for pid in stored if pid not in kept]

        changed = {prop.id for prop in to_update}
        kept_fields: dict[int, dict] = {pid: {} for pid in changed}
        kept_fields.update(
            self._stored_fields(conn, stored, [pid for pid in kept if pid not in changed])
        )

        for property_id, parent_id in relinks.items():
            conn.execute(p.update().where(p.c.id == property_id).values(property_id=parent_id))

        failures: list[Exception] = []
        for prop in to_update:
            result = conn.execute(
                p.update().where(p.c.id == prop.id).values(**self._property_values(prop))
            )
            if result.rowcount != 1:
                raise StatementError(f"failed to update property id={prop.id}")
            self._attempt(
                conn, failures, self._reconcile_attributes,
                self._tables.property_attributes, "property_id", prop.id, prop.attributes,
            )
        if failures:
            raise AttributeBatchError("failed to update attributes", failures)

        if stale:
            # cascades to attributes and any descendants still hanging below
            conn.execute(p.delete().where(p.c.id.in_(stale)))

        logger.debug(
            "Properties reconciled: config=%s updated=%s relinked=%s deleted=%s",
            config_id,
            len(to_update),
            len(relinks),
            len(stale),
        )
        return self._insert_new_properties(conn, config_id, None, incoming, kept_fields)

    def _stored_fields(
        self, conn: Connection, stored: Mapping[int, RowMapping], ids: Sequence[int]
    ) -> dict[int, dict]:
        if not ids:
            return {}
        pa = self._tables.property_attributes
        attributes: dict[int, dict[str, str]] = {pid: {} for pid in ids}
        for row in conn.execute(
            sa.select(pa.c.property_id, pa.c.key, pa.c.value).where(pa.c.property_id.in_(ids))
        ):
            if row.value is not None:
                attributes[row.property_id][row.key] = row.value
        return {
            pid: {
                "name": stored[pid]["name"],
                "caption": stored[pid]["caption"],
                "description": stored[pid]["description"],
                "type": PropertyType(stored[pid]["type"]),
                "value": stored[pid]["value"],
                "updated": stored[pid]["updated"],
                "attributes": attributes[pid],
            }
            for pid in ids
        }

    def _plan_properties(
        self,
        properties: Sequence[Property],
        parent_id: Optional[int],
        stored: Mapping[int, RowMapping],
        kept: set[int],
        relinks: dict[int, Optional[int]],
        to_update: list[Property],
    ) -> None:
        for prop in properties:
            current = stored.get(prop.id) if prop.id > 0 else None
            if current is None:
                # new, or unknown to this config: inserted later with its whole subtree
                continue
            kept.add(prop.id)
            if current["property_id"] != parent_id:
                relinks[prop.id] = parent_id
            if prop.updated > current["updated"]:
                to_update.append(prop)
            self._plan_properties(prop.properties, prop.id, stored, kept, relinks, to_update)

    def _insert_new_properties(
        self,
        conn: Connection,
        config_id: int,
        parent_id: Optional[int],
        properties: Sequence[Property],
        kept: Mapping[int, dict],
    ) -> list[Property]:
        """Insert properties absent from ``kept``; kept ones take their field overrides."""
        fresh = iter(
            self._insert_properties(
                conn, config_id, parent_id, [prop for prop in properties if prop.id not in kept]
            )
        )
        result: list[Property] = []
        for prop in properties:
            if prop.id in kept:
                children = self._insert_new_properties(conn, config_id, prop.id, prop.properties, kept)
                result.append(prop.model_copy(update={**kept[prop.id], "properties": children}))
            else:
                result.append(next(fresh))
        return result
