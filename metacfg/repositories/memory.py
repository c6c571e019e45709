"""In-process config repository with the same observable semantics as the database one."""

import itertools
import logging
import threading
from typing import Iterable, Optional, Sequence

from metacfg.models.config import Config, Property
from metacfg.models.paging import PageRequest, PageResponse
from metacfg.repositories.db import INITIAL_VERSION

logger = logging.getLogger(__name__)


class InMemoryConfigRepository:
    """
    Keeps configs in a dict keyed by config id.

    Models are frozen but their attribute maps are plain dicts, so configs
    are deep-copied on the way in and on the way out. A lock serialises
    writers since there is no storage transaction.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._configs: dict[int, Config] = {}
        self._config_ids = itertools.count(1)
        self._property_ids = itertools.count(1)

    def find_by_names(self, names: Iterable[str]) -> list[Config]:
        wanted = set(names)
        if not wanted:
            return []
        with self._lock:
            return [
                c.model_copy(deep=True)
                for _, c in sorted(self._configs.items())
                if c.name in wanted
            ]

    def find_names(self) -> list[str]:
        with self._lock:
            return sorted(c.name for c in self._configs.values())

    def find_by_page_request(self, request: PageRequest) -> PageResponse:
        with self._lock:
            names = sorted(
                {c.name for c in self._configs.values() if _matches(c, request)},
                reverse=not request.ascending,
            )
        start = request.page * request.size
        return PageResponse(
            names=names[start:start + request.size],
            page=request.page,
            total=len(names),
        )

    def save_and_flush(self, configs: Sequence[Config]) -> list[Config]:
        batch = [c.model_copy(deep=True) for c in configs]
        if not batch:
            return []
        with self._lock:
            updated = [s for s in (self._update(c) for c in batch if c.id > 0) if s is not None]
            inserted = [self._insert(c) for c in batch if c.id == 0]
        logger.info("Configs saved: inserted=%s updated=%s", len(inserted), len(updated))
        return [c.model_copy(deep=True) for c in updated + inserted]

    def delete(self, names: Iterable[str]) -> int:
        doomed = set(names)
        if not doomed:
            return 0
        with self._lock:
            ids = [cid for cid, c in self._configs.items() if c.name in doomed]
            for cid in ids:
                del self._configs[cid]
        logger.info("Configs deleted: requested=%s deleted=%s", len(doomed), len(ids))
        return len(ids)

    # ── private helpers ───────────────────────────────────────────────────────

    def _insert(self, config: Config) -> Config:
        saved = config.model_copy(
            update={
                "id": next(self._config_ids),
                "version": INITIAL_VERSION,
                "properties": self._assign_ids(config.properties),
            }
        )
        self._configs[saved.id] = saved
        return saved

    def _update(self, config: Config) -> Optional[Config]:
        stored = self._configs.get(config.id)
        if stored is None or config.updated <= stored.updated:
            return None
        if config.version != stored.version:
            logger.warning(
                "Optimistic lock miss, config skipped: id=%s name=%s", config.id, config.name
            )
            return None
        saved = config.model_copy(
            update={
                "version": stored.version + 1,
                "properties": self._merge(config.properties, _index(stored.properties)),
            }
        )
        self._configs[saved.id] = saved
        return saved

    def _merge(self, incoming: Sequence[Property], stored: dict[int, Property]) -> list[Property]:
        """Keep stored nodes that are not newer, take newer ones, assign ids to new ones."""
        merged = []
        for prop in incoming:
            current = stored.get(prop.id) if prop.id > 0 else None
            if current is None:
                merged.extend(self._assign_ids([prop]))
                continue
            source = prop if prop.updated > current.updated else current
            merged.append(
                source.model_copy(update={"properties": self._merge(prop.properties, stored)})
            )
        return merged

    def _assign_ids(self, properties: Sequence[Property]) -> list[Property]:
        return [
            p.model_copy(
                update={
                    "id": next(self._property_ids),
                    "properties": self._assign_ids(p.properties),
                }
            )
            for p in properties
        ]


def _index(properties: Sequence[Property]) -> dict[int, Property]:
    found: dict[int, Property] = {}
    stack = list(properties)
    while stack:
        p = stack.pop()
        found[p.id] = p
        stack.extend(p.properties)
    return found


def _matches(config: Config, request: PageRequest) -> bool:
    if request.name and request.name not in config.name:
        return False
    if not request.attributes:
        return True
    hits = [
        any(key in k and value in v for k, v in config.attributes.items())
        for key, value in request.attributes.items()
    ]
    return all(hits) if request.match_all else any(hits)
