"""CRUD facade over a config repository, with change notification."""

import logging
from typing import Callable, Iterable, Optional, Sequence

from metacfg.models.config import Config
from metacfg.models.paging import PageRequest, PageResponse
from metacfg.repositories.base import ConfigRepository

logger = logging.getLogger(__name__)

ConfigConsumer = Callable[[Config], None]


class ConfigService:
    def __init__(self, repository: ConfigRepository) -> None:
        self.repository = repository
        self._consumers: list[ConfigConsumer] = []

    def add_consumer(self, consumer: ConfigConsumer) -> None:
        self._consumers.append(consumer)

    def update(self, configs: Sequence[Config]) -> list[Config]:
        """Persist configs and notify consumers about every one that was saved."""
        saved = self.repository.save_and_flush(configs)
        for config in saved:
            self._notify(config)
        return saved

    def get_names(self) -> list[str]:
        return self.repository.find_names()

    def get(self, names: Iterable[str]) -> list[Config]:
        return self.repository.find_by_names(names)

    def get_one(self, name: str) -> Optional[Config]:
        found = self.repository.find_by_names([name])
        return found[0] if found else None

    def get_all(self) -> list[Config]:
        return self.repository.find_by_names(self.repository.find_names())

    def page(self, request: PageRequest) -> PageResponse:
        return self.repository.find_by_page_request(request)

    def remove(self, names: Iterable[str]) -> int:
        return self.repository.delete(names)

    def accept(self, name: str) -> bool:
        """Re-read a config and hand it to the consumers; False when it does not exist."""
        config = self.get_one(name)
        if config is None:
            return False
        self._notify(config)
        return True

    def _notify(self, config: Config) -> None:
        for consumer in self._consumers:
            try:
                consumer(config)
            except Exception:  # noqa: BLE001
                logger.exception("Config consumer failed: name=%s", config.name)
