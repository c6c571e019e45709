from typing import Iterable, Protocol, Sequence

from metacfg.models.config import Config
from metacfg.models.paging import PageRequest, PageResponse


class ConfigRepository(Protocol):
    def find_by_names(self, names: Iterable[str]) -> list[Config]:
        """Return one config per stored name; unknown names are skipped."""
        ...

    def find_names(self) -> list[str]:
        """Return every stored config name, sorted."""
        ...

    def find_by_page_request(self, request: PageRequest) -> PageResponse:
        """Return one page of matching names plus the total match count."""
        ...

    def save_and_flush(self, configs: Sequence[Config]) -> list[Config]:
        """
        Insert new configs (id 0) and update persisted ones in one transaction.

        Updates whose timestamp is not newer than storage are skipped and left
        out of the result. Properties that are not newer than storage are left
        unchanged and come back with their stored values. Updated configs come
        first, then inserted ones.
        """
        ...

    def delete(self, names: Iterable[str]) -> int:
        """Delete configs by name with everything they own; return the count."""
        ...
