from typing import Mapping, NamedTuple


class AttributeDiff(NamedTuple):
    to_insert: dict[str, str]
    to_update: dict[str, str]
    to_delete: dict[str, str]

    def __bool__(self) -> bool:
        return bool(self.to_insert or self.to_update or self.to_delete)


def diff_attributes(stored: Mapping[str, str], incoming: Mapping[str, str]) -> AttributeDiff:
    """Three-way diff; keys whose value did not change appear nowhere."""
    to_insert = {k: v for k, v in incoming.items() if k not in stored}
    to_update = {k: v for k, v in incoming.items() if k in stored and stored[k] != v}
    to_delete = {k: v for k, v in stored.items() if k not in incoming}
    return AttributeDiff(to_insert, to_update, to_delete)
