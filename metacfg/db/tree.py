"""
Rebuild nested config trees from flat join rows.

The read query returns one row per (property × property attribute ×
config attribute) combination of a config, with NULLs wherever a left join
found nothing. Rows are first folded into id-keyed records, then every
property is attached to its parent through the recorded links. Nothing here
depends on the order in which rows arrive.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, NamedTuple, Optional

from metacfg.models.config import Config, Property
from metacfg.models.enums import PropertyType

# Column labels produced by the repository's read query
COLUMNS = (
    "config_id",
    "config_name",
    "config_description",
    "config_version",
    "config_updated",
    "config_attribute_key",
    "config_attribute_value",
    "property_id",
    "property_parent_id",
    "property_name",
    "property_caption",
    "property_description",
    "property_type",
    "property_value",
    "property_updated",
    "property_attribute_key",
    "property_attribute_value",
)


class Link(NamedTuple):
    """Child property → parent property; ``parent_id`` is None for a root of ``config_id``."""

    child_id: int
    parent_id: Optional[int]
    config_id: int


@dataclass
class _ConfigRecord:
    id: int
    name: str
    description: Optional[str]
    version: int
    updated: int
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class _PropertyRecord:
    id: int
    name: str
    caption: Optional[str]
    description: Optional[str]
    type: PropertyType
    value: str
    updated: int
    attributes: dict[str, str] = field(default_factory=dict)


def fold_rows(rows: Iterable[Mapping[str, Any]]) -> list[Config]:
    """Fold flat rows into ``Config`` trees, one per distinct config id, in first-seen order."""
    configs: dict[int, _ConfigRecord] = {}
    properties: dict[int, _PropertyRecord] = {}
    links: set[Link] = set()

    for row in rows:
        config_id = row["config_id"]
        config = configs.get(config_id)
        if config is None:
            config = configs[config_id] = _ConfigRecord(
                id=config_id,
                name=row["config_name"],
                description=row["config_description"],
                version=row["config_version"],
                updated=row["config_updated"],
            )
        _merge_attribute(config.attributes, row["config_attribute_key"], row["config_attribute_value"])

        property_id = row["property_id"]
        if property_id is None:
            # left join found no property for this config
            continue
        prop = properties.get(property_id)
        if prop is None:
            prop = properties[property_id] = _PropertyRecord(
                id=property_id,
                name=row["property_name"],
                caption=row["property_caption"],
                description=row["property_description"],
                type=PropertyType(row["property_type"]),
                value=row["property_value"],
                updated=row["property_updated"],
            )
        _merge_attribute(prop.attributes, row["property_attribute_key"], row["property_attribute_value"])
        links.add(Link(property_id, row["property_parent_id"], config_id))

    roots, children = _resolve_links(links, properties)
    built = _build_properties(properties, children)

    return [
        Config(
            id=record.id,
            name=record.name,
            description=record.description,
            version=record.version,
            updated=record.updated,
            attributes=record.attributes,
            properties=[built[pid] for pid in sorted(roots.get(record.id, ()))],
        )
        for record in configs.values()
    ]


def _merge_attribute(target: dict[str, str], key: Optional[str], value: Optional[str]) -> None:
    if key is not None and value is not None:
        target[key] = value


def _resolve_links(
    links: Iterable[Link], properties: Mapping[int, _PropertyRecord]
) -> tuple[dict[int, list[int]], dict[int, list[int]]]:
    """
    Split links into config roots and parent → children adjacency.

    A link whose parent is not among the fetched properties marks its child
    as a root of the owning config.
    """
    roots: dict[int, list[int]] = {}
    children: dict[int, list[int]] = {}
    for link in links:
        if link.parent_id is not None and link.parent_id in properties:
            children.setdefault(link.parent_id, []).append(link.child_id)
        else:
            roots.setdefault(link.config_id, []).append(link.child_id)
    for ids in children.values():
        ids.sort()
    return roots, children


def _build_properties(
    properties: Mapping[int, _PropertyRecord], children: Mapping[int, list[int]]
) -> dict[int, Property]:
    """Build immutable properties deepest-first so every child exists before its parent."""
    built: dict[int, Property] = {}
    for start in properties:
        if start in built:
            continue
        # iterative post-order walk; depth is unbounded
        stack: list[tuple[int, bool]] = [(start, False)]
        visiting: set[int] = set()
        while stack:
            pid, expanded = stack.pop()
            if pid in built or (not expanded and pid in visiting):
                continue
            if not expanded:
                visiting.add(pid)
                stack.append((pid, True))
                stack.extend(
                    (c, False) for c in children.get(pid, ()) if c not in built and c not in visiting
                )
                continue
            record = properties[pid]
            built[pid] = Property(
                id=record.id,
                name=record.name,
                caption=record.caption,
                description=record.description,
                type=record.type,
                value=record.value,
                updated=record.updated,
                attributes=record.attributes,
                properties=[built[c] for c in children.get(pid, ()) if c in built],
            )
    return built
