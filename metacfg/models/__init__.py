from metacfg.models.config import Config, Property, now_millis  # noqa: F401
from metacfg.models.enums import PropertyType  # noqa: F401
from metacfg.models.paging import PageRequest, PageResponse  # noqa: F401

__all__ = [
    "Config",
    "Property",
    "PropertyType",
    "PageRequest",
    "PageResponse",
    "now_millis",
]
