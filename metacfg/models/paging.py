from pydantic import BaseModel, ConfigDict, Field


class PageRequest(BaseModel):
    """
    Filter for a page of config names.

    ``name`` is a substring of the config name; each ``attributes`` entry
    matches configs owning an attribute whose key and value contain the
    given substrings. Attribute filters are ORed unless ``match_all`` is set.
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""
    page: int = Field(default=0, ge=0)
    size: int = Field(default=20, ge=1, le=1000)
    ascending: bool = True
    attributes: dict[str, str] = Field(default_factory=dict)
    match_all: bool = False


class PageResponse(BaseModel):
    names: list[str]
    page: int
    total: int
