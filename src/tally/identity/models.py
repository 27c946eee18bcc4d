from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Family(str, Enum):
    ACCOUNT = "account"
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    SKU = "sku"
    WAREHOUSE = "warehouse"
    LOCATION = "location"


class ConflictMode(str, Enum):
    """How a naming collision is surfaced to the caller."""

    INTERACTIVE = "interactive"
    AUTO_RESOLVE = "auto_resolve"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EntityRecord(_CamelModel):
    """One row of an entity family, with family-specific columns in ``attributes``."""

    id: str
    family: Family
    name: str
    merged_into_id: Optional[str] = None
    scope_id: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_root(self) -> bool:
        return self.merged_into_id is None


class EntityRef(_CamelModel):
    family: Family
    id: str


class Conflict(_CamelModel):
    code: Literal["NAME_EXISTS"] = "NAME_EXISTS"
    family: Family
    duplicate_name: str
    target_id: str
    target_family: Family


class MergeFailure(_CamelModel):
    source_id: str
    error: str


class MergeReport(_CamelModel):
    family: Family
    target_id: str
    final_target_id: str
    merged: List[str] = Field(default_factory=list)
    repointed: Dict[str, int] = Field(default_factory=dict)
    failed: List[MergeFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class UnmergeReport(_CamelModel):
    family: Family
    entity_id: str
    previous_target_id: Optional[str] = None
    repointed: int = 0


class MergeHistory(_CamelModel):
    family: Family
    roots: List[EntityRecord] = Field(default_factory=list)
    children_by_root: Dict[str, List[EntityRecord]] = Field(default_factory=dict)


class RootUsage(_CamelModel):
    root_id: str
    name: str
    direct_count: int = 0
    merged_count: int = 0
    children: Dict[str, int] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.direct_count + self.merged_count


class UsageReport(_CamelModel):
    family: Family
    by_raw_id: Dict[str, int] = Field(default_factory=dict)
    roots: List[RootUsage] = Field(default_factory=list)


class AttachResult(_CamelModel):
    family: Family
    entity_id: Optional[str] = None
    action: Literal["adopted", "renamed", "updated", "created", "matched", "unchanged"]
    conflict: Optional[Conflict] = None


class DuplicateGroup(_CamelModel):
    family: Family
    key: str
    entities: List[EntityRecord] = Field(default_factory=list)


class CounterpartyOption(_CamelModel):
    id: str
    name: str
    family: Family
    cross_listed: bool = False


__all__ = [
    "Family",
    "ConflictMode",
    "EntityRecord",
    "EntityRef",
    "Conflict",
    "MergeFailure",
    "MergeReport",
    "UnmergeReport",
    "MergeHistory",
    "RootUsage",
    "UsageReport",
    "AttachResult",
    "DuplicateGroup",
    "CounterpartyOption",
]
