"""Entity identity and merge resolution for Tally.

Accounts, customers, suppliers, SKUs, warehouses and locations share one
engine: a lazily resolved ``merged_into_id`` forest per family, race-safe
find-or-create, and duplicate-name detection with interactive and
auto-resolving conflict handling.
"""

from .config import IdentitySettings, get_settings
from .context import CurrentUser, SessionProvider, TenantContext, require_tenant
from .engine import IdentityEngine
from .errors import (
    IdentityError,
    InvalidNameError,
    NameExistsError,
    NoTenantSelectedError,
    NotAuthenticatedError,
    NotFoundError,
    PartialMergeError,
    StoreError,
    StorePermissionError,
    UniqueConstraintError,
    ValidationError,
)
from .forest import MergeForest, build_pointer_map, resolve
from .models import (
    AttachResult,
    Conflict,
    ConflictMode,
    CounterpartyOption,
    DuplicateGroup,
    EntityRecord,
    EntityRef,
    Family,
    MergeHistory,
    MergeReport,
    RootUsage,
    UnmergeReport,
    UsageReport,
)

__all__ = [
    "IdentitySettings",
    "get_settings",
    "CurrentUser",
    "SessionProvider",
    "TenantContext",
    "require_tenant",
    "IdentityEngine",
    "IdentityError",
    "InvalidNameError",
    "NameExistsError",
    "NoTenantSelectedError",
    "NotAuthenticatedError",
    "NotFoundError",
    "PartialMergeError",
    "StoreError",
    "StorePermissionError",
    "UniqueConstraintError",
    "ValidationError",
    "MergeForest",
    "build_pointer_map",
    "resolve",
    "AttachResult",
    "Conflict",
    "ConflictMode",
    "CounterpartyOption",
    "DuplicateGroup",
    "EntityRecord",
    "EntityRef",
    "Family",
    "MergeHistory",
    "MergeReport",
    "RootUsage",
    "UnmergeReport",
    "UsageReport",
]
