"""Capability descriptors for the entity families sharing the merge engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .config import IdentitySettings
from .models import Family
from .normalize import (
    extract_card_suffix,
    normalize_account_name,
    normalize_for_matching,
    normalize_name,
)
from .store.base import Order

SecondaryKey = Callable[[str, Mapping[str, Any], IdentitySettings], Optional[str]]


@dataclass(slots=True, frozen=True)
class Reference:
    """A document column holding a raw (unresolved) foreign key to a family."""

    table: str
    column: str
    scope_column: Optional[str] = "space_id"


@dataclass(slots=True, frozen=True)
class FamilyDescriptor:
    family: Family
    table: str
    scope_column: str = "space_id"
    match_key: Callable[[str], str] = normalize_name
    secondary_key: Optional[SecondaryKey] = None
    discriminators: Tuple[str, ...] = ()
    backfill_columns: Tuple[str, ...] = ()
    widen_on_secondary: bool = False
    partner: Optional[Family] = None
    cross_flag: Optional[str] = None
    references: Tuple[Reference, ...] = ()
    match_order: Tuple[Order, ...] = ()
    list_order: Tuple[Order, ...] = (Order("name"),)
    defaults: Callable[[IdentitySettings], Dict[str, Any]] = field(default=lambda settings: {})

    @property
    def namespace(self) -> Tuple[Family, ...]:
        if self.partner is None:
            return (self.family,)
        return (self.family, self.partner)

    def discriminator_values(self, attributes: Mapping[str, Any], settings: IdentitySettings) -> Tuple[Any, ...]:
        defaults = self.defaults(settings)
        return tuple(attributes.get(column) or defaults.get(column) for column in self.discriminators)


def _card_suffix(name: str, attributes: Mapping[str, Any], settings: IdentitySettings) -> Optional[str]:
    return extract_card_suffix(name, settings.card_suffix_min_digits)


def _tax_number(name: str, attributes: Mapping[str, Any], settings: IdentitySettings) -> Optional[str]:
    value = attributes.get("tax_number")
    if not value:
        return None
    return normalize_name(str(value)).replace(" ", "").upper() or None


def _sku_code(name: str, attributes: Mapping[str, Any], settings: IdentitySettings) -> Optional[str]:
    value = attributes.get("code")
    if not value:
        return None
    return str(value).strip() or None


FAMILIES: Dict[Family, FamilyDescriptor] = {
    Family.ACCOUNT: FamilyDescriptor(
        family=Family.ACCOUNT,
        table="accounts",
        match_key=normalize_account_name,
        secondary_key=_card_suffix,
        widen_on_secondary=True,
        references=(
            Reference("receipts", "account_id"),
            Reference("invoices", "account_id"),
        ),
        match_order=(Order("usage_count", descending=True),),
    ),
    Family.SUPPLIER: FamilyDescriptor(
        family=Family.SUPPLIER,
        table="suppliers",
        match_key=normalize_for_matching,
        secondary_key=_tax_number,
        backfill_columns=("tax_number", "phone", "address"),
        widen_on_secondary=True,
        partner=Family.CUSTOMER,
        cross_flag="is_customer",
        references=(
            Reference("receipts", "supplier_id"),
            Reference("invoices", "customer_supplier_id"),
        ),
    ),
    Family.CUSTOMER: FamilyDescriptor(
        family=Family.CUSTOMER,
        table="customers",
        match_key=normalize_for_matching,
        secondary_key=_tax_number,
        backfill_columns=("tax_number", "phone", "address"),
        widen_on_secondary=True,
        partner=Family.SUPPLIER,
        cross_flag="is_supplier",
        references=(
            Reference("invoices", "customer_id"),
            Reference("receipts", "supplier_customer_id"),
        ),
    ),
    Family.SKU: FamilyDescriptor(
        family=Family.SKU,
        table="skus",
        secondary_key=_sku_code,
        discriminators=("unit",),
        references=(
            Reference("inbound_item", "sku_id", scope_column=None),
            Reference("outbound_item", "sku_id", scope_column=None),
        ),
        defaults=lambda settings: {"unit": settings.default_sku_unit},
    ),
    Family.WAREHOUSE: FamilyDescriptor(
        family=Family.WAREHOUSE,
        table="warehouse",
        references=(
            Reference("inbound", "warehouse_id"),
            Reference("outbound", "warehouse_id"),
        ),
    ),
    Family.LOCATION: FamilyDescriptor(
        family=Family.LOCATION,
        table="location",
        scope_column="warehouse_id",
        references=(
            Reference("inbound_item", "location_id", scope_column=None),
            Reference("outbound_item", "location_id", scope_column=None),
        ),
    ),
}


def get_family(family: Family | str) -> FamilyDescriptor:
    return FAMILIES[Family(family)]


__all__ = ["Reference", "FamilyDescriptor", "FAMILIES", "get_family"]
