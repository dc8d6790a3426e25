# accounting/services/staging_metadata.py

"""
STAGING METADATA (tagged union)

StagingInvoice.metadata is a JSON object with a "kind" discriminator that
matches StagingInvoice.reason. Each kind has one frozen dataclass here;
parse_metadata() turns stored JSON back into the right one and rejects
rows with missing fields.
"""

from __future__ import annotations

from dataclasses import MISSING, asdict, dataclass, field, fields
from typing import ClassVar, Optional

from accounting.services.exceptions import StagingMetadataError


@dataclass(frozen=True)
class DiscountUsed:
    code: str
    amount_saved: int
    category_name: str
    accounting_code: str


@dataclass(frozen=True)
class _Metadata:
    kind: ClassVar[str] = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class NewRegistrationMetadata(_Metadata):
    kind: ClassVar[str] = "new_registration"

    user_id: str
    user_registration_id: str
    registration_id: str
    category_id: str
    stripe_payment_intent_id: Optional[str]
    discount_codes_used: tuple[DiscountUsed, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MembershipMetadata(_Metadata):
    kind: ClassVar[str] = "membership"

    user_id: str
    user_membership_id: Optional[str]
    membership_id: str
    months: int
    stripe_payment_intent_id: Optional[str]


@dataclass(frozen=True)
class FreePurchaseMetadata(_Metadata):
    kind: ClassVar[str] = "free_purchase"

    user_id: str
    source: str
    record_id: str


@dataclass(frozen=True)
class ProportionalRefundMetadata(_Metadata):
    kind: ClassVar[str] = "refund_proportional"

    user_id: str
    refund_id: str
    original_payment_id: str
    refund_amount: int


@dataclass(frozen=True)
class DiscountCodeRefundMetadata(_Metadata):
    kind: ClassVar[str] = "refund_discount_code"

    user_id: str
    refund_id: str
    original_payment_id: str
    refund_amount: int
    discount_code: str
    discount_category: str
    discount_accounting_code: str


@dataclass(frozen=True)
class CategoryChangeMetadata(_Metadata):
    kind: ClassVar[str] = "category_change"

    user_id: str
    user_registration_id: str
    old_category_id: str
    new_category_id: str
    price_difference: int
    refund_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None


METADATA_TYPES: dict[str, type[_Metadata]] = {
    cls.kind: cls
    for cls in (
        NewRegistrationMetadata,
        MembershipMetadata,
        FreePurchaseMetadata,
        ProportionalRefundMetadata,
        DiscountCodeRefundMetadata,
        CategoryChangeMetadata,
    )
}


def parse_metadata(data: dict) -> _Metadata:
    if not isinstance(data, dict):
        raise StagingMetadataError("Staging metadata must be an object")

    kind = data.get("kind")
    cls = METADATA_TYPES.get(kind)
    if cls is None:
        raise StagingMetadataError(f"Unknown staging metadata kind: {kind!r}")

    kwargs = {}
    missing = []
    for f in fields(cls):
        if f.name in data:
            kwargs[f.name] = data[f.name]
        elif f.default is MISSING and f.default_factory is MISSING:
            missing.append(f.name)

    if missing:
        raise StagingMetadataError(f"{kind} metadata is missing: {', '.join(sorted(missing))}")

    if cls is NewRegistrationMetadata:
        kwargs["discount_codes_used"] = tuple(
            DiscountUsed(**item) for item in (kwargs.get("discount_codes_used") or [])
        )

    return cls(**kwargs)
