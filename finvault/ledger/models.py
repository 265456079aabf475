"""Ledger data models and the snapshot envelope."""

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from finvault.backup.errors import ValidationFailedError

SNAPSHOT_FORMAT_VERSION = 1
LEGACY_METADATA_VERSION = "1.0"


class _CamelModel(BaseModel):
    """Models serialized with camelCase keys, accepting snake_case as well."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class CategoryType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class AccountType(str, Enum):
    CASH = "cash"
    BANK = "bank"
    CREDIT_CARD = "credit_card"
    E_WALLET = "e_wallet"
    INVESTMENT = "investment"
    OTHER = "other"


class Category(_CamelModel):
    id: int
    name: str = Field(..., min_length=1)
    type: CategoryType = CategoryType.EXPENSE
    icon: str | None = None
    color: str | None = None
    parent_id: int | None = None
    is_custom: bool = False


class Account(_CamelModel):
    id: int
    name: str = Field(..., min_length=1)
    type: AccountType = AccountType.CASH
    balance: Decimal = Decimal("0")
    currency: str = Field(default="CNY", description="ISO currency code")
    include_in_total: bool = True

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate 3-letter currency code."""
        if len(v) != 3 or not v.isalpha():
            raise ValueError("Currency must be a 3-letter code")
        return v.upper()


class Transaction(_CamelModel):
    id: int
    amount: Decimal
    account_id: int
    category_id: int | None = None
    to_account_id: int | None = None
    date: datetime
    note: str = ""
    is_income: bool = False


class Budget(_CamelModel):
    id: int
    name: str
    amount: Decimal = Field(..., ge=0)
    start_date: date
    end_date: date
    period: str = "monthly"
    category_ids: list[int] = Field(default_factory=list)
    is_active: bool = True
    notify_percent: int = Field(default=80, ge=0, le=100)

    @field_validator("end_date")
    @classmethod
    def validate_end_date(cls, v: date, info) -> date:
        start = info.data.get("start_date")
        if start is not None and v < start:
            raise ValueError("end_date must not be before start_date")
        return v


class Ledger(_CamelModel):
    """The four collections that make up the user's data."""

    categories: list[Category] = Field(default_factory=list)
    accounts: list[Account] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)

    def same_data(self, other: "Ledger") -> bool:
        """Compare the four collections by id and field values."""

        def keyed(items: list[BaseModel]) -> dict[int, BaseModel]:
            return {item.id: item for item in items}  # type: ignore[attr-defined]

        return all(
            keyed(getattr(self, name)) == keyed(getattr(other, name))
            for name in ("categories", "accounts", "transactions", "budgets")
        )


class SnapshotMetadata(_CamelModel):
    export_time: str | None = None
    version: str = LEGACY_METADATA_VERSION


class LedgerSnapshot(Ledger):
    """Backup payload envelope."""

    format_version: int = SNAPSHOT_FORMAT_VERSION
    exported_at: datetime | None = None
    metadata: SnapshotMetadata | None = None

    @classmethod
    def from_ledger(cls, ledger: Ledger, now: datetime | None = None) -> "LedgerSnapshot":
        now = now or datetime.now(UTC)
        return cls(
            categories=ledger.categories,
            accounts=ledger.accounts,
            transactions=ledger.transactions,
            budgets=ledger.budgets,
            exported_at=now,
            metadata=SnapshotMetadata(export_time=now.strftime("%Y-%m-%d %H:%M:%S")),
        )

    @classmethod
    def from_payload(cls, payload: bytes) -> "LedgerSnapshot":
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise ValidationFailedError(
                f"Snapshot does not match the ledger schema: {e.error_count()} errors"
            ) from e

    def to_payload(self) -> bytes:
        return self.model_dump_json(by_alias=True, indent=2).encode("utf-8")

    def to_ledger(self) -> Ledger:
        return Ledger(
            categories=self.categories,
            accounts=self.accounts,
            transactions=self.transactions,
            budgets=self.budgets,
        )
