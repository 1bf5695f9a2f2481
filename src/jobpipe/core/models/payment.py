import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_valid_address(value: Optional[str]) -> bool:
    return bool(value) and ADDRESS_PATTERN.match(value) is not None


def is_valid_tx_hash(value: Optional[str]) -> bool:
    return bool(value) and TX_HASH_PATTERN.match(value) is not None


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


def to_base_units(amount: str | int | Decimal, decimals: int) -> int:
    """Convert a human token amount ("50", "49.999999") to integer base units.

    Raises ValueError for non-numeric or negative amounts, and for amounts with
    more fractional digits than the token supports: those could never match
    an on-chain value exactly.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid token amount: {amount!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid token amount: {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Amount {amount!r} has more than {decimals} decimal places"
        )
    return int(scaled)


def format_units(value: int, decimals: int) -> str:
    """Render integer base units as a canonical decimal string (50000000, 6 -> "50")."""
    quantity = Decimal(value).scaleb(-decimals).normalize()
    return f"{quantity:f}"


class TransferEvent(BaseModel):
    """A decoded token `Transfer` log, independent of the RPC library."""

    model_config = ConfigDict(frozen=True)

    transaction_hash: str
    block_number: int
    from_address: str
    to_address: str
    value: int  # base units
    token_address: Optional[str] = None


class TransactionReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_hash: str
    status: int
    block_number: int
    transfers: List[TransferEvent] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class PaymentTransaction(BaseModel):
    """A confirmed transfer that satisfied a payment expectation. Never persisted here."""

    model_config = ConfigDict(frozen=True)

    hash: str
    block_number: int
    amount: str
    from_address: str
    to_address: str
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
