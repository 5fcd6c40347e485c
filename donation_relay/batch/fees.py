"""
Relayer fees for the two-transaction redemption model.

The fee comes out of the private funds being redeemed, not out of a public
wallet: transaction 1 pays ``fee_amount`` to the relayer, transaction 2 pays
``recipient_amount`` to the campaign vault. Whatever rounding leaves over
goes to the recipient, so ``fee_amount + recipient_amount == amount`` always.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Optional


@dataclass(frozen=True)
class FeeSplit:
    fee_amount: int
    recipient_amount: int

    @property
    def amount(self) -> int:
        return self.fee_amount + self.recipient_amount


def _check_amount(amount: int):
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError("amount must be an integer number of lamports")
    if amount < 0:
        raise ValueError("amount must not be negative")


def split(amount: int, fee_rate) -> FeeSplit:
    """Split ``amount`` into floor(amount * fee_rate) for the relayer and the rest for the recipient."""
    _check_amount(amount)
    # go through str so 0.005 means 0.005 and not its binary approximation
    rate = Decimal(str(fee_rate))
    if rate < 0 or rate >= 1:
        raise ValueError("fee_rate must be in [0, 1)")

    fee = int((Decimal(amount) * rate).to_integral_value(rounding=ROUND_FLOOR))
    return FeeSplit(fee_amount=fee, recipient_amount=amount - fee)


def relayer_fee(amount: int, fee_rate, min_fee: int = 0, max_fee: Optional[int] = None) -> FeeSplit:
    """The fee the relayer actually charges: the rate, clamped to [min_fee, max_fee]."""
    fee = split(amount, fee_rate).fee_amount

    if fee < min_fee:
        fee = min_fee
    if max_fee is not None and fee > max_fee:
        fee = max_fee

    # tiny redemptions can't cover the minimum, take a tenth instead of everything
    if amount > 0 and fee >= amount:
        fee = amount // 10
    fee = min(fee, amount)

    return FeeSplit(fee_amount=fee, recipient_amount=amount - fee)
