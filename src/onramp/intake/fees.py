"""Platform fee computation for card charges.

All calculations use Decimal arithmetic exclusively -- no float conversions anywhere.

The user chooses a deposit amount; the card is charged the deposit plus the
platform fee. Only the deposit ever reaches the chain: a $50.00 deposit at
the default 5% fee is charged as $52.50 and executed as $50.00.
"""

from decimal import ROUND_HALF_UP, Decimal

from onramp.config import IntakeSettings

_CENT = Decimal("0.01")


class FeeCalculator:
    """Computes charge totals from deposit amounts.

    Args:
        settings: Intake settings carrying platform_fee_rate.
    """

    def __init__(self, settings: IntakeSettings) -> None:
        self._fee_rate = settings.platform_fee_rate

    def platform_fee(self, deposit: Decimal) -> Decimal:
        """Fee in USD, rounded half-up to cents."""
        return (deposit * self._fee_rate).quantize(_CENT, rounding=ROUND_HALF_UP)

    def charge_total(self, deposit: Decimal) -> Decimal:
        """Deposit plus platform fee, in USD cents precision."""
        return deposit.quantize(_CENT, rounding=ROUND_HALF_UP) + self.platform_fee(deposit)

    @staticmethod
    def to_minor_units(amount: Decimal) -> int:
        """USD amount to integer cents."""
        return int((amount / _CENT).to_integral_value(rounding=ROUND_HALF_UP))

    @staticmethod
    def from_minor_units(amount_minor: int) -> Decimal:
        return (Decimal(amount_minor) * _CENT).quantize(_CENT)
