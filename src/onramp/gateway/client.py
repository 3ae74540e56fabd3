"""Abstract payment gateway interface."""

from abc import ABC, abstractmethod

from onramp.models import ChargeOutcome, ChargeRequest


class PaymentGateway(ABC):
    """Abstract base class for card payment gateways.

    Intake code depends only on this interface; declines come back as a
    ChargeDeclined value while transport failures raise.
    """

    @abstractmethod
    async def create_payment(self, request: ChargeRequest) -> ChargeOutcome:
        """Charge a card source.

        Args:
            request: Source token, amount in minor units, idempotency key, note.

        Returns:
            ChargeAccepted on success, ChargeDeclined if the gateway refused.

        Raises:
            GatewayTimeout: If the gateway does not answer in time.
            GatewayUnavailable: On network failures and 5xx responses.
            GatewayMisconfigured: If credentials are missing or rejected.
        """
        ...

    async def close(self) -> None:
        return None
