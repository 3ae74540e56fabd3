"""Payment intake -- request validation, platform fees and the charge flow."""

from onramp.intake.fees import FeeCalculator
from onramp.intake.service import PaymentIntake
from onramp.intake.validation import validate_payment_request

__all__ = ["FeeCalculator", "PaymentIntake", "validate_payment_request"]
