"""
Error types for FieldLedger's projection and allocation engine.

Validation problems always reach the caller. Missing production or price
data degrades the single contract or commodity it affects.
"""

from dataclasses import dataclass


class ValidationError(ValueError):
    """Malformed input: allocation sums that don't match, bad cost lines, bad splits."""


class MissingAmortizationInput(ValidationError):
    """AMORTIZED financing record without principal, rate, or term."""

    def __init__(self, record_id, missing: list[str]):
        self.record_id = record_id
        self.missing = missing
        super().__init__(
            f"Financing record {record_id} is missing amortization input: {', '.join(missing)}"
        )


class NotFound(ValueError):
    """A referenced record (farm, contract, financing record, ...) does not exist."""


class NoEligibleProduction(ValueError):
    """Contract has no eligible farms, or every eligible farm expects zero bushels."""

    def __init__(self, contract_id, reason="no eligible production"):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id}: {reason}")


@dataclass(frozen=True)
class MissingPriceData:
    """A commodity present in the farm set that could not be priced."""
    commodity: str
    year: int
    reason: str = "no price in snapshot"


@dataclass(frozen=True)
class LoanPaidOff:
    """Notice that a payment brought a record's remaining balance to zero."""
    record_id: int
    overpayment: float = 0.0
