"""
Payment capture validation.

The capture gates the final IN_TRANSIT -> COMPLETED transition. Proof of a
UPI payment is an opaque encoded blob (usually a data URL); only its
presence and decoded size are checked here.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from fleetdispatch.config import get_settings
from fleetdispatch.errors import TripValidationError
from fleetdispatch.schemas.schemas import PaymentCapture, PaymentMethodEnum

logger = logging.getLogger(__name__)
settings = get_settings()

# Matches trips.payment_amount, Numeric(10, 2).
AMOUNT_STEP = Decimal("0.01")
MAX_AMOUNT = Decimal("99999999.99")


def proof_size(proof: str) -> int:
    """
    Approximate decoded byte size of a proof blob.

    ``data:<mime>;base64,<payload>`` and bare base64 are sized from the
    payload length; other data URLs count their UTF-8 bytes.
    """
    if proof.startswith("data:"):
        header, sep, payload = proof.partition(",")
        if not sep or not header.endswith(";base64"):
            return len(proof.encode("utf-8"))
        encoded = payload.strip()
    else:
        encoded = proof.strip()
    padding = len(encoded) - len(encoded.rstrip("="))
    return max(len(encoded) * 3 // 4 - padding, 0)


def validate_capture(
    capture: Optional[PaymentCapture],
    max_proof_bytes: Optional[int] = None,
) -> PaymentCapture:
    """
    Check a payment capture before completion.
    Raises TripValidationError naming the offending field: method, amount or proof.
    """
    limit = settings.max_proof_bytes if max_proof_bytes is None else max_proof_bytes

    if capture is None or capture.method is None:
        raise TripValidationError("Please select a payment method", field="method")

    amount = capture.amount
    if amount is None:
        raise TripValidationError("Please enter the amount received", field="amount")
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if not amount.is_finite():
        raise TripValidationError("Amount must be greater than 0", field="amount")
    if abs(amount) <= MAX_AMOUNT:
        amount = amount.quantize(AMOUNT_STEP, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise TripValidationError("Amount must be greater than 0", field="amount")
    if amount > MAX_AMOUNT:
        raise TripValidationError(f"Amount must be at most {MAX_AMOUNT}", field="amount")

    proof = capture.proof or None
    if capture.method == PaymentMethodEnum.UPI:
        if not proof:
            raise TripValidationError("Please upload the UPI transaction screenshot", field="proof")
        size = proof_size(proof)
        if size == 0:
            raise TripValidationError("Please upload the UPI transaction screenshot", field="proof")
        if size > limit:
            logger.info("Rejected payment proof of %d bytes (limit %d)", size, limit)
            raise TripValidationError(
                f"Proof must be at most {limit // (1024 * 1024)}MB", field="proof"
            )

    return PaymentCapture(method=capture.method, amount=amount, proof=proof)
