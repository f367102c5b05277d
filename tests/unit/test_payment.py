"""
Unit tests for payment capture validation.
"""
import base64
from decimal import Decimal

import pytest

from fleetdispatch.errors import TripValidationError
from fleetdispatch.schemas.schemas import PaymentCapture, PaymentMethodEnum
from fleetdispatch.services.payment import proof_size, validate_capture

SMALL_PROOF = "data:image/png;base64," + base64.b64encode(b"\x89PNG" + b"\x00" * 96).decode()


class TestProofSize:
    def test_data_url_is_sized_by_decoded_payload(self):
        assert proof_size(SMALL_PROOF) == 100

    def test_bare_base64(self):
        assert proof_size(base64.b64encode(b"x" * 10).decode()) == 10

    def test_non_base64_data_url_counts_raw_bytes(self):
        assert proof_size("data:text/plain,hello") == len("data:text/plain,hello")


class TestValidateCapture:
    def test_missing_capture(self):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(None)
        assert exc_info.value.field == "method"

    def test_missing_method(self):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(PaymentCapture(amount=Decimal("100")))
        assert exc_info.value.field == "method"

    def test_missing_amount(self):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(PaymentCapture(method=PaymentMethodEnum.CASH))
        assert exc_info.value.field == "amount"

    @pytest.mark.parametrize("amount", ["0", "-10", "-0.01"])
    def test_non_positive_amount(self, amount):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(PaymentCapture(method=PaymentMethodEnum.CASH, amount=Decimal(amount)))
        assert exc_info.value.field == "amount"

    @pytest.mark.parametrize("amount", ["0.001", "0.004"])
    def test_amount_rounding_to_zero(self, amount):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(PaymentCapture(method=PaymentMethodEnum.CASH, amount=Decimal(amount)))
        assert exc_info.value.field == "amount"

    @pytest.mark.parametrize("amount", ["100000000", "99999999.995", "1E+40"])
    def test_amount_above_column_limit(self, amount):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(PaymentCapture(method=PaymentMethodEnum.CASH, amount=Decimal(amount)))
        assert exc_info.value.field == "amount"

    def test_amount_rounded_to_cents(self):
        capture = validate_capture(PaymentCapture(method=PaymentMethodEnum.CASH, amount=Decimal("0.005")))
        assert capture.amount == Decimal("0.01")
        capture = validate_capture(PaymentCapture(method=PaymentMethodEnum.CASH, amount=Decimal("99999999.99")))
        assert capture.amount == Decimal("99999999.99")

    def test_cash_without_proof_ok(self):
        capture = validate_capture(PaymentCapture(method=PaymentMethodEnum.CASH, amount=Decimal("50")))
        assert capture.amount == Decimal("50")
        assert capture.proof is None

    def test_upi_without_proof(self):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(PaymentCapture(method=PaymentMethodEnum.UPI, amount=Decimal("50")))
        assert exc_info.value.field == "proof"

    def test_upi_empty_proof(self):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(PaymentCapture(method=PaymentMethodEnum.UPI, amount=Decimal("50"), proof=""))
        assert exc_info.value.field == "proof"

    def test_upi_proof_with_empty_payload(self):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(
                PaymentCapture(method=PaymentMethodEnum.UPI, amount=Decimal("50"), proof="data:image/png;base64,")
            )
        assert exc_info.value.field == "proof"

    def test_upi_with_proof_ok(self):
        capture = validate_capture(
            PaymentCapture(method=PaymentMethodEnum.UPI, amount=Decimal("450"), proof=SMALL_PROOF)
        )
        assert capture.proof == SMALL_PROOF

    def test_upi_oversized_proof(self):
        with pytest.raises(TripValidationError) as exc_info:
            validate_capture(
                PaymentCapture(method=PaymentMethodEnum.UPI, amount=Decimal("450"), proof=SMALL_PROOF),
                max_proof_bytes=99,
            )
        assert exc_info.value.field == "proof"

    def test_proof_at_ceiling_ok(self):
        capture = validate_capture(
            PaymentCapture(method=PaymentMethodEnum.UPI, amount=Decimal("450"), proof=SMALL_PROOF),
            max_proof_bytes=100,
        )
        assert capture.method == PaymentMethodEnum.UPI
