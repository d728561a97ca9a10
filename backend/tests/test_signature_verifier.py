from __future__ import annotations

import hashlib
import hmac

import pytest

from backend.app.billing import SignatureVerifier


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier("test-secret")


def test_valid_signature_verifies(verifier: SignatureVerifier) -> None:
    expected = hmac.new(b"test-secret", b"order_1|pay_1", hashlib.sha256).hexdigest()

    assert verifier.sign("order_1", "pay_1") == expected
    assert verifier.verify("order_1", "pay_1", expected) is True


def test_signature_for_other_payment_is_rejected(verifier: SignatureVerifier) -> None:
    signature = verifier.sign("order_1", "pay_1")

    assert verifier.verify("order_1", "pay_2", signature) is False
    assert verifier.verify("order_2", "pay_1", signature) is False


def test_signature_comparison_is_exact(verifier: SignatureVerifier) -> None:
    signature = verifier.sign("order_1", "pay_1")

    assert verifier.verify("order_1", "pay_1", signature.upper()) is False
    assert verifier.verify("order_1", "pay_1", "") is False
    assert verifier.verify("order_1", "pay_1", None) is False  # type: ignore[arg-type]


def test_other_secret_produces_other_signature(verifier: SignatureVerifier) -> None:
    other = SignatureVerifier("another-secret")

    assert other.verify("order_1", "pay_1", verifier.sign("order_1", "pay_1")) is False


def test_secret_is_required_and_never_shown() -> None:
    with pytest.raises(ValueError):
        SignatureVerifier("")

    assert "test-secret" not in repr(SignatureVerifier("test-secret"))
