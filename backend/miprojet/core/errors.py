# core/errors.py


class PaymentError(Exception):
    """Base class for payment pipeline errors."""


# ---------------- Validation (400) ----------------
class InvalidAmount(PaymentError):
    pass


class MissingPaymentMethod(PaymentError):
    pass


class MissingPhoneNumber(PaymentError):
    pass


# ---------------- Store ----------------
class DuplicateReference(PaymentError):
    def __init__(self, reference: str):
        super().__init__(f"Payment reference already exists: {reference}")
        self.reference = reference


class PaymentNotFound(PaymentError):
    def __init__(self, payment_id: str):
        super().__init__(f"Payment not found: {payment_id}")
        self.payment_id = payment_id


class ConcurrentUpdateError(PaymentError):
    """The conditional write kept losing to concurrent writers."""


class LedgerIntegrityError(PaymentError):
    """Funds, contribution and status could not be committed together."""


# ---------------- Gateways ----------------
class GatewayError(PaymentError):
    def __init__(self, provider: str, message: str, status_code: int = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
