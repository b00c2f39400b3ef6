"""Codes d'erreur du moteur d'admission et leur classification."""

from enum import Enum


class ErrorKind(Enum):
    """Grandes familles d'échec, sur lesquelles les appelants branchent."""

    CAPACITY_EXHAUSTED = "capacity_exhausted"
    CONFIGURATION_GAP = "configuration_gap"
    DUPLICATE_ADMISSION = "duplicate_admission"
    NOT_FOUND = "not_found"
    NOT_ALLOWED = "not_allowed"
    INTERNAL = "internal"


class ErrorCode(Enum):
    """Codes lisibles par machine renvoyés dans les résultats."""

    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    EVENT_SOLD_OUT = "EVENT_SOLD_OUT"
    EVENT_FULL = "EVENT_FULL"
    MODALITY_NOT_FOUND = "MODALITY_NOT_FOUND"
    MODALITY_FULL = "MODALITY_FULL"
    NO_ACTIVE_BATCH_AVAILABLE = "NO_ACTIVE_BATCH_AVAILABLE"
    NO_VALID_PRICE = "NO_VALID_PRICE"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    SIZE_SOLD_OUT = "SIZE_SOLD_OUT"
    ATHLETE_NOT_FOUND = "ATHLETE_NOT_FOUND"
    DISCOUNT_REJECTED = "DISCOUNT_REJECTED"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_EXPIRED = "ORDER_EXPIRED"
    PAYMENT_AMOUNT_MISMATCH = "PAYMENT_AMOUNT_MISMATCH"
    PAYMENT_LOOKUP_FAILED = "PAYMENT_LOOKUP_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def kind(self) -> ErrorKind:
        return KINDS[self]


KINDS: dict[ErrorCode, ErrorKind] = {
    ErrorCode.EVENT_SOLD_OUT: ErrorKind.CAPACITY_EXHAUSTED,
    ErrorCode.EVENT_FULL: ErrorKind.CAPACITY_EXHAUSTED,
    ErrorCode.MODALITY_FULL: ErrorKind.CAPACITY_EXHAUSTED,
    ErrorCode.NO_ACTIVE_BATCH_AVAILABLE: ErrorKind.CAPACITY_EXHAUSTED,
    ErrorCode.SIZE_SOLD_OUT: ErrorKind.CAPACITY_EXHAUSTED,
    ErrorCode.NO_VALID_PRICE: ErrorKind.CONFIGURATION_GAP,
    ErrorCode.ALREADY_REGISTERED: ErrorKind.DUPLICATE_ADMISSION,
    ErrorCode.EVENT_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.MODALITY_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.ORDER_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.ATHLETE_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.ORDER_CANCELLED: ErrorKind.NOT_ALLOWED,
    ErrorCode.ORDER_EXPIRED: ErrorKind.NOT_ALLOWED,
    ErrorCode.DISCOUNT_REJECTED: ErrorKind.NOT_ALLOWED,
    ErrorCode.PAYMENT_AMOUNT_MISMATCH: ErrorKind.NOT_ALLOWED,
    ErrorCode.PAYMENT_LOOKUP_FAILED: ErrorKind.INTERNAL,
    ErrorCode.INTERNAL_ERROR: ErrorKind.INTERNAL,
}
