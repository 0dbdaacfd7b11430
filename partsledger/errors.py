from __future__ import annotations


class InventoryError(ValueError):
    """Base for every domain failure surfaced to callers.

    Subclasses carry the HTTP status the API maps them to and a stable
    ``code`` for clients. Only :class:`Conflict` is retryable.
    """

    status_code = 400
    code = 'INVENTORY_ERROR'
    retryable = False

    def to_dict(self) -> dict:
        return {'error': self.code, 'detail': str(self)}


class InsufficientStock(InventoryError):
    status_code = 409
    code = 'INSUFFICIENT_STOCK'


class InvalidQuantity(InventoryError):
    status_code = 400
    code = 'INVALID_QUANTITY'


class NotFound(InventoryError):
    status_code = 404
    code = 'NOT_FOUND'


class Conflict(InventoryError):
    status_code = 409
    code = 'CONFLICT'
    retryable = True


class InvalidTransition(InventoryError):
    status_code = 409
    code = 'INVALID_TRANSITION'


class SessionExpired(InventoryError):
    status_code = 410
    code = 'SESSION_EXPIRED'


class InvalidToken(InventoryError):
    status_code = 403
    code = 'INVALID_TOKEN'


class TransferLineFailed(InventoryError):
    """A transfer line could not be shipped.

    Keeps the HTTP status of the underlying error and reports its code as
    ``reason`` next to the line that failed.
    """

    code = 'TRANSFER_LINE_FAILED'

    def __init__(self, message: str, *, cause: InventoryError, line_id: int, part_id: int, line_number: int) -> None:
        super().__init__(message)
        self.status_code = cause.status_code
        self.retryable = cause.retryable
        self.reason = cause.code
        self.line_id = line_id
        self.part_id = part_id
        self.line_number = line_number

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update(
            {'reason': self.reason, 'lineId': self.line_id, 'partId': self.part_id, 'lineNumber': self.line_number}
        )
        return payload
