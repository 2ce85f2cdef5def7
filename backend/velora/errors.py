"""
Error taxonomy for the chat relay.

Every failure an exchange can hit carries an explicit ErrorKind. The kind
decides the status recorded in logs and whether the exchange keeps going.
"""
from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    UPSTREAM_FAILURE = "upstream_failure"
    DELIVERY_FAILURE = "delivery_failure"
    INTERNAL_ERROR = "internal_error"


STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DELIVERY_FAILURE: 410,
    ErrorKind.INTERNAL_ERROR: 500,
    ErrorKind.UPSTREAM_FAILURE: 502,
}

DEFAULT_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.INVALID_REQUEST: "Invalid request",
    ErrorKind.NOT_FOUND: "Resource not found",
    ErrorKind.DELIVERY_FAILURE: "Client connection is gone",
    ErrorKind.INTERNAL_ERROR: "Failed to process message",
    ErrorKind.UPSTREAM_FAILURE: "Failed to generate a response",
}


class RelayError(Exception):
    """A failure with a known kind. The message is safe to show the client."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def __repr__(self):
        return f"<RelayError(kind={self.kind.value}, message='{self.message}')>"
