"""
Error taxonomy shared by the server mutator and the client sync engine.

Every error carries the HTTP status the server answers with, so handlers can
turn any BoardError into a `{error, detail}` JSON body without a lookup table.
"""
from typing import Optional


class BoardError(Exception):
    """Base class for all status board failures."""
    status = 500
    label = "Internal error"

    def __init__(self, message: str = "", detail: Optional[str] = None):
        super().__init__(message or self.label)
        self.message = message or self.label
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class NetworkFailure(BoardError):
    """A request to a remote service did not complete."""
    status = 502
    label = "Network failure"


class ParseFailure(BoardError):
    """A response or stored document was not valid JSON (or not decodable)."""
    status = 502
    label = "Parse failure"


class NotFound(BoardError):
    """An entity id is absent from the document."""
    status = 404
    label = "Not found"


class Conflict(BoardError):
    """The revision token supplied on write is stale."""
    status = 409
    label = "Conflict"


class Misconfiguration(BoardError):
    """The server is missing a required credential or setting."""
    status = 500
    label = "Server not configured"


class InvalidRequest(BoardError):
    """The request body is malformed or missing required fields."""
    status = 400
    label = "Invalid request"


# Failures worth another attempt later; everything else is deterministic.
TRANSIENT_ERRORS = (NetworkFailure, Conflict)


def error_for_status(status: int, message: str, detail: Optional[str] = None) -> BoardError:
    """Map an HTTP error status from the board API back onto the taxonomy."""
    if status == 400:
        return InvalidRequest(message, detail)
    if status == 404:
        return NotFound(message, detail)
    if status == 409:
        return Conflict(message, detail)
    if status == 500:
        # An unhandled server error fails the same way on every attempt
        if message.startswith(Misconfiguration.label):
            return Misconfiguration(message, detail)
        return BoardError(message, detail)
    if status > 500:
        return NetworkFailure(message, detail)
    return BoardError(message, detail)
