import re
from typing import Optional


class GatewayError(Exception):
    """Base error; carries the HTTP status and a machine-readable code."""

    status_code = 500
    code = "chain_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(GatewayError):
    status_code = 400
    code = "invalid_request"


class Forbidden(GatewayError):
    status_code = 403
    code = "forbidden"


class NotFound(GatewayError):
    status_code = 404
    code = "not_found"


class Conflict(GatewayError):
    status_code = 409
    code = "conflict"


class ChainError(GatewayError):
    status_code = 500
    code = "chain_error"


class Inconsistent(ChainError):
    code = "inconsistent_state"


# Known revert reasons, first match wins.
REVERT_REASONS = [
    (("not a registered voter",), Forbidden, "voter_not_registered"),
    (("already voted",), Conflict, "already_voted"),
    (("candidate",), ValidationError, "unknown_candidate"),
    (("not enough eth", "insufficient"), ValidationError, "insufficient_funds"),
    (("already has", "already exists"), Conflict, "election_exists"),
    (("only admin", "not admin", "not the admin"), Forbidden, "not_admin"),
]

_HARDHAT_REASON = re.compile(r"reason string '(.*)'")
_EXECUTION_REVERTED = "execution reverted:"


def revert_reason(message: str) -> str:
    """Pull the human reason out of a node's revert message."""
    match = _HARDHAT_REASON.search(message)
    if match:
        return match.group(1)
    idx = message.find(_EXECUTION_REVERTED)
    if idx >= 0:
        return message[idx + len(_EXECUTION_REVERTED):].strip()
    return message.strip()


def classify_revert(message: str) -> GatewayError:
    reason = revert_reason(message)
    lowered = reason.lower()
    for needles, error_cls, code in REVERT_REASONS:
        if any(needle in lowered for needle in needles):
            return error_cls(reason, code=code)
    return ChainError(f"Transaction reverted: {reason}")
