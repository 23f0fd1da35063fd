"""
BLOCKSTAKE — Engine Error Kinds

Every failure the engine surfaces to a caller is one of these. Each carries
a stable code, whether the caller may simply retry, and the HTTP status the
JSON APIs answer with.
"""


class EconomicsError(Exception):
    code = "economics_error"
    retryable = False
    http_status = 500

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "retryable": self.retryable}


class InvalidInput(EconomicsError, ValueError):
    """Non-positive counts/amounts, malformed config, bad shares."""
    code = "invalid_input"
    http_status = 400


class InsufficientFunds(EconomicsError, ValueError):
    code = "insufficient_funds"
    http_status = 402


class UnknownRecord(EconomicsError, LookupError):
    """Batch, slot or session id that does not exist."""
    code = "not_found"
    http_status = 404


class NoMatchingSlot(EconomicsError):
    """Active batch has no unplayed slot left (try again later)."""
    code = "no_matching_slot"
    retryable = True
    http_status = 503


class AlreadyConsumed(EconomicsError):
    """Completion attempted on a slot or session that was already settled."""
    code = "already_consumed"
    http_status = 409


class NoActiveBatch(EconomicsError):
    code = "no_active_batch"
    http_status = 409


class PersistenceFailure(EconomicsError):
    """Store unreachable or transaction aborted; nothing was committed."""
    code = "persistence_failure"
    retryable = True
    http_status = 503
