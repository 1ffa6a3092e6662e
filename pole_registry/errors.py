"""
Pole Registry — Engine Errors

Every error carries a stable ``code`` and an HTTP-style ``status_code`` so
the web layer can translate it without inspecting messages.  All of them
are recoverable by the caller: retry, correct the input, or show the
message to the contributor.
"""

from __future__ import annotations

INVALID_INPUT = "INVALID_INPUT"
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"


class PoleRegistryError(Exception):
    status_code = 500
    code = "SERVER_ERROR"
    retryable = False

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class InvalidAttemptError(PoleRegistryError):
    """The attempt's dimensions contradict each other or are not in the point table."""

    status_code = 400
    code = INVALID_INPUT

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))

    def to_dict(self) -> dict:
        return {"code": self.code, "message": "Invalid attempt", "errors": self.errors}


class PoleNotFoundError(PoleRegistryError):
    status_code = 404
    code = NOT_FOUND

    def __init__(self, message: str = "Pole not found"):
        super().__init__(message)


class ConflictError(PoleRegistryError):
    """A conditional write lost against a concurrent update of the same pole."""

    status_code = 409
    code = CONFLICT
    retryable = True

    def __init__(self, pole_id: str, expected_version: int):
        self.pole_id = pole_id
        self.expected_version = expected_version
        super().__init__(
            f"Pole {pole_id} changed since version {expected_version} was read"
        )


class ConcurrentUpdateError(PoleRegistryError):
    """A merge conflicted again after one retry; surfaced to the contributor."""

    status_code = 409
    code = CONFLICT

    def __init__(self, pole_id: str):
        self.pole_id = pole_id
        super().__init__("Someone else updated this pole, please retry.")
