from typing import Any, Dict


class ServiceError(Exception):
    code = "service_error"
    status_code = 400

    def __init__(self, message: str = "", **payload: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.payload = payload

    def body(self) -> Dict[str, Any]:
        return {"code": self.code, **self.payload}


class ValidationError(ServiceError):
    code = "validation_error"
    status_code = 400


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404


class AlreadyMember(ServiceError):
    code = "already_member"
    status_code = 409


class AttemptInCooldown(ServiceError):
    code = "attempt_in_cooldown"
    status_code = 429

    def __init__(self, next_attempt_at, message: str = ""):
        super().__init__(message or "Retry is not allowed before the cooldown expires", next_attempt_at=next_attempt_at)
        self.next_attempt_at = next_attempt_at


class AttemptInProgress(ServiceError):
    """
    Raised when an open attempt already exists for the (user, project) pair.
    Issuance catches it and hands back the existing attempt.
    """

    code = "attempt_in_progress"
    status_code = 409

    def __init__(self, attempt, message: str = ""):
        super().__init__(message or "An attempt is already in progress", attempt_id=attempt.id)
        self.attempt = attempt


class AttemptAlreadyFinalized(ServiceError):
    code = "attempt_already_finalized"
    status_code = 409


class ChallengeLocked(ServiceError):
    code = "challenge_locked"
    status_code = 409


class EvaluationSandboxFault(ServiceError):
    code = "evaluation_sandbox_fault"
    status_code = 502


class SandboxUnavailable(Exception):
    """Transient sandbox infrastructure failure; safe to retry."""



class AttemptBusy(ServiceError):
    code = "attempt_busy"
    status_code = 409
