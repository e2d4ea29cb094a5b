"""
Error taxonomy shared by the member, death, benefit and ledger services.

Services raise these; routes catch `WorkflowError` at the operation
boundary, roll back and flash `user_message` or the detail when one is
set. Database exceptions that escape a service are translated by
`readable_error_message()`.
"""
from __future__ import annotations

from sqlalchemy.exc import DBAPIError, OperationalError


class WorkflowError(Exception):
    user_message = "An error occurred."

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.user_message)

    def __str__(self) -> str:
        return self.detail or self.user_message


class ValidationError(WorkflowError):
    user_message = "The submitted data is invalid."

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class DuplicateRecordError(WorkflowError):
    user_message = "This record already exists for this member."


class ReferenceNotFoundError(WorkflowError):
    user_message = "Referenced member/death record not found."


class PermissionDeniedError(WorkflowError):
    user_message = "You are not authorized for this action."


class ConnectivityError(WorkflowError):
    user_message = "Connection lost, check your network."


class RuleViolationError(WorkflowError):
    """A business rule of the benefit workflow refused the operation."""


class NoDeathRecordError(RuleViolationError):
    user_message = "A benefit claim cannot be created because there is no death record for this member yet."


class MemberNotEligibleError(RuleViolationError):
    user_message = "The member is not registered as an active RUKEM member."


class InvalidTransitionError(WorkflowError):
    user_message = "This status change is not allowed."


class DeceasedMemberError(WorkflowError):
    user_message = "Deceased members cannot be edited or deleted."


def readable_error_message(exc: BaseException) -> str:
    """
    Map any exception to the message shown to the user.

    Typed workflow errors carry their own message; database errors are
    matched on driver text the same way for SQLite and Postgres.
    """
    if isinstance(exc, ValidationError):
        return " ".join(exc.errors) or exc.user_message
    if isinstance(exc, (DuplicateRecordError, InvalidTransitionError, MemberNotEligibleError, NoDeathRecordError)) and exc.detail:
        return exc.detail
    if isinstance(exc, WorkflowError):
        return exc.user_message

    raw = str(getattr(exc, "orig", None) or exc)
    text = raw.lower()
    if "foreign key" in text:
        return ReferenceNotFoundError.user_message
    if "duplicate key" in text or "unique constraint" in text:
        return DuplicateRecordError.user_message
    if "permission denied" in text or "row-level security" in text:
        return PermissionDeniedError.user_message
    if isinstance(exc, OperationalError) or (isinstance(exc, DBAPIError) and exc.connection_invalidated):
        return ConnectivityError.user_message
    if "could not connect" in text or "connection refused" in text or "network" in text:
        return ConnectivityError.user_message
    return f"An error occurred: {raw}"
