from sqlalchemy.exc import IntegrityError, OperationalError

from app.rukem.errors import (
    ConnectivityError,
    DeceasedMemberError,
    DuplicateRecordError,
    InvalidTransitionError,
    MemberNotEligibleError,
    NoDeathRecordError,
    PermissionDeniedError,
    ReferenceNotFoundError,
    ValidationError,
    readable_error_message,
)


def test_workflow_errors_use_their_message():
    assert readable_error_message(NoDeathRecordError()) == NoDeathRecordError.user_message
    assert readable_error_message(MemberNotEligibleError()) == MemberNotEligibleError.user_message
    assert readable_error_message(DuplicateRecordError()) == DuplicateRecordError.user_message
    assert readable_error_message(DeceasedMemberError()) == "Deceased members cannot be edited or deleted."


def test_transition_error_detail_is_shown():
    assert readable_error_message(InvalidTransitionError("This claim has already been processed.")) == (
        "This claim has already been processed."
    )
    assert readable_error_message(InvalidTransitionError()) == InvalidTransitionError.user_message


def test_duplicate_detail_is_shown():
    dup = DuplicateRecordError("Member number 'A-001' is already in use.")
    assert readable_error_message(dup) == "Member number 'A-001' is already in use."


def test_validation_errors_joined():
    e = ValidationError(["Amount is required.", "Date is required."])
    assert str(e) == "Amount is required.; Date is required."
    assert readable_error_message(e) == "Amount is required. Date is required."


def test_database_errors_mapped_by_text():
    dup = IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed: death_records.member_id"))
    assert readable_error_message(dup) == DuplicateRecordError.user_message

    pg_dup = IntegrityError("INSERT ...", {}, Exception('duplicate key value violates unique constraint "uq"'))
    assert readable_error_message(pg_dup) == DuplicateRecordError.user_message

    fk = IntegrityError("INSERT ...", {}, Exception("FOREIGN KEY constraint failed"))
    assert readable_error_message(fk) == ReferenceNotFoundError.user_message

    denied = Exception("permission denied for table ledger_entries")
    assert readable_error_message(denied) == PermissionDeniedError.user_message

    down = OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly"))
    assert readable_error_message(down) == ConnectivityError.user_message


def test_unknown_error_passthrough():
    assert readable_error_message(RuntimeError("boom")) == "An error occurred: boom"
