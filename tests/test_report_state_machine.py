from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from catrescue import state_machine
from catrescue.domain import CatType, Location, ReportStatus
from catrescue.errors import ApiError

T0 = datetime(2024, 5, 1, 8, 0, tzinfo=UTC)

OPERATIONS = {
    "putOnHold": state_machine.put_on_hold,
    "resume": state_machine.resume,
    "complete": state_machine.complete,
    "cancel": state_machine.cancel,
}

LEGAL = {
    (ReportStatus.PENDING, "putOnHold"): ReportStatus.ON_HOLD,
    (ReportStatus.PENDING, "complete"): ReportStatus.COMPLETED,
    (ReportStatus.PENDING, "cancel"): ReportStatus.CANCELLED,
    (ReportStatus.ON_HOLD, "resume"): ReportStatus.PENDING,
}


def _new_report(**overrides):
    fields = {
        "owner_id": "u_owner",
        "number_of_cats": 2,
        "type": CatType.STRAY,
        "contact_phone": "0812345678",
        "location": {"lat": 13.75, "long": 100.5, "description": "Near 7-11"},
        "now": T0,
    }
    fields.update(overrides)
    return state_machine.create_report(**fields)


def _report_in(status: ReportStatus):
    report = _new_report()
    if status == ReportStatus.ON_HOLD:
        report = state_machine.put_on_hold(report, changed_by="u1", remark="hold")
    elif status == ReportStatus.COMPLETED:
        report = state_machine.complete(report, changed_by="u1", remark="done")
    elif status == ReportStatus.CANCELLED:
        report = state_machine.cancel(report, changed_by="u1", remark="dup")
    return report


def test_create_report_starts_pending_with_empty_history():
    report = _new_report()
    assert report.status == ReportStatus.PENDING
    assert report.status_history == ()
    assert report.created_at == report.updated_at == T0
    assert report.id.startswith("rpt_")
    assert report.location == Location(lat=13.75, long=100.5, description="Near 7-11")


def test_create_report_accepts_zero_cats_as_unknown():
    assert _new_report(number_of_cats=0).number_of_cats == 0


def test_create_report_rejects_negative_count_and_unknown_type():
    with pytest.raises(ApiError) as exc:
        _new_report(number_of_cats=-1)
    assert exc.value.code == "REQ_VALIDATION_FAILED"

    with pytest.raises(ApiError) as exc:
        _new_report(type="tiger")
    assert exc.value.code == "REQ_VALIDATION_FAILED"


@pytest.mark.parametrize("status", list(ReportStatus))
@pytest.mark.parametrize("operation", list(OPERATIONS))
def test_operation_succeeds_only_for_table_pairs(status, operation):
    report = _report_in(status)
    fn = OPERATIONS[operation]
    expected = LEGAL.get((status, operation))
    if expected is None:
        with pytest.raises(ApiError) as exc:
            fn(report, changed_by="u2", remark="try")
        assert exc.value.code == "REPORT_STATUS_TRANSITION_INVALID"
        assert exc.value.http_status == 409
        assert exc.value.details == {
            "from": status.value,
            "to": state_machine.TRANSITION_OPERATIONS[operation].value,
        }
    else:
        updated = fn(report, changed_by="u2", remark="try")
        assert updated.status == expected


def test_successful_transition_appends_exactly_one_entry():
    report = _new_report()
    updated = state_machine.put_on_hold(report, changed_by="u_rescuer", remark="checking", now=T0 + timedelta(hours=1))

    assert len(updated.status_history) == len(report.status_history) + 1
    entry = updated.status_history[-1]
    assert entry.from_status == ReportStatus.PENDING
    assert entry.to_status == ReportStatus.ON_HOLD
    assert entry.changed_by == "u_rescuer"
    assert entry.remark == "checking"
    assert entry.changed_at == updated.updated_at == T0 + timedelta(hours=1)


def test_transition_never_mutates_input_snapshot():
    report = _new_report()
    state_machine.put_on_hold(report, changed_by="u1", remark="checking")
    assert report.status == ReportStatus.PENDING
    assert report.status_history == ()
    assert report.updated_at == T0


@pytest.mark.parametrize("terminal_op", ["complete", "cancel"])
def test_terminal_reports_reject_every_status_change(terminal_op):
    report = OPERATIONS[terminal_op](_new_report(), changed_by="u1", remark="final")
    for fn in OPERATIONS.values():
        with pytest.raises(ApiError) as exc:
            fn(report, changed_by="u1", remark="again")
        assert exc.value.code == "REPORT_STATUS_TRANSITION_INVALID"


def test_scenario_hold_resume_complete_then_cancel_fails():
    report = _new_report()
    assert report.status == ReportStatus.PENDING
    assert len(report.status_history) == 0

    report = state_machine.put_on_hold(report, changed_by="u1", remark="checking")
    assert report.status == ReportStatus.ON_HOLD
    assert len(report.status_history) == 1
    assert report.status_history[0].from_status == ReportStatus.PENDING
    assert report.status_history[0].to_status == ReportStatus.ON_HOLD

    report = state_machine.resume(report, changed_by="u1", remark="back")
    assert report.status == ReportStatus.PENDING
    assert len(report.status_history) == 2

    report = state_machine.complete(report, changed_by="u1", remark="done")
    assert report.status == ReportStatus.COMPLETED
    assert len(report.status_history) == 3
    assert state_machine.history_is_consistent(report)

    with pytest.raises(ApiError) as exc:
        state_machine.cancel(report, changed_by="u1", remark="oops")
    assert exc.value.code == "REPORT_STATUS_TRANSITION_INVALID"


def test_updated_at_moves_forward_even_when_clock_stalls():
    report = _new_report()
    held = state_machine.put_on_hold(report, changed_by="u1", remark="a", now=T0)
    resumed = state_machine.resume(held, changed_by="u1", remark="b", now=T0 - timedelta(minutes=5))
    edited = state_machine.update_details(resumed, {"number_of_cats": 3}, now=T0)

    assert report.updated_at < held.updated_at < resumed.updated_at < edited.updated_at


def test_update_details_changes_fields_without_touching_history():
    report = state_machine.put_on_hold(_new_report(), changed_by="u1", remark="hold", now=T0)
    updated = state_machine.update_details(
        report,
        {
            "number_of_cats": 4,
            "type": "injured",
            "images": ["a", "b"],
            "location": {"lat": 1, "long": 2},
            "description": "limping",
        },
        now=T0 + timedelta(days=1),
    )

    assert updated.number_of_cats == 4
    assert updated.type == CatType.INJURED
    assert updated.images == ("a", "b")
    assert updated.location == Location(lat=1.0, long=2.0, description="")
    assert updated.description == "limping"
    assert updated.status == ReportStatus.ON_HOLD
    assert updated.status_history == report.status_history
    assert updated.created_at == report.created_at
    assert updated.updated_at == T0 + timedelta(days=1)


@pytest.mark.parametrize("field", ["id", "owner_id", "status", "status_history", "created_at"])
def test_update_details_rejects_protected_fields(field):
    with pytest.raises(ApiError) as exc:
        state_machine.update_details(_new_report(), {field: "x"})
    assert exc.value.code == "REQ_VALIDATION_FAILED"


@pytest.mark.parametrize("status", [ReportStatus.COMPLETED, ReportStatus.CANCELLED])
def test_update_details_rejected_on_terminal_reports(status):
    with pytest.raises(ApiError) as exc:
        state_machine.update_details(_report_in(status), {"number_of_cats": 5})
    assert exc.value.code == "REPORT_STATUS_TRANSITION_INVALID"
    assert "completed or cancelled" in exc.value.message


def test_transition_table_helpers():
    assert state_machine.allowed_targets(ReportStatus.ON_HOLD) == frozenset({ReportStatus.PENDING})
    assert state_machine.can_transition(ReportStatus.PENDING, ReportStatus.COMPLETED)
    assert not state_machine.can_transition(ReportStatus.ON_HOLD, ReportStatus.COMPLETED)
    assert state_machine.is_terminal(ReportStatus.CANCELLED)
    assert not state_machine.is_terminal(ReportStatus.ON_HOLD)


def test_update_details_partial_patch_keeps_other_fields():
    report = _new_report(description="two tabbies", images=["a"])
    updated = state_machine.update_details(report, {"number_of_cats": 3}, now=T0 + timedelta(minutes=1))

    assert updated.number_of_cats == 3
    assert updated.type == report.type
    assert updated.contact_phone == report.contact_phone
    assert updated.description == "two tabbies"
    assert updated.images == ("a",)
    assert updated.location == report.location


@pytest.mark.parametrize(
    "changes",
    [{}, {"contact_phone": None}, {"type": None}, {"number_of_cats": None}, {"location": None}],
)
def test_update_details_rejects_empty_patch_and_cleared_required_fields(changes):
    with pytest.raises(ApiError) as exc:
        state_machine.update_details(_new_report(), changes)
    assert exc.value.code == "REQ_VALIDATION_FAILED"


@pytest.mark.parametrize(
    "location",
    [
        {"lat": float("nan"), "long": 100.5},
        {"lat": 13.75, "long": float("inf")},
        {"lat": "-Infinity", "long": 100.5},
    ],
)
def test_non_finite_coordinates_are_rejected(location):
    with pytest.raises(ApiError) as exc:
        _new_report(location=location)
    assert exc.value.code == "REQ_VALIDATION_FAILED"

    with pytest.raises(ApiError) as exc:
        state_machine.update_details(_new_report(), {"location": location})
    assert exc.value.code == "REQ_VALIDATION_FAILED"
