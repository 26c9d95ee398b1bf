"""
Tests for jobflow/services/pipeline.py — sales pipeline state machine.
"""
import itertools
from datetime import date
from types import SimpleNamespace

import pytest

from jobflow.errors import ErrorKind
from jobflow.services.pipeline import (
    LeadStatus,
    TransitionRequest,
    TRANSITIONS,
    allowed_transitions,
    parse_status,
    plan_install_edit,
    plan_transition,
    status_label,
)

# Every ordered pair of distinct statuses outside the transition table
ILLEGAL_MOVES = [
    (current.value, target.value)
    for current, target in itertools.product(LeadStatus, LeadStatus)
    if current != target and target not in TRANSITIONS[current]
]


def _lead(status="lead", **overrides):
    fields = dict(
        status=status,
        appointment_date=None,
        appointment_time=None,
        install_date=None,
        install_tentative=False,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


# ---------------------------------------------------------------------------
# Status parsing
# ---------------------------------------------------------------------------

class TestParseStatus:
    @pytest.mark.parametrize("raw", ["appointment_set", "Appointment Set", "APPOINTMENT-SET", " appointment  set "])
    def test_variants(self, raw):
        assert parse_status(raw) == LeadStatus.APPOINTMENT_SET

    def test_unknown_and_empty(self):
        assert parse_status("qualified") is None
        assert parse_status("") is None
        assert parse_status(None) is None

    def test_enum_passthrough(self):
        assert parse_status(LeadStatus.SOLD) is LeadStatus.SOLD


class TestAllowedTransitions:
    def test_graph(self):
        assert allowed_transitions("lead") == ["appointment_set"]
        assert allowed_transitions("appointment_set") == ["sold", "not_sold"]
        assert allowed_transitions("not_sold") == ["sold"]
        assert allowed_transitions("sold") == ["complete"]
        assert allowed_transitions("complete") == []

    def test_unknown_status(self):
        assert allowed_transitions("bogus") == []


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class TestPlanTransition:
    def test_appointment_requires_date_and_time(self):
        result = plan_transition(_lead(), TransitionRequest(to_status="appointment_set"))
        assert not result.ok
        assert result.error.kind == ErrorKind.MISSING_APPOINTMENT
        assert result.error.missing_fields == ["appointment_date", "appointment_time"]
        assert result.error.from_status == "lead"
        assert result.error.to_status == "appointment_set"

    def test_appointment_missing_time_only(self):
        result = plan_transition(
            _lead(), TransitionRequest(to_status="appointment_set", appointment_date=date(2026, 3, 15)),
        )
        assert result.error.missing_fields == ["appointment_time"]

    def test_appointment_with_request_values(self):
        result = plan_transition(_lead(), TransitionRequest(
            to_status="appointment_set", appointment_date=date(2026, 3, 15), appointment_time="14:30",
        ))
        assert result.ok
        assert result.assignments == {
            "status": "appointment_set",
            "appointment_date": date(2026, 3, 15),
            "appointment_time": "14:30",
        }

    def test_appointment_uses_stored_values(self):
        lead = _lead(appointment_date=date(2026, 3, 15), appointment_time="09:00")
        result = plan_transition(lead, TransitionRequest(to_status="appointment_set"))
        assert result.ok
        assert result.assignments == {"status": "appointment_set"}

    def test_not_sold_requires_reason(self):
        result = plan_transition(_lead("appointment_set"), TransitionRequest(to_status="not_sold", not_sold_reason="  "))
        assert result.error.kind == ErrorKind.MISSING_REASON
        assert result.error.missing_fields == ["not_sold_reason"]

    def test_not_sold_with_reason(self):
        result = plan_transition(
            _lead("appointment_set"), TransitionRequest(to_status="not_sold", not_sold_reason=" Too expensive "),
        )
        assert result.assignments == {"status": "not_sold", "not_sold_reason": "Too expensive"}

    def test_recovery_clears_reason(self):
        """not_sold → sold clears the stored reason."""
        result = plan_transition(_lead("not_sold"), TransitionRequest(to_status="sold"))
        assert result.ok
        assert result.assignments == {"status": "sold", "not_sold_reason": None}

    @pytest.mark.parametrize("current,target", ILLEGAL_MOVES)
    def test_illegal_moves(self, current, target):
        result = plan_transition(_lead(current), TransitionRequest(to_status=target))
        assert not result.ok
        assert result.error.kind == ErrorKind.INVALID_TRANSITION
        assert result.error.from_status == current
        assert result.error.to_status == target

    def test_unknown_target(self):
        result = plan_transition(_lead(), TransitionRequest(to_status="won"))
        assert result.error.kind == ErrorKind.INVALID_TRANSITION
        assert "won" in result.error.message

    def test_same_status_is_noop(self):
        result = plan_transition(_lead("sold"), TransitionRequest(to_status="Sold"))
        assert result.ok
        assert result.assignments == {}

    def test_error_to_dict(self):
        result = plan_transition(_lead(), TransitionRequest(to_status="appointment_set"))
        data = result.error.to_dict()
        assert data["kind"] == "MissingAppointment"
        assert data["missing_fields"] == ["appointment_date", "appointment_time"]


# ---------------------------------------------------------------------------
# Install schedule
# ---------------------------------------------------------------------------

class TestPlanInstallEdit:
    def test_not_allowed_before_sold(self):
        result = plan_install_edit("appointment_set", date(2026, 4, 1), None)
        assert result.error.kind == ErrorKind.INSTALL_NOT_ALLOWED

    def test_sold_can_schedule(self):
        result = plan_install_edit("sold", date(2026, 4, 1), True)
        assert result.assignments == {"install_date": date(2026, 4, 1), "install_tentative": True}

    def test_clearing_always_allowed(self):
        result = plan_install_edit("lead", None, None)
        assert result.assignments == {"install_date": None, "install_tentative": False}

    def test_tentative_without_date(self):
        result = plan_install_edit("sold", None, True)
        assert result.error.missing_fields == ["install_date"]


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------

class TestStatusLabel:
    def test_appointment_label(self):
        lead = _lead("appointment_set", appointment_date=date(2026, 3, 15), appointment_time="14:30")
        assert status_label(lead) == "Appointment: 03/15/2026 2:30 PM"

    def test_appointment_without_schedule(self):
        assert status_label(_lead("appointment_set")) == "Appointment Set"

    def test_install_labels(self):
        assert status_label(_lead("sold", install_date=date(2026, 4, 1))) == "Install 04/01/2026"
        assert status_label(
            _lead("sold", install_date=date(2026, 4, 1), install_tentative=True)
        ) == "Install 04/01/2026 (Tentative)"
        assert status_label(_lead("sold")) == "Sold"

    def test_other_labels(self):
        assert status_label(_lead("lead")) == "Lead"
        assert status_label(_lead("not_sold")) == "Not Sold"
        assert status_label(_lead("complete")) == "Completed"
