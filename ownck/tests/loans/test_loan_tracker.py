#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Walk-time loan bookkeeping."""

import pytest

from ownck.loan_tracker import LoanKind, LoanTracker, compute_liveness
from ownck.place_table import PlaceState, PlaceTable
from ownck.rule_engine import RuleEngine
from ownck.rules import BorrowViolation, RuleTag, VerifierInternalError
from ownck.test_support import OpsBuilder, place, type_ref


def _tracker(builder: OpsBuilder) -> LoanTracker:
	table = PlaceTable(function="main")
	table.declare(place("s"), type_ref("String"), 0, initialized=True)
	return LoanTracker("main", compute_liveness(builder.build()), table)


def _two_borrows(second: str) -> OpsBuilder:
	b = OpsBuilder().declare("s").assign("s").declare("a").declare("b").borrow("a", "s")  # 4
	getattr(b, second)("b", "s")  # 5
	return b.deref("a").deref("b")  # 6, 7


def test_open_and_close_loan():
	tracker = _tracker(_two_borrows("borrow"))
	s = place("s")
	loan = tracker.open_loan(place("a"), s, LoanKind.SHARED, 4)
	assert loan.end == 6
	assert tracker.places.state_of(s) is PlaceState.BORROWED_SHARED
	assert tracker.holds_reference(place("a"))
	assert tracker.held_by(place("a")) == [loan]
	assert tracker.live_overlapping(s, 6) == [loan]
	assert tracker.live_overlapping(s, 6, strict=True) == []
	assert tracker.close_expired_loans(6) == []
	assert tracker.close_expired_loans(6, inclusive=True) == [loan]
	assert tracker.places.state_of(s) is PlaceState.OWNED


def test_shared_loans_open_side_by_side():
	tracker = _tracker(_two_borrows("borrow"))
	tracker.open_loan(place("a"), place("s"), LoanKind.SHARED, 4)
	tracker.open_loan(place("b"), place("s"), LoanKind.SHARED, 5)
	assert tracker.places.shared_count(place("s")) == 2


def test_exclusive_loan_conflicts_with_open_shared_loan():
	tracker = _tracker(_two_borrows("borrow_mut"))
	tracker.open_loan(place("a"), place("s"), LoanKind.SHARED, 4)
	with pytest.raises(BorrowViolation) as info:
		tracker.open_loan(place("b"), place("s"), LoanKind.EXCLUSIVE, 5)
	rec = info.value.record
	assert rec.rule is RuleTag.CONFLICTING_BORROW_KIND
	assert rec.loan_point == 4
	assert rec.loan_borrower == place("a")


def test_scope_exit_closes_loans_held_by_dying_borrowers():
	tracker = _tracker(_two_borrows("borrow"))
	tracker.open_loan(place("a"), place("s"), LoanKind.SHARED, 4)
	kept = tracker.open_loan(place("b"), place("s"), LoanKind.SHARED, 5)
	closed = tracker.close_borrowers(["a"])
	assert [ln.borrower for ln in closed] == [place("a")]
	assert list(tracker.open.values()) == [kept]


def test_unrecorded_loan_is_an_internal_error():
	tracker = _tracker(_two_borrows("borrow"))
	with pytest.raises(VerifierInternalError):
		tracker.open_loan(place("zzz"), place("s"), LoanKind.SHARED, 4)


def test_tracker_used_before_walk_is_an_internal_error():
	engine = RuleEngine(OpsBuilder().declare("s").build())
	with pytest.raises(VerifierInternalError):
		engine._holds_reference(place("s"))


def test_rebinding_borrower_releases_its_earlier_loans():
	tracker = _tracker(_two_borrows("borrow"))
	loan = tracker.open_loan(place("a"), place("s"), LoanKind.SHARED, 4)
	tracker.rebind(place("a"), 4)
	assert tracker.holds_reference(place("a"))
	tracker.rebind(place("a"), 5)
	assert not tracker.holds_reference(place("a"))
	assert tracker.held_by(place("a")) == []
	assert list(tracker.open.values()) == [loan]
