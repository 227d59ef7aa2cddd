#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Rule-level properties: moves, aliasing, reborrow liveness, purity."""

import pytest

from ownck.reporter import Rejected, verify_function
from ownck.rules import RuleTag
from ownck.test_support import OpsBuilder, place


def _rejected(fn) -> Rejected:
	verdict = verify_function(fn)
	assert isinstance(verdict, Rejected), f"expected rejection, got {verdict}"
	return verdict


def test_untouched_places_are_accepted():
	fn = (
		OpsBuilder()
		.declare("a")
		.assign("a")
		.declare("b", "i32")
		.assign("b")
		.use("a")
		.assign("a", "b")
		.use("b")
		.build()
	)
	assert verify_function(fn).ok


def test_read_after_move_is_rejected_at_the_read():
	b = OpsBuilder().declare("s").assign("s").declare("t").move("t", "s")
	move_point = b.last_point
	b.use("s")
	rec = _rejected(b.build()).record
	assert rec.rule is RuleTag.USE_OF_MOVED
	assert rec.point == b.last_point
	assert rec.move_point == move_point
	assert rec.moved_place == place("s")


def test_reassignment_ends_moved_state():
	fn = OpsBuilder().declare("s").assign("s").declare("t").move("t", "s").assign("s").use("s").build()
	assert verify_function(fn).ok


def test_copy_values_are_not_moved():
	fn = OpsBuilder().declare("x", "i32").assign("x").declare("y", "i32").move("y", "x").use("x").build()
	assert verify_function(fn).ok


def test_read_of_uninitialized_place_is_rejected():
	rec = _rejected(OpsBuilder().declare("s").use("s").build()).record
	assert rec.rule is RuleTag.USE_OF_UNINITIALIZED


def test_borrow_of_moved_place_is_use_of_moved():
	fn = OpsBuilder().declare("s").assign("s").declare("t").move("t", "s").declare("r", "&String").borrow("r", "s").build()
	assert _rejected(fn).record.rule is RuleTag.USE_OF_MOVED


@pytest.mark.parametrize(
	"first, second",
	[("borrow_mut", "borrow"), ("borrow", "borrow_mut"), ("borrow_mut", "borrow_mut")],
)
def test_overlapping_incompatible_loans_conflict(first, second):
	b = OpsBuilder().declare("s").assign("s").declare("a", "&mut String").declare("b", "&mut String")
	getattr(b, first)("a", "s")
	first_point = b.last_point
	getattr(b, second)("b", "s")
	conflict_point = b.last_point
	fn = b.deref("a").build()
	rec = _rejected(fn).record
	assert rec.rule is RuleTag.CONFLICTING_BORROW_KIND
	assert rec.point == conflict_point
	assert rec.loan_point == first_point


def test_shared_loans_coexist():
	fn = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("r1", "&String")
		.borrow("r1", "s")
		.declare("r2", "&String")
		.borrow("r2", "s")
		.deref("r1")
		.deref("r2")
		.build()
	)
	assert verify_function(fn).ok


def test_exclusive_loan_ending_before_shared_borrow_is_accepted():
	fn = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("m", "&mut String")
		.borrow_mut("m", "s")
		.deref("m")
		.declare("r", "&String")
		.borrow("r", "s")
		.deref("r")
		.build()
	)
	assert verify_function(fn).ok


def test_read_while_exclusively_borrowed_is_rejected():
	b = OpsBuilder().declare("s").assign("s").declare("m", "&mut String").borrow_mut("m", "s").use("s")
	use_point = b.last_point
	rec = _rejected(b.deref("m").build()).record
	assert rec.rule is RuleTag.USE_WHILE_EXCLUSIVELY_BORROWED
	assert rec.point == use_point


@pytest.mark.parametrize("mutation, rule", [("assign", RuleTag.MUTATE_WHILE_BORROWED), ("move", RuleTag.MOVE_WHILE_BORROWED)])
def test_reborrow_chain_liveness_is_transitive(mutation, rule):
	b = (
		OpsBuilder()
		.declare("a")
		.assign("a")
		.declare("t")
		.declare("b", "&String")
		.borrow("b", "a")
		.declare("c", "&&String")
		.borrow("c", "b")
	)
	if mutation == "assign":
		b.assign("a")
	else:
		b.move("t", "a")
	bad_point = b.last_point
	rec = _rejected(b.deref("c").build()).record
	assert rec.rule is rule
	assert rec.point == bad_point


def test_mutation_after_last_use_of_chain_is_accepted():
	fn = (
		OpsBuilder()
		.declare("a")
		.assign("a")
		.declare("b", "&String")
		.borrow("b", "a")
		.declare("c", "&&String")
		.borrow("c", "b")
		.deref("c")
		.assign("a")
		.build()
	)
	assert verify_function(fn).ok


def test_reborrow_through_dereference_extends_original_loan():
	fn = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("m", "&mut String")
		.borrow_mut("m", "s")
		.declare("r", "&String")
		.borrow("r", "*m")
		.assign("s")
		.deref("r")
		.build()
	)
	assert _rejected(fn).record.rule is RuleTag.MUTATE_WHILE_BORROWED


def test_moving_exclusive_reference_invalidates_source():
	b = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("m", "&mut String")
		.borrow_mut("m", "s")
		.declare("m2", "&mut String")
		.move("m2", "m")
		.deref("m2")
	)
	assert verify_function(b.build()).ok
	rec = _rejected(b.deref("m").build()).record
	assert rec.rule is RuleTag.USE_OF_MOVED
	assert rec.moved_place == place("m")


def _reborrowed_exclusive_reference() -> OpsBuilder:
	return (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("m", "&mut String")
		.borrow_mut("m", "s")  # 3
		.declare("m2", "&mut String")
		.borrow_mut("m2", "*m")  # 5
	)


def test_using_reference_while_its_exclusive_reborrow_is_live_is_rejected():
	fn = _reborrowed_exclusive_reference().deref("m").deref("m2").build()
	rec = _rejected(fn).record
	assert rec.rule is RuleTag.USE_WHILE_EXCLUSIVELY_BORROWED
	assert rec.point == 6
	assert rec.place == place("m")
	assert rec.loan_point == 5
	assert rec.loan_borrower == place("m2")


def test_using_reference_after_its_exclusive_reborrow_ends_is_accepted():
	fn = _reborrowed_exclusive_reference().deref("m2").deref("m").build()
	assert verify_function(fn).ok


def test_using_reference_beside_shared_reborrow_is_accepted():
	fn = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("m", "&mut String")
		.borrow_mut("m", "s")
		.declare("r", "&String")
		.borrow("r", "*m")
		.deref("m")
		.deref("r")
		.build()
	)
	assert verify_function(fn).ok


def test_copied_shared_reference_keeps_loan_alive():
	fn = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("r", "&String")
		.borrow("r", "s")
		.declare("r2", "&String")
		.move("r2", "r")
		.assign("s")
		.deref("r2")
		.build()
	)
	rec = _rejected(fn).record
	assert rec.rule is RuleTag.MUTATE_WHILE_BORROWED
	assert rec.loan_point == 3
	assert rec.loan_borrower == place("r")


def test_reading_borrower_in_the_reassignment_itself_is_accepted():
	"""`s = f(r)` where that is r's last use: the loan ends before the write."""
	fn = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("r", "&String")
		.borrow("r", "s")
		.assign("s", "r")
		.build()
	)
	assert verify_function(fn).ok


def test_verification_is_idempotent():
	fn = (
		OpsBuilder()
		.declare("s")
		.assign("s")
		.declare("r", "&String")
		.borrow("r", "s")
		.assign("s")
		.deref("r")
		.build()
	)
	first = verify_function(fn)
	second = verify_function(fn)
	assert isinstance(first, Rejected)
	assert first == second
	assert first.record.to_dict() == second.record.to_dict()
