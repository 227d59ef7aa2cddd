#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Place Table state transitions, independent of the rule walk."""

import pytest

from ownck.core.config import VerifierConfig
from ownck.loan_tracker import Loan, LoanKind
from ownck.place_table import PlaceState, PlaceTable
from ownck.rules import BorrowViolation, MalformedProgramError, RuleTag
from ownck.test_support import place, type_ref


def _table(**decls: str) -> PlaceTable:
	table = PlaceTable(function="f")
	for name, ty in decls.items():
		table.declare(place(name), type_ref(ty), 0)
	return table


def _loan(loan_id: int, target: str, kind: LoanKind = LoanKind.SHARED, end: int = 9) -> Loan:
	return Loan(id=loan_id, borrower=place(f"r{loan_id}"), target=place(target), kind=kind, origin=1, end=end, via=place(target))


def test_declared_place_starts_uninitialized():
	table = _table(s="String")
	assert table.state_of(place("s")) is PlaceState.UNINIT
	with pytest.raises(BorrowViolation) as info:
		table.read(place("s"), 1)
	assert info.value.record.rule is RuleTag.USE_OF_UNINITIALIZED


def test_move_then_reinitialize():
	table = _table(s="String")
	s = place("s")
	table.initialize(s, 1)
	table.move_out(s, 2)
	assert table.state_of(s) is PlaceState.MOVED
	with pytest.raises(BorrowViolation) as info:
		table.read(s, 3)
	assert info.value.record.rule is RuleTag.USE_OF_MOVED
	assert info.value.record.move_point == 2
	table.reinitialize(s, 4)
	assert table.state_of(s) is PlaceState.OWNED
	table.read(s, 5)


def test_loans_drive_borrowed_states():
	table = _table(s="String")
	table.initialize(place("s"), 1)
	first, second = _loan(0, "s"), _loan(1, "s")
	table.attach_loan(first)
	table.attach_loan(second)
	assert table.state_of(place("s")) is PlaceState.BORROWED_SHARED
	assert table.shared_count(place("s")) == 2
	table.detach_loan(first)
	table.detach_loan(second)
	assert table.state_of(place("s")) is PlaceState.OWNED
	table.attach_loan(_loan(2, "s", LoanKind.EXCLUSIVE))
	assert table.state_of(place("s")) is PlaceState.BORROWED_EXCLUSIVE


def test_read_under_exclusive_loan_fails():
	table = _table(s="String")
	table.initialize(place("s"), 1)
	with pytest.raises(BorrowViolation) as info:
		table.read(place("s"), 2, live_loans=[_loan(0, "s", LoanKind.EXCLUSIVE)])
	assert info.value.record.rule is RuleTag.USE_WHILE_EXCLUSIVELY_BORROWED
	table.read(place("s"), 2, live_loans=[_loan(1, "s")])


@pytest.mark.parametrize("kind", [LoanKind.SHARED, LoanKind.EXCLUSIVE])
def test_move_and_reassign_under_any_loan_fail(kind):
	table = _table(s="String")
	table.initialize(place("s"), 1)
	with pytest.raises(BorrowViolation) as info:
		table.move_out(place("s"), 2, live_loans=[_loan(0, "s", kind)])
	assert info.value.record.rule is RuleTag.MOVE_WHILE_BORROWED
	with pytest.raises(BorrowViolation) as info:
		table.reinitialize(place("s"), 2, live_loans=[_loan(0, "s", kind)])
	assert info.value.record.rule is RuleTag.MUTATE_WHILE_BORROWED
	assert info.value.record.loan_point == 1


def test_moved_element_poisons_container():
	table = _table(v="Vec<String>")
	table.initialize(place("v"), 1)
	table.move_out(place("v[0]"), 2)
	assert table.state_of(place("v")) is PlaceState.MOVED
	assert table.state_of(place("v[5]")) is PlaceState.MOVED
	with pytest.raises(BorrowViolation) as info:
		table.check_usable(place("v[5]"), 3)
	assert info.value.record.moved_place == place("v[0]")
	table.reinitialize(place("v"), 4)
	table.check_usable(place("v[5]"), 5)


def test_moved_field_leaves_sibling_usable():
	table = _table(p="Pair")
	table.initialize(place("p"), 1)
	table.move_out(place("p.a"), 2)
	table.check_usable(place("p.b"), 3)
	with pytest.raises(BorrowViolation):
		table.check_usable(place("p"), 3)


def test_duplication_semantics():
	table = _table(n="i64", s="String", r="&String", m="&mut String", v="Vec<u8>", w="Vec<String>")
	assert table.is_copy(place("n"))
	assert not table.is_copy(place("s"))
	assert table.is_copy(place("r"))
	assert not table.is_copy(place("m"))
	assert table.is_copy(place("v[0]"))
	assert not table.is_copy(place("w[0]"))
	assert table.declared_as_reference(place("r"))
	assert table.type_of(place("*m")) == type_ref("String")


def test_config_extends_copy_types():
	table = PlaceTable(function="f", config=VerifierConfig.from_mapping({"extra_copy_types": ["Point"]}))
	table.declare(place("p"), type_ref("Point"), 0)
	assert table.is_copy(place("p"))


def test_declaration_errors_are_malformed():
	table = _table(s="String")
	with pytest.raises(MalformedProgramError):
		table.declare(place("s"), type_ref("String"), 1)
	with pytest.raises(MalformedProgramError):
		table.declare(place("s.a"), type_ref("String"), 1)
	with pytest.raises(MalformedProgramError):
		table.exit_scope(2)


def test_scope_exit_discards_inner_roots():
	table = _table(s="String")
	table.enter_scope()
	table.declare(place("x"), type_ref("i32"), 1)
	dying = table.exit_scope(2)
	assert dying == ["x"]
	table.discard(dying)
	assert not table.is_declared(place("x"))
	assert table.is_declared(place("s"))
	assert table.is_local_storage(place("s.a"))
	assert not table.is_local_storage(place("*s"))
