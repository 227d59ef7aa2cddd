# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Rule tags, conflict records and the violation exceptions.

A verdict is carried by a `BorrowViolation`, raised at the first failing check
and caught once per function by the rule engine. `MalformedProgramError` is
kept separate: it blames the producer of the Program Model, not the analyzed
program.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from ownck.core.diagnostics import Diagnostic
from ownck.core.span import Span
from ownck.places import Place


class RuleTag(str, Enum):
	USE_OF_MOVED = "UseOfMoved"
	USE_OF_UNINITIALIZED = "UseOfUninitialized"
	USE_WHILE_EXCLUSIVELY_BORROWED = "UseWhileExclusivelyBorrowed"
	MUTATE_WHILE_BORROWED = "MutateWhileBorrowed"
	MOVE_WHILE_BORROWED = "MoveWhileBorrowed"
	CONFLICTING_BORROW_KIND = "ConflictingBorrowKind"
	DANGLING_REFERENCE = "DanglingReference"
	MALFORMED_PROGRAM = "MalformedProgram"

	@property
	def code(self) -> str:
		return _CODES[self]

	@property
	def is_safety_violation(self) -> bool:
		"""False only for MalformedProgram (a producer contract violation)."""
		return self is not RuleTag.MALFORMED_PROGRAM


_CODES = {
	RuleTag.USE_OF_MOVED: "E_USE_AFTER_MOVE",
	RuleTag.USE_OF_UNINITIALIZED: "E_USE_UNINIT",
	RuleTag.USE_WHILE_EXCLUSIVELY_BORROWED: "E_USE_WHILE_MUT_BORROWED",
	RuleTag.MUTATE_WHILE_BORROWED: "E_WRITE_WHILE_BORROWED",
	RuleTag.MOVE_WHILE_BORROWED: "E_MOVE_WHILE_BORROWED",
	RuleTag.CONFLICTING_BORROW_KIND: "E_BORROW_CONFLICT",
	RuleTag.DANGLING_REFERENCE: "E_DANGLING_REF",
	RuleTag.MALFORMED_PROGRAM: "E_MALFORMED_PROGRAM",
}


@dataclass(frozen=True)
class ConflictRecord:
	"""
	Immutable description of the first violation found in a function.

	`loan_*` fields describe the conflicting loan (when a loan is to blame);
	`move_point` / `moved_place` describe the move that invalidated the place.
	"""

	function: str
	rule: RuleTag
	point: int
	place: Optional[Place] = None
	operation: Optional[str] = None
	loan_point: Optional[int] = None
	loan_kind: Optional[str] = None
	loan_borrower: Optional[Place] = None
	move_point: Optional[int] = None
	moved_place: Optional[Place] = None
	detail: Optional[str] = None
	span: Span = field(default_factory=Span)

	def summary(self) -> str:
		text = f"{self.rule.value} at point {self.point}"
		if self.place is not None:
			text += f" on '{self.place}'"
		if self.loan_point is not None:
			text += f" (conflicting {self.loan_kind} loan from point {self.loan_point})"
		if self.move_point is not None:
			text += f" (moved at point {self.move_point})"
		return text

	def to_dict(self) -> dict[str, Any]:
		return {
			"function": self.function,
			"rule": self.rule.value,
			"code": self.rule.code,
			"point": self.point,
			"place": str(self.place) if self.place is not None else None,
			"operation": self.operation,
			"loan_point": self.loan_point,
			"loan_kind": self.loan_kind,
			"loan_borrower": str(self.loan_borrower) if self.loan_borrower is not None else None,
			"move_point": self.move_point,
			"moved_place": str(self.moved_place) if self.moved_place is not None else None,
			"detail": self.detail,
		}

	def to_diagnostic(self) -> Diagnostic:
		notes: List[str] = []
		if self.loan_point is not None:
			notes.append(f"{self.loan_kind} borrow by '{self.loan_borrower}' created at point {self.loan_point}")
		if self.move_point is not None:
			notes.append(f"'{self.moved_place}' moved at point {self.move_point}")
		if self.detail:
			notes.append(self.detail)
		return Diagnostic(
			message=f"{self.function}: {self.summary()}",
			code=self.rule.code,
			phase="borrowcheck",
			span=self.span,
			notes=tuple(notes),
		)


class BorrowViolation(Exception):
	"""Raised at the first failing rule check; carries the conflict record."""

	def __init__(self, record: ConflictRecord) -> None:
		self.record = record
		super().__init__(record.summary())


class MalformedProgramError(BorrowViolation):
	"""The Program Model broke its contract (undeclared place, bad points, ...)."""


class VerifierInternalError(RuntimeError):
	"""The verifier's own bookkeeping disagrees with itself; never a verdict."""


__all__ = ["BorrowViolation", "ConflictRecord", "MalformedProgramError", "RuleTag", "VerifierInternalError"]
