# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Rule engine: the per-function walk.

Scope:
- Runs the liveness collector first, so every loan's live range (including
  reborrow chains) is final before any conflict is checked.
- Walks operations once in program-point order, threading a fresh Place Table
  and Loan Tracker.
- At each point: expire loans that ended earlier, run the operation's reads /
  moves / borrows, expire loans whose last use was this point, then apply the
  operation's write. A loan whose borrower is used for the last time by the
  same operation that overwrites the borrowed place is therefore not a
  conflict (`s = r.clone()`), while a use after the write is.
- Stops at the first violation (raised as BorrowViolation).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, List, NoReturn, Optional

from ownck.core.config import VerifierConfig
from ownck.loan_tracker import Loan, LoanKind, LoanTracker, compute_liveness, entry_point
from ownck.place_table import PlaceState, PlaceTable
from ownck.places import Place
from ownck.program.model import ArgMode, Function, OpKind, Operation
from ownck.rules import BorrowViolation, ConflictRecord, MalformedProgramError, RuleTag, VerifierInternalError

logger = logging.getLogger(__name__)


class RuleEngine:
	"""Verifies one function; instances are single-use and not shared between threads."""

	def __init__(self, fn: Function, config: Optional[VerifierConfig] = None) -> None:
		self.fn = fn
		self.config = config or VerifierConfig()
		self.places = PlaceTable(function=fn.name, config=self.config)
		self.loans: Optional[LoanTracker] = None
		self._returned_at: Optional[int] = None
		self._closed_here: List[Loan] = []
		self._handlers: Dict[OpKind, Callable[[Operation], Optional[Place]]] = {
			OpKind.DECLARE: self._op_declare,
			OpKind.ASSIGN: self._op_assign,
			OpKind.MOVE_ASSIGN: self._op_move_assign,
			OpKind.BORROW_SHARED: self._op_borrow,
			OpKind.BORROW_EXCLUSIVE: self._op_borrow,
			OpKind.DEREF_USE: self._op_deref_use,
			OpKind.USE: self._op_use,
			OpKind.CALL: self._op_call,
			OpKind.RETURN: self._op_return,
			OpKind.ENTER_SCOPE: self._op_enter_scope,
			OpKind.EXIT_SCOPE: self._op_exit_scope,
		}
		missing = set(OpKind) - set(self._handlers)
		if missing:
			raise VerifierInternalError(f"no handler for operation kinds: {sorted(k.value for k in missing)}")

	def run(self) -> None:
		"""Walk the function; raises BorrowViolation on the first failed rule."""
		self._check_points()
		start = entry_point(self.fn)
		for param in self.fn.params:
			self.places.declare(Place(param.name), param.ty, start, initialized=True)
		facts = compute_liveness(self.fn)
		logger.debug("%s: %d loans collected", self.fn.name, len(facts.loans))
		self.loans = LoanTracker(self.fn.name, facts, self.places)
		self.loans.open_entry_loans(start)
		for op in self.fn.operations:
			try:
				self._step(op)
			except BorrowViolation as err:
				rec = err.record
				if rec.operation is None:
					rec = replace(rec, operation=str(op), span=op.span)
				raise type(err)(rec) from None

	# -- walk -----------------------------------------------------------------

	def _step(self, op: Operation) -> None:
		p = op.point
		if self._returned_at is not None:
			self._malformed(p, None, f"operation after return at point {self._returned_at}")
		if not isinstance(op.kind, OpKind):
			self._malformed(p, None, f"unknown operation kind {op.kind!r}")
		handler = self._handlers[op.kind]
		tracker = self._tracker
		tracker.close_expired_loans(p)
		write = handler(op)
		self._closed_here = tracker.close_expired_loans(p, inclusive=True)
		if write is not None:
			self._write(write, p)

	def _check_points(self) -> None:
		last: Optional[int] = None
		for op in self.fn.operations:
			if last is not None and op.point <= last:
				self._malformed(op.point, None, f"program point {op.point} does not follow {last}")
			last = op.point

	# -- operations -----------------------------------------------------------

	def _op_declare(self, op: Operation) -> None:
		target = self._need_target(op)
		self.places.declare(target, op.ty, op.point)
		return None

	def _op_assign(self, op: Operation) -> Optional[Place]:
		target = self._need_target(op)
		for src in op.sources:
			self._read(src, op.point)
		return target

	def _op_move_assign(self, op: Operation) -> Optional[Place]:
		target = self._need_target(op)
		src = self._need_source(op)
		self._require_declared(target, op.point)
		derived = [ln for ln in self._tracker.pending_at(op.point) if ln.borrower == target]
		if derived or self._holds_reference(src):
			# Copying a shared reference or moving an exclusive one; the target
			# becomes a reborrower of the loan the source holds.
			self._read(src, op.point)
			exclusive = self._holds_exclusive_reference(src)
			for loan in derived:
				self._tracker.open_loan(target, loan.via, loan.kind, op.point)
			if exclusive:
				self._move_out(src, op.point)
			return target
		if self.places.is_copy(src):
			self._read(src, op.point)
		else:
			# By-value extraction; for `v[i]` this moves the element place only.
			self._move_out(src, op.point)
		return target

	def _op_borrow(self, op: Operation) -> Optional[Place]:
		target = self._need_target(op)
		src = self._need_source(op)
		self._require_declared(target, op.point)
		kind = LoanKind.SHARED if op.kind is OpKind.BORROW_SHARED else LoanKind.EXCLUSIVE
		self._borrow(target, src, kind, op.point)
		return target

	def _op_deref_use(self, op: Operation) -> None:
		src = self._need_source(op)
		split = src.deref_split()
		ref = split[0] if split is not None else src
		self._read(ref, op.point)
		if not self._holds_reference(ref):
			self._malformed(op.point, ref, f"'{ref}' is dereferenced but holds no reference")
		return None

	def _op_use(self, op: Operation) -> None:
		self._read(self._need_source(op), op.point)
		return None

	def _op_call(self, op: Operation) -> Optional[Place]:
		if op.target is not None:
			self._require_declared(op.target, op.point)
		for arg in op.args:
			if arg.mode is ArgMode.VALUE:
				self._pass_by_value(arg.place, op.point)
			else:
				kind = LoanKind.SHARED if arg.mode is ArgMode.SHARED else LoanKind.EXCLUSIVE
				self._borrow(None, arg.place, kind, op.point)
		return op.target

	def _op_return(self, op: Operation) -> None:
		self._returned_at = op.point
		src = op.source
		if src is None:
			return None
		self._require_declared(src, op.point)
		for loan in self._tracker.held_by(src):
			if self.places.is_local_storage(loan.target):
				self._fail(
					RuleTag.DANGLING_REFERENCE,
					op.point,
					loan.target,
					loan=loan,
					detail=f"returns a reference to '{loan.target}', which is local to '{self.fn.name}'",
				)
		self._pass_by_value(src, op.point)
		return None

	def _op_enter_scope(self, op: Operation) -> None:
		self.places.enter_scope()
		return None

	def _op_exit_scope(self, op: Operation) -> None:
		p = op.point
		dying = set(self.places.exit_scope(p))
		for loan in list(self._tracker.open.values()):
			if loan.borrower is None or loan.borrower.base in dying:
				continue
			if loan.target.base in dying and self.places.is_local_storage(loan.target) and loan.end > p:
				self._fail(
					RuleTag.DANGLING_REFERENCE,
					p,
					loan.target,
					loan=loan,
					detail=f"'{loan.target.base}' goes out of scope while still borrowed",
				)
		self._tracker.close_borrowers(dying)
		self.places.discard(dying)
		return None

	# -- primitive effects ----------------------------------------------------

	def _read(self, place: Place, point: int) -> None:
		self._require_declared(place, point)
		split = place.deref_split()
		if split is not None:
			place = split[0]
		self.places.read(place, point, live_loans=self._tracker.live_overlapping(place, point))
		self._check_exclusive_reborrows(place, point)

	def _check_exclusive_reborrows(self, ref: Place, point: int) -> None:
		"""A reference cannot be used while an exclusive reborrow through it is live."""
		for loan in self._tracker.held_by(ref):
			for other in self._tracker.reborrows_of(loan):
				if other.is_exclusive and other.end >= point:
					self._fail(
						RuleTag.USE_WHILE_EXCLUSIVELY_BORROWED,
						point,
						ref,
						loan=other,
						detail=f"'{ref}' is used while '{other.via}' is exclusively reborrowed",
					)

	def _move_out(self, place: Place, point: int) -> None:
		self._require_declared(place, point)
		if place.deref_split() is not None:
			self._fail(RuleTag.MOVE_WHILE_BORROWED, point, place, detail="cannot move out of storage reached through a reference")
		self.places.move_out(place, point, live_loans=self._tracker.live_overlapping(place, point))

	def _pass_by_value(self, place: Place, point: int) -> None:
		if self._holds_reference(place) or self.places.is_copy(place):
			self._read(place, point)
		else:
			self._move_out(place, point)

	def _borrow(self, borrower: Optional[Place], place: Place, kind: LoanKind, point: int) -> Loan:
		self._require_declared(place, point)
		split = place.deref_split()
		if split is not None:
			self._read(split[0], point)
		else:
			self.places.check_usable(place, point)
		return self._tracker.open_loan(borrower, place, kind, point)

	def _write(self, place: Place, point: int) -> None:
		self._require_declared(place, point)
		split = place.deref_split()
		if split is not None:
			self._write_through(split[0], point)
			return
		if place.is_root and self.places.state_of(place) is PlaceState.UNINIT:
			self.places.initialize(place, point)
		else:
			self.places.reinitialize(place, point, live_loans=self._tracker.live_overlapping(place, point, strict=True))
		self._tracker.rebind(place, point)

	def _write_through(self, ref: Place, point: int) -> None:
		"""`*r = ...`: r must hold an exclusive reference with no live reborrows."""
		self._read(ref, point)
		# Loans whose last use is this write were closed before it was applied.
		held = self._tracker.holding(ref, extra=self._closed_here)
		ty = self.places.type_of(ref)
		if not held and not (ty is not None and ty.is_ref):
			self._malformed(point, ref, f"'{ref}' is written through but holds no reference")
		for loan in held:
			if not loan.is_exclusive:
				self._fail(RuleTag.MUTATE_WHILE_BORROWED, point, loan.target, loan=loan, detail=f"'{ref}' is a shared reference")
			for other in self._tracker.reborrows_of(loan):
				if other.end > point:
					self._fail(RuleTag.MUTATE_WHILE_BORROWED, point, loan.target, loan=other)
		if not held and ty is not None and ty.ref == "shared":
			self._fail(RuleTag.MUTATE_WHILE_BORROWED, point, ref.deref(), detail=f"'{ref}' is a shared reference")

	# -- helpers --------------------------------------------------------------

	@property
	def _tracker(self) -> LoanTracker:
		if self.loans is None:
			raise VerifierInternalError("loan tracker used before the walk started")
		return self.loans

	def _holds_reference(self, place: Place) -> bool:
		return self._tracker.holds_reference(place) or self.places.declared_as_reference(place)

	def _holds_exclusive_reference(self, place: Place) -> bool:
		if any(ln.is_exclusive for ln in self._tracker.holding(place)):
			return True
		ty = self.places.type_of(place)
		return ty is not None and ty.ref == "exclusive"

	def _require_declared(self, place: Place, point: int) -> None:
		self.places.require_declared(place, point)

	def _need_target(self, op: Operation) -> Place:
		if op.target is None:
			self._malformed(op.point, None, f"'{op.kind.value}' requires a target place")
		return op.target

	def _need_source(self, op: Operation) -> Place:
		if op.source is None:
			self._malformed(op.point, None, f"'{op.kind.value}' requires a source place")
		return op.source

	def _fail(
		self,
		rule: RuleTag,
		point: int,
		place: Optional[Place],
		*,
		loan: Optional[Loan] = None,
		detail: Optional[str] = None,
	) -> NoReturn:
		raise BorrowViolation(
			ConflictRecord(
				function=self.fn.name,
				rule=rule,
				point=point,
				place=place,
				loan_point=loan.origin if loan is not None else None,
				loan_kind=loan.kind.value if loan is not None else None,
				loan_borrower=loan.borrower if loan is not None else None,
				detail=detail,
			)
		)

	def _malformed(self, point: int, place: Optional[Place], detail: str) -> NoReturn:
		raise MalformedProgramError(
			ConflictRecord(function=self.fn.name, rule=RuleTag.MALFORMED_PROGRAM, point=point, place=place, detail=detail)
		)


__all__ = ["RuleEngine"]
