# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Place Table: per-place ownership state for one function walk.

Each declared root (and every projection that has been moved, reinitialized
or borrowed) gets a `PlaceEntry`. The entry stores the ownership component
(uninitialized/owned/moved) and back-references (loan ids) to the loans on
it; the loans themselves live in the Loan Tracker.

The table raises `BorrowViolation` for the checks it owns:
  read         -> UseOfMoved / UseOfUninitialized / UseWhileExclusivelyBorrowed
  move_out     -> UseOfMoved / UseOfUninitialized / MoveWhileBorrowed
  reinitialize -> MutateWhileBorrowed (and use-of-moved for writes into a
                  moved parent)
Callers pass the live loans overlapping the place; the table decides which of
them conflict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Dict, Iterable, List, NoReturn, Optional, Set

from ownck.core.config import VerifierConfig
from ownck.places import DerefProj, FieldProj, IndexProj, Place
from ownck.program.model import TypeRef
from ownck.rules import BorrowViolation, ConflictRecord, MalformedProgramError, RuleTag

if TYPE_CHECKING:
	from ownck.loan_tracker import Loan


class PlaceState(Enum):
	"""Ownership state; exactly one holds for a place at any program point."""

	UNINIT = auto()
	OWNED = auto()
	MOVED = auto()
	BORROWED_SHARED = auto()
	BORROWED_EXCLUSIVE = auto()


@dataclass
class PlaceEntry:
	"""Ownership component plus loan back-references for one place."""

	ownership: PlaceState = PlaceState.OWNED  # UNINIT / OWNED / MOVED only
	moved_at: Optional[int] = None
	shared: Set[int] = field(default_factory=set)
	exclusive: Optional[int] = None

	@property
	def state(self) -> PlaceState:
		if self.ownership is not PlaceState.OWNED:
			return self.ownership
		if self.exclusive is not None:
			return PlaceState.BORROWED_EXCLUSIVE
		if self.shared:
			return PlaceState.BORROWED_SHARED
		return PlaceState.OWNED

	def is_idle(self) -> bool:
		return self.ownership is PlaceState.OWNED and not self.shared and self.exclusive is None


@dataclass
class PlaceTable:
	"""
	Ownership state for the places of a single function.

	`scopes` is a stack of declared root names (index 0 is the function scope,
	which also holds parameters).
	"""

	function: str
	config: VerifierConfig = field(default_factory=VerifierConfig)
	entries: Dict[Place, PlaceEntry] = field(default_factory=dict)
	types: Dict[str, TypeRef] = field(default_factory=dict)
	scopes: List[List[str]] = field(default_factory=lambda: [[]])

	# -- declaration / scopes -------------------------------------------------

	def declare(self, place: Place, ty: Optional[TypeRef], point: int, *, initialized: bool = False) -> None:
		"""Introduce a root place in the current scope (state Uninitialized)."""
		if not place.is_root:
			self._malformed(point, place, "only variables can be declared")
		if place.base in self.types:
			self._malformed(point, place, f"'{place.base}' is already declared in an enclosing scope")
		self.types[place.base] = ty if ty is not None else TypeRef("_")
		self.scopes[-1].append(place.base)
		self.entries[place] = PlaceEntry(PlaceState.OWNED if initialized else PlaceState.UNINIT)

	def enter_scope(self) -> None:
		self.scopes.append([])

	def exit_scope(self, point: int) -> List[str]:
		"""Pop the innermost block scope; returns the roots whose storage ends."""
		if len(self.scopes) == 1:
			self._malformed(point, None, "scope exit without a matching scope entry")
		return self.scopes.pop()

	def discard(self, roots: Iterable[str]) -> None:
		"""Drop all entries (and declarations) of the given roots."""
		dead = set(roots)
		for place in [p for p in self.entries if p.base in dead]:
			del self.entries[place]
		for name in dead:
			self.types.pop(name, None)

	def is_declared(self, place: Place) -> bool:
		return place.base in self.types

	def require_declared(self, place: Place, point: int) -> None:
		if place.base not in self.types:
			self._malformed(point, place, f"'{place.base}' is used before it is declared")

	def is_local_storage(self, place: Place) -> bool:
		"""True when the storage belongs to this function (params included)."""
		if any(isinstance(p, DerefProj) for p in place.projections):
			return False
		return place.base in self.types

	# -- types ----------------------------------------------------------------

	def type_of(self, place: Place) -> Optional[TypeRef]:
		ty: Optional[TypeRef] = self.types.get(place.base)
		for proj in place.projections:
			if ty is None:
				return None
			if isinstance(proj, DerefProj):
				ty = ty.pointee() if ty.is_ref else None
			elif isinstance(proj, IndexProj):
				if ty.is_ref or ty.name not in self.config.container_types or not ty.args:
					return None
				ty = ty.args[0]
			elif isinstance(proj, FieldProj):
				return None
		return ty

	def is_copy(self, place: Place) -> bool:
		"""Duplication semantics of the value stored at `place`."""
		ty = self.type_of(place)
		if ty is None:
			return False
		if ty.ref == "shared":
			return True
		if ty.ref == "exclusive":
			return False
		return ty.name in self.config.copy_types

	def declared_as_reference(self, place: Place) -> bool:
		ty = self.type_of(place)
		return ty is not None and ty.is_ref

	# -- state queries --------------------------------------------------------

	def state_of(self, place: Place) -> PlaceState:
		for prefix in place.prefixes():
			entry = self.entries.get(prefix)
			if entry is not None and entry.ownership is not PlaceState.OWNED:
				return entry.ownership
		if self._moved_under(place.container_prefix()) is not None:
			return PlaceState.MOVED
		entry = self.entries.get(place)
		return entry.state if entry is not None else PlaceState.OWNED

	def shared_count(self, place: Place) -> int:
		entry = self.entries.get(place)
		return len(entry.shared) if entry is not None else 0

	def check_usable(self, place: Place, point: int) -> None:
		"""
		Rule 1: the place, its prefixes and anything moved under the container
		it reaches must be valid.
		"""
		for prefix in place.prefixes():
			entry = self.entries.get(prefix)
			if entry is None:
				continue
			if entry.ownership is PlaceState.MOVED:
				self._fail(RuleTag.USE_OF_MOVED, point, place, move_point=entry.moved_at, moved_place=prefix)
			if entry.ownership is PlaceState.UNINIT:
				self._fail(RuleTag.USE_OF_UNINITIALIZED, point, place)
		moved = self._moved_under(place.container_prefix())
		if moved is not None:
			self._fail(
				RuleTag.USE_OF_MOVED,
				point,
				place,
				move_point=self.entries[moved].moved_at,
				moved_place=moved,
			)

	# -- transitions ----------------------------------------------------------

	def read(self, place: Place, point: int, *, live_loans: Iterable["Loan"] = ()) -> None:
		self.check_usable(place, point)
		for loan in live_loans:
			if loan.is_exclusive:
				self._fail(RuleTag.USE_WHILE_EXCLUSIVELY_BORROWED, point, place, loan=loan)

	def move_out(self, place: Place, point: int, *, live_loans: Iterable["Loan"] = ()) -> None:
		self.check_usable(place, point)
		for loan in live_loans:
			self._fail(RuleTag.MOVE_WHILE_BORROWED, point, place, loan=loan)
		entry = self._entry(place)
		entry.ownership = PlaceState.MOVED
		entry.moved_at = point

	def initialize(self, place: Place, point: int) -> None:
		"""First assignment of a declared, uninitialized root."""
		entry = self.entries.get(place)
		if entry is None or entry.ownership is not PlaceState.UNINIT:
			self._malformed(point, place, "initialize of a place that is not uninitialized")
		entry.ownership = PlaceState.OWNED

	def reinitialize(self, place: Place, point: int, *, live_loans: Iterable["Loan"] = ()) -> None:
		"""
		Plain reassignment: requires zero live loans on the place and resets it
		(and everything under it) to Owned, ending any Moved status.
		"""
		for prefix in place.strict_prefixes():
			entry = self.entries.get(prefix)
			if entry is None:
				continue
			if entry.ownership is PlaceState.MOVED:
				self._fail(RuleTag.USE_OF_MOVED, point, place, move_point=entry.moved_at, moved_place=prefix)
			if entry.ownership is PlaceState.UNINIT:
				self._fail(RuleTag.USE_OF_UNINITIALIZED, point, place, detail="assignment into part of an uninitialized place")
		for loan in live_loans:
			self._fail(RuleTag.MUTATE_WHILE_BORROWED, point, place, loan=loan)
		for other in [p for p in self.entries if place.is_prefix_of(p)]:
			entry = self.entries[other]
			entry.ownership = PlaceState.OWNED
			entry.moved_at = None
			if other != place and entry.is_idle():
				del self.entries[other]
		self._entry(place).ownership = PlaceState.OWNED

	# -- loan back-references -------------------------------------------------

	def attach_loan(self, loan: "Loan") -> None:
		if not self.is_local_storage(loan.target):
			return
		entry = self._entry(loan.target)
		if loan.is_exclusive:
			entry.exclusive = loan.id
		else:
			entry.shared.add(loan.id)

	def detach_loan(self, loan: "Loan") -> None:
		entry = self.entries.get(loan.target)
		if entry is None:
			return
		entry.shared.discard(loan.id)
		if entry.exclusive == loan.id:
			entry.exclusive = None
		if not loan.target.is_root and entry.is_idle():
			del self.entries[loan.target]

	# -- helpers --------------------------------------------------------------

	def _entry(self, place: Place) -> PlaceEntry:
		entry = self.entries.get(place)
		if entry is None:
			entry = PlaceEntry()
			self.entries[place] = entry
		return entry

	def _moved_under(self, container: Place) -> Optional[Place]:
		"""First moved place strictly under `container`, in entry order."""
		for place, entry in self.entries.items():
			if entry.ownership is PlaceState.MOVED and place != container and container.is_prefix_of(place):
				return place
		return None

	def _fail(
		self,
		rule: RuleTag,
		point: int,
		place: Optional[Place],
		*,
		loan: Optional["Loan"] = None,
		move_point: Optional[int] = None,
		moved_place: Optional[Place] = None,
		detail: Optional[str] = None,
	) -> NoReturn:
		raise BorrowViolation(
			ConflictRecord(
				function=self.function,
				rule=rule,
				point=point,
				place=place,
				loan_point=loan.origin if loan is not None else None,
				loan_kind=loan.kind.value if loan is not None else None,
				loan_borrower=loan.borrower if loan is not None else None,
				move_point=move_point,
				moved_place=moved_place,
				detail=detail,
			)
		)

	def _malformed(self, point: int, place: Optional[Place], detail: str) -> NoReturn:
		raise MalformedProgramError(
			ConflictRecord(function=self.function, rule=RuleTag.MALFORMED_PROGRAM, point=point, place=place, detail=detail)
		)


__all__ = ["PlaceEntry", "PlaceState", "PlaceTable"]
