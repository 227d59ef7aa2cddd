# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Loans and their liveness.

Two halves:

`LivenessCollector` runs before the rule walk. It makes a forward pass over a
function recording every loan site (who borrows what, and which existing loan
the new one reads through) and the last use of each borrower definition, then
a backward pass that pushes each loan's end point up its reborrow chain:

	1: borrow r1 = &s        loan A (s)
	2: borrow r2 = &r1       loan B (r1), parent A
	3: borrow r3 = &r2       loan C (r2), parent B
	4: assign s              <- A must already be known live here
	5: deref r3              last use of r3: C.end = 5 => B.end = 5 => A.end = 5

A single forward pass cannot see at point 4 that the use at 5 keeps A alive;
the backward propagation is what makes the later conflict check exact.

`LoanTracker` is the walk-time half: it opens the precomputed loans at their
creation points, rejects incompatible overlapping loans, and closes loans once
their live range has passed (or their borrower's scope ends).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from ownck.place_table import PlaceTable
from ownck.places import Place, places_overlap
from ownck.program.model import ArgMode, Function, OpKind, Operation
from ownck.rules import BorrowViolation, ConflictRecord, RuleTag, VerifierInternalError


def caller_place(param: str) -> Place:
	"""Opaque storage a reference parameter points at; never local, never overlaps `param`."""
	return Place(f"<caller:{param}>")


def entry_point(fn: Function) -> int:
	"""Program point at which parameters (and their referents) come into existence."""
	return fn.operations[0].point - 1 if fn.operations else 0


class LoanKind(str, Enum):
	SHARED = "shared"
	EXCLUSIVE = "exclusive"


@dataclass(frozen=True)
class Loan:
	"""
	One borrow with its final live range [origin, end].

	`target` is the borrowed place after resolving dereferences (`&*r` borrows
	whatever `r` borrows); `via` is the place as written in the operation.
	`parent` is the id of the loan this one reads through, if any.
	"""

	id: int
	borrower: Optional[Place]  # None for call-argument temporaries
	target: Place
	kind: LoanKind
	origin: int
	end: int
	via: Place
	parent: Optional[int] = None
	temporary: bool = False

	@property
	def is_exclusive(self) -> bool:
		return self.kind is LoanKind.EXCLUSIVE

	def live_at(self, point: int) -> bool:
		return self.origin <= point <= self.end


@dataclass
class _Site:
	"""Loan under construction during collection (end not yet known)."""

	id: int
	borrower: Optional[Place]
	target: Place
	kind: LoanKind
	origin: int
	via: Place
	parent: Optional[int]
	temporary: bool = False


@dataclass
class LivenessFacts:
	"""Finalized loans of one function, indexed by creation point."""

	loans: Dict[int, Loan] = field(default_factory=dict)
	by_point: Dict[int, Tuple[Loan, ...]] = field(default_factory=dict)

	def created_at(self, point: int) -> Tuple[Loan, ...]:
		return self.by_point.get(point, ())

	def ancestors(self, loan: Loan) -> Iterator[Loan]:
		parent = loan.parent
		while parent is not None:
			anc = self.loans[parent]
			yield anc
			parent = anc.parent

	def chain_ids(self, loan: Loan) -> Set[int]:
		return {anc.id for anc in self.ancestors(loan)}


class LivenessCollector:
	"""Forward collection of loan sites and last uses, then backward propagation."""

	def __init__(self) -> None:
		self._sites: List[_Site] = []
		self._defs: Dict[Place, int] = {}
		self._last_use: Dict[int, int] = {}
		self._scopes: List[List[str]] = [[]]

	def collect(self, fn: Function) -> LivenessFacts:
		start = entry_point(fn)
		for param in fn.params:
			self._scopes[0].append(param.name)
			if param.ty.ref is None:
				continue
			# The caller lends the referent for the whole call; rebinding the
			# parameter later only kills this definition, not the caller's storage.
			kind = LoanKind.SHARED if param.ty.ref == "shared" else LoanKind.EXCLUSIVE
			holder = Place(param.name)
			self._define(holder, caller_place(param.name), kind, start, holder.deref(), None)
		for op in fn.operations:
			self._visit(op)
		return self._finalize()

	def extend_liveness(self, place: Place, use_point: int) -> None:
		"""Record a use of `place`: every borrower definition it touches is live here."""
		for borrower, site_id in self._defs.items():
			if places_overlap(borrower, place):
				prev = self._last_use.get(site_id, use_point)
				self._last_use[site_id] = max(prev, use_point)

	# -- forward pass ---------------------------------------------------------

	def _visit(self, op: Operation) -> None:
		p = op.point
		kind = op.kind
		if kind is OpKind.DECLARE:
			if op.target is not None:
				self._kill(op.target)
				self._scopes[-1].append(op.target.base)
		elif kind is OpKind.ASSIGN:
			for src in op.sources:
				self.extend_liveness(src, p)
			self._write(op.target, p)
		elif kind is OpKind.MOVE_ASSIGN:
			src = op.source
			if src is None:
				return
			self.extend_liveness(src, p)
			parent = self._defs.get(src)
			self._write(op.target, p)
			if op.target is None:
				return
			if parent is not None:
				par = self._sites[parent]
				self._define(op.target, par.target, par.kind, p, src, parent)
		elif kind in (OpKind.BORROW_SHARED, OpKind.BORROW_EXCLUSIVE):
			src = op.source
			if src is None or op.target is None:
				return
			self.extend_liveness(src, p)
			target, parent = self._resolve(src)
			loan_kind = LoanKind.SHARED if kind is OpKind.BORROW_SHARED else LoanKind.EXCLUSIVE
			self._write(op.target, p)
			self._define(op.target, target, loan_kind, p, src, parent)
		elif kind in (OpKind.DEREF_USE, OpKind.USE, OpKind.RETURN):
			for src in op.sources:
				self.extend_liveness(src, p)
		elif kind is OpKind.CALL:
			for arg in op.args:
				self.extend_liveness(arg.place, p)
				if arg.mode is ArgMode.VALUE:
					continue
				target, parent = self._resolve(arg.place)
				loan_kind = LoanKind.SHARED if arg.mode is ArgMode.SHARED else LoanKind.EXCLUSIVE
				self._new_site(None, target, loan_kind, p, arg.place, parent, temporary=True)
			self._write(op.target, p)
		elif kind is OpKind.ENTER_SCOPE:
			self._scopes.append([])
		elif kind is OpKind.EXIT_SCOPE:
			if len(self._scopes) > 1:
				dead = set(self._scopes.pop())
				for borrower in [b for b in self._defs if b.base in dead]:
					del self._defs[borrower]

	def _resolve(self, source: Place, below: Optional[int] = None) -> Tuple[Place, Optional[int]]:
		"""
		Resolve a borrowed place to (target, parent loan id).

		`&*r` / `&(*r).f` borrow through r's loan: the target is r's target with
		the remaining projections and the parent is r's loan. `&r` where r itself
		holds a reference borrows r, with r's loan as parent (reborrow chain).

		Nested dereferences are only followed into strictly older sites (`below`),
		so resolution terminates even when a borrower is redefined through itself.
		"""
		split = source.deref_split()
		if split is None:
			return source, self._defs.get(source)
		base, rest = split
		site_id = self._defs.get(base)
		if site_id is None or (below is not None and site_id >= below):
			return source, None
		site = self._sites[site_id]
		inner = Place(site.target.base, site.target.projections + rest)
		if inner.deref_split() is not None:
			deeper, deeper_parent = self._resolve(inner, below=site_id)
			if deeper_parent is not None:
				return deeper, deeper_parent
		return inner, site_id

	def _write(self, target: Optional[Place], point: int) -> None:
		if target is None:
			return
		split = target.deref_split()
		if split is not None:
			# Writing through a reference uses the reference.
			self.extend_liveness(split[0], point)
			return
		self._kill(target)

	def _kill(self, place: Place) -> None:
		for borrower in [b for b in self._defs if place.is_prefix_of(b)]:
			del self._defs[borrower]

	def _define(
		self,
		borrower: Place,
		target: Place,
		kind: LoanKind,
		point: int,
		via: Place,
		parent: Optional[int],
	) -> None:
		site_id = self._new_site(borrower, target, kind, point, via, parent)
		self._defs[borrower] = site_id

	def _new_site(
		self,
		borrower: Optional[Place],
		target: Place,
		kind: LoanKind,
		point: int,
		via: Place,
		parent: Optional[int],
		*,
		temporary: bool = False,
	) -> int:
		site_id = len(self._sites)
		self._sites.append(_Site(site_id, borrower, target, kind, point, via, parent, temporary))
		if parent is not None:
			# Creating a loan through another reads through it.
			prev = self._last_use.get(parent, point)
			self._last_use[parent] = max(prev, point)
		return site_id

	# -- backward pass --------------------------------------------------------

	def _finalize(self) -> LivenessFacts:
		ends: Dict[int, int] = {}
		for site in self._sites:
			if site.temporary:
				ends[site.id] = site.origin
			else:
				ends[site.id] = max(site.origin, self._last_use.get(site.id, site.origin))
		# Parents are always created before their children, so walking ids
		# downward finalizes every child before it is pushed into its parent.
		for site in reversed(self._sites):
			if site.parent is not None:
				ends[site.parent] = max(ends[site.parent], ends[site.id])
		facts = LivenessFacts()
		grouped: Dict[int, List[Loan]] = {}
		for site in self._sites:
			loan = Loan(
				id=site.id,
				borrower=site.borrower,
				target=site.target,
				kind=site.kind,
				origin=site.origin,
				end=ends[site.id],
				via=site.via,
				parent=site.parent,
				temporary=site.temporary,
			)
			facts.loans[loan.id] = loan
			grouped.setdefault(loan.origin, []).append(loan)
		facts.by_point = {point: tuple(loans) for point, loans in grouped.items()}
		return facts


def compute_liveness(fn: Function) -> LivenessFacts:
	return LivenessCollector().collect(fn)


class LoanTracker:
	"""
	Open-loan bookkeeping for one function walk.

	Loans are opened exactly at their creation point with the live range the
	collector computed, so the overlap check at `open_loan` sees every loan
	that will still be in use later, not just the ones used so far.
	"""

	def __init__(self, function: str, facts: LivenessFacts, places: PlaceTable) -> None:
		self.function = function
		self.facts = facts
		self.places = places
		self.open: Dict[int, Loan] = {}
		self._opened: Set[int] = set()
		self._released: Set[int] = set()

	def open_entry_loans(self, point: int) -> List[Loan]:
		"""Open the loans reference parameters hold on caller storage at function entry."""
		entry = self.pending_at(point)
		for loan in entry:
			self._opened.add(loan.id)
			self.open[loan.id] = loan
		return entry

	def pending_at(self, point: int) -> List[Loan]:
		return [ln for ln in self.facts.created_at(point) if ln.id not in self._opened]

	def open_loan(self, borrower: Optional[Place], source: Place, kind: LoanKind, point: int) -> Loan:
		"""
		Open the loan recorded for `borrower = &source` at `point`.

		Fails with ConflictingBorrowKind when an open loan overlapping the target
		is incompatible: exclusive vs anything, or shared vs exclusive. Loans the
		new one reads through (its reborrow ancestors) never conflict with it.
		"""
		loan = self._recorded(borrower, source, kind, point)
		chain = self.facts.chain_ids(loan)
		for other in self.open.values():
			if other.id in chain or not places_overlap(other.target, loan.target):
				continue
			if loan.is_exclusive or other.is_exclusive:
				raise BorrowViolation(
					ConflictRecord(
						function=self.function,
						rule=RuleTag.CONFLICTING_BORROW_KIND,
						point=point,
						place=loan.target,
						loan_point=other.origin,
						loan_kind=other.kind.value,
						loan_borrower=other.borrower,
						detail=f"cannot take {loan.kind.value} borrow of '{loan.target}' while a {other.kind.value} borrow is live",
					)
				)
		self._opened.add(loan.id)
		self.open[loan.id] = loan
		self.places.attach_loan(loan)
		return loan

	def live_overlapping(self, place: Place, point: int, *, strict: bool = False) -> List[Loan]:
		"""Open loans on storage overlapping `place` still live at (or, strict, after) `point`."""
		out: List[Loan] = []
		for loan in self.open.values():
			if not places_overlap(loan.target, place):
				continue
			if loan.end > point or (not strict and loan.end == point):
				out.append(loan)
		return out

	def close_expired_loans(self, point: int, *, inclusive: bool = False) -> List[Loan]:
		"""Close loans whose live range ends before `point` (or at it, when inclusive)."""
		expired = [ln for ln in self.open.values() if ln.end < point or (inclusive and ln.end == point)]
		self._close(expired)
		return expired

	def close_borrowers(self, roots: Iterable[str]) -> List[Loan]:
		"""Close every loan whose borrower's storage ends (scope exit)."""
		dead = set(roots)
		gone = [ln for ln in self.open.values() if ln.borrower is not None and ln.borrower.base in dead]
		self._close(gone)
		return gone

	def rebind(self, place: Place, point: int) -> None:
		"""
		A fresh value was written into `place`: loans it held before `point` are
		no longer reachable through it. They stay open while reborrows need them.
		"""
		for loan in self.open.values():
			if loan.borrower is not None and place.is_prefix_of(loan.borrower) and loan.origin < point:
				self._released.add(loan.id)

	def held_by(self, place: Place) -> List[Loan]:
		"""Open loans stored in `place` or anywhere under it."""
		return [ln for ln in self.open.values() if self._holds(ln) and place.is_prefix_of(ln.borrower)]

	def holding(self, place: Place, extra: Iterable[Loan] = ()) -> List[Loan]:
		"""Loans held by exactly `place`; `extra` adds loans closed earlier at this point."""
		return [ln for ln in [*self.open.values(), *extra] if self._holds(ln) and ln.borrower == place]

	def holds_reference(self, place: Place) -> bool:
		return bool(self.holding(place))

	def reborrows_of(self, loan: Loan) -> List[Loan]:
		"""Open loans that read through `loan`."""
		return [ln for ln in self.open.values() if ln.id != loan.id and loan.id in self.facts.chain_ids(ln)]

	def _recorded(self, borrower: Optional[Place], source: Place, kind: LoanKind, point: int) -> Loan:
		for loan in self.facts.created_at(point):
			if loan.id in self._opened:
				continue
			if loan.borrower == borrower and loan.via == source and loan.kind is kind:
				return loan
		raise VerifierInternalError(f"no loan recorded for {borrower} = &{source} at point {point} (collector/walk mismatch)")

	def _holds(self, loan: Loan) -> bool:
		return loan.borrower is not None and loan.id not in self._released

	def _close(self, loans: Iterable[Loan]) -> None:
		for loan in loans:
			self.open.pop(loan.id, None)
			self.places.detach_loan(loan)


__all__ = [
	"LivenessCollector",
	"LivenessFacts",
	"Loan",
	"LoanKind",
	"LoanTracker",
	"caller_place",
	"compute_liveness",
	"entry_point",
]
