# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Place representation: the "where" of values.

A place is a root variable plus a path of projections, so `v[0].name` is base
`v` with projections `[0]`, `.name`. Places carry no state; the Place Table
and Loan Tracker key their bookkeeping on them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, Optional, Tuple


class IndexKind(Enum):
	"""Coarse-grained index classification to keep Place hashable."""

	ANY = auto()       # Unknown / non-constant index; conservatively overlaps.
	CONST = auto()     # Known constant index.


@dataclass(frozen=True)
class FieldProj:
	"""Field access projection (e.g., `.name`)."""

	name: str

	def __str__(self) -> str:
		return f".{self.name}"


@dataclass(frozen=True)
class IndexProj:
	"""
	Index projection (e.g., `[i]`).

	`value` is only set for CONST indices; `label` keeps the index variable name
	for ANY indices so rendering round-trips.
	"""

	kind: IndexKind
	value: Optional[int] = None
	label: Optional[str] = field(default=None, compare=False)

	@classmethod
	def const(cls, value: int) -> "IndexProj":
		return cls(IndexKind.CONST, value)

	@classmethod
	def any(cls, label: Optional[str] = None) -> "IndexProj":
		return cls(IndexKind.ANY, None, label)

	def __str__(self) -> str:
		if self.kind is IndexKind.CONST:
			return f"[{self.value}]"
		return f"[{self.label or '_'}]"


@dataclass(frozen=True)
class DerefProj:
	"""Dereference projection (`*p`): the storage a reference points at."""

	def __str__(self) -> str:
		return "*"


Projection = FieldProj | IndexProj | DerefProj


@dataclass(frozen=True)
class Place:
	"""
	A borrowable/moveable storage location.

	`base` names a declared variable (or parameter). Projections are applied
	left to right.
	"""

	base: str
	projections: Tuple[Projection, ...] = field(default_factory=tuple)

	def with_projection(self, proj: Projection) -> "Place":
		"""Return a new Place with an additional projection appended."""
		return Place(self.base, self.projections + (proj,))

	def deref(self) -> "Place":
		return self.with_projection(DerefProj())

	def dot(self, name: str) -> "Place":
		return self.with_projection(FieldProj(name))

	def index(self, value: int) -> "Place":
		return self.with_projection(IndexProj.const(value))

	@property
	def root(self) -> "Place":
		return Place(self.base)

	@property
	def is_root(self) -> bool:
		return not self.projections

	def prefixes(self) -> Iterator["Place"]:
		"""Yield every prefix from the root up to and including self."""
		for n in range(len(self.projections) + 1):
			yield Place(self.base, self.projections[:n])

	def strict_prefixes(self) -> Iterator["Place"]:
		for n in range(len(self.projections)):
			yield Place(self.base, self.projections[:n])

	def is_prefix_of(self, other: "Place") -> bool:
		if self.base != other.base or len(self.projections) > len(other.projections):
			return False
		return other.projections[: len(self.projections)] == self.projections

	def deref_split(self) -> Optional[Tuple["Place", Tuple[Projection, ...]]]:
		"""
		Split at the first dereference: `(*r).x` -> (`r`, (`.x`,)).

		Returns None when the place does not go through a reference.
		"""
		for idx, proj in enumerate(self.projections):
			if isinstance(proj, DerefProj):
				return Place(self.base, self.projections[:idx]), self.projections[idx + 1 :]
		return None

	def container_prefix(self) -> "Place":
		"""
		The place an access actually reaches for use-after-move purposes.

		Indexing borrows the whole container, so `v[0].name` reaches `v`;
		pure field paths reach themselves.
		"""
		for idx, proj in enumerate(self.projections):
			if isinstance(proj, IndexProj):
				return Place(self.base, self.projections[:idx])
		return self

	def __str__(self) -> str:
		text = self.base
		derefs = 0
		for proj in self.projections:
			if isinstance(proj, DerefProj):
				text = f"*{text}"
				derefs += 1
				continue
			if derefs:
				text = f"({text})"
				derefs = 0
			text += str(proj)
		return text


def places_overlap(a: Place, b: Place) -> bool:
	"""
	Return True when two places may refer to overlapping storage.

	Rules:
	- Different bases never overlap.
	- Prefix overlap counts: `x` overlaps `x.field` and `x[0]`.
	- Field projections are disjoint when the field names differ.
	- CONST vs CONST indices are disjoint when the values differ; ANY overlaps
	  every index.
	- Any other projection-kind mismatch at the same depth overlaps.
	"""
	if a.base != b.base:
		return False
	for pa, pb in zip(a.projections, b.projections):
		if pa == pb:
			continue
		if isinstance(pa, FieldProj) and isinstance(pb, FieldProj):
			return False
		if isinstance(pa, IndexProj) and isinstance(pb, IndexProj):
			if pa.kind is IndexKind.CONST and pb.kind is IndexKind.CONST and pa.value != pb.value:
				return False
			return True
		return True
	# One place is a prefix of the other (or identical).
	return True


__all__ = [
	"DerefProj",
	"FieldProj",
	"IndexKind",
	"IndexProj",
	"Place",
	"Projection",
	"places_overlap",
]
