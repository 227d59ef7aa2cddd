# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Shared helpers for tests that build Program Model inputs by hand.

`OpsBuilder` hands out monotonically increasing program points so test data
reads like a lowered function body; places and types are written in listing
syntax (`"v[0]"`, `"*r"`, `"&mut Vec<String>"`) and parsed with the real
loader so tests exercise the same place model the loader produces.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, Union

from ownck.places import Place
from ownck.program.loader import parse_program
from ownck.program.model import ArgMode, CallArg, Function, Operation, OpKind, Param, Program, TypeRef

PlaceLike = Union[str, Place]


def place(text: PlaceLike) -> Place:
	"""Parse a place written in listing syntax (`v[0].name`, `*r`)."""
	if isinstance(text, Place):
		return text
	fn = parse_program(f"fn _p() {{ 0: use {text} }}").functions[0]
	return fn.operations[0].sources[0]


def type_ref(text: str) -> TypeRef:
	fn = parse_program(f"fn _t(x: {text}) {{ }}").functions[0]
	return fn.params[0].ty


def shared(p: PlaceLike) -> CallArg:
	return CallArg(place(p), ArgMode.SHARED)


def exclusive(p: PlaceLike) -> CallArg:
	return CallArg(place(p), ArgMode.EXCLUSIVE)


def value(p: PlaceLike) -> CallArg:
	return CallArg(place(p), ArgMode.VALUE)


class OpsBuilder:
	"""Fluent builder for a single Function; every method returns self."""

	def __init__(self, name: str = "main", *, params: Sequence[Tuple[str, str]] = (), start: int = 0) -> None:
		self.name = name
		self.params = tuple(Param(pname, type_ref(pty)) for pname, pty in params)
		self.ops: List[Operation] = []
		self._next = start

	@property
	def last_point(self) -> int:
		return self._next - 1

	def _add(self, kind: OpKind, **kw) -> "OpsBuilder":
		self.ops.append(Operation(self._next, kind, **kw))
		self._next += 1
		return self

	def declare(self, name: str, ty: str = "String") -> "OpsBuilder":
		return self._add(OpKind.DECLARE, target=place(name), ty=type_ref(ty))

	def assign(self, target: PlaceLike, *sources: PlaceLike) -> "OpsBuilder":
		return self._add(OpKind.ASSIGN, target=place(target), sources=tuple(place(s) for s in sources))

	def move(self, target: PlaceLike, source: PlaceLike) -> "OpsBuilder":
		return self._add(OpKind.MOVE_ASSIGN, target=place(target), sources=(place(source),))

	def borrow(self, target: PlaceLike, source: PlaceLike) -> "OpsBuilder":
		return self._add(OpKind.BORROW_SHARED, target=place(target), sources=(place(source),))

	def borrow_mut(self, target: PlaceLike, source: PlaceLike) -> "OpsBuilder":
		return self._add(OpKind.BORROW_EXCLUSIVE, target=place(target), sources=(place(source),))

	def deref(self, p: PlaceLike) -> "OpsBuilder":
		return self._add(OpKind.DEREF_USE, sources=(place(p),))

	def use(self, p: PlaceLike) -> "OpsBuilder":
		return self._add(OpKind.USE, sources=(place(p),))

	def call(self, callee: str, *args: Union[CallArg, PlaceLike], result: Optional[PlaceLike] = None) -> "OpsBuilder":
		call_args = tuple(a if isinstance(a, CallArg) else value(a) for a in args)
		target = place(result) if result is not None else None
		return self._add(OpKind.CALL, callee=callee, args=call_args, target=target)

	def ret(self, p: Optional[PlaceLike] = None) -> "OpsBuilder":
		return self._add(OpKind.RETURN, sources=(place(p),) if p is not None else ())

	def enter(self) -> "OpsBuilder":
		return self._add(OpKind.ENTER_SCOPE)

	def exit(self) -> "OpsBuilder":
		return self._add(OpKind.EXIT_SCOPE)

	def build(self) -> Function:
		return Function(self.name, self.params, tuple(self.ops))


def program_of(*fns: Function) -> Program:
	return Program(tuple(fns))


__all__ = ["OpsBuilder", "exclusive", "place", "program_of", "shared", "type_ref", "value"]
