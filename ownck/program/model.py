# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Program Model: a control-flow-ordered sequence of primitive operations per
function, each tagged with a program point.

This is the verifier's input contract. The model is immutable and shared
read-only between concurrent function walks; the verifier assumes it came from
a well-formed lowering and reports contract violations as MalformedProgram
rather than repairing them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

from ownck.core.span import Span
from ownck.places import Place


class OpKind(str, Enum):
	"""Closed set of operation kinds; the rule engine matches it exhaustively."""

	DECLARE = "declare"
	ASSIGN = "assign"
	MOVE_ASSIGN = "move"
	BORROW_SHARED = "borrow_shared"
	BORROW_EXCLUSIVE = "borrow_exclusive"
	DEREF_USE = "deref"
	USE = "use"
	CALL = "call"
	RETURN = "return"
	ENTER_SCOPE = "enter"
	EXIT_SCOPE = "exit"


class ArgMode(str, Enum):
	"""How a call argument is passed."""

	VALUE = "value"
	SHARED = "shared"
	EXCLUSIVE = "exclusive"


@dataclass(frozen=True)
class TypeRef:
	"""
	Declared type of a place.

	`ref` is None for owned values, "shared" for `&T` and "exclusive" for
	`&mut T`; `args` holds generic arguments (`Vec<String>` -> args=(String,)).
	"""

	name: str
	args: Tuple["TypeRef", ...] = ()
	ref: Optional[str] = None

	@classmethod
	def shared_ref(cls, inner: "TypeRef") -> "TypeRef":
		return cls(inner.name, inner.args, "shared")

	@classmethod
	def exclusive_ref(cls, inner: "TypeRef") -> "TypeRef":
		return cls(inner.name, inner.args, "exclusive")

	@property
	def is_ref(self) -> bool:
		return self.ref is not None

	def pointee(self) -> "TypeRef":
		return TypeRef(self.name, self.args)

	def __str__(self) -> str:
		text = self.name
		if self.args:
			text += "<" + ", ".join(str(a) for a in self.args) + ">"
		if self.ref == "shared":
			return f"&{text}"
		if self.ref == "exclusive":
			return f"&mut {text}"
		return text


@dataclass(frozen=True)
class CallArg:
	place: Place
	mode: ArgMode = ArgMode.VALUE

	def __str__(self) -> str:
		if self.mode is ArgMode.SHARED:
			return f"&{self.place}"
		if self.mode is ArgMode.EXCLUSIVE:
			return f"&mut {self.place}"
		return str(self.place)


@dataclass(frozen=True)
class Operation:
	"""
	One lowered operation.

	Field usage by kind:
	  DECLARE            target, ty
	  ASSIGN             target, sources (read, never moved)
	  MOVE_ASSIGN        target, sources[0]
	  BORROW_*           target (the borrower), sources[0] (the borrowed place)
	  DEREF_USE / USE    sources[0]
	  CALL               callee, args, optional target (the result)
	  RETURN             optional sources[0]
	  ENTER/EXIT_SCOPE   nothing
	"""

	point: int
	kind: OpKind
	target: Optional[Place] = None
	sources: Tuple[Place, ...] = ()
	args: Tuple[CallArg, ...] = ()
	callee: Optional[str] = None
	ty: Optional[TypeRef] = None
	span: Span = field(default_factory=Span, compare=False)

	@property
	def source(self) -> Optional[Place]:
		return self.sources[0] if self.sources else None

	def __str__(self) -> str:
		k = self.kind
		if k is OpKind.DECLARE:
			return f"declare {self.target}: {self.ty}"
		if k is OpKind.ASSIGN:
			if self.sources:
				return f"assign {self.target} = " + ", ".join(str(s) for s in self.sources)
			return f"assign {self.target}"
		if k is OpKind.MOVE_ASSIGN:
			return f"move {self.target} = {self.source}"
		if k is OpKind.BORROW_SHARED:
			return f"borrow {self.target} = &{self.source}"
		if k is OpKind.BORROW_EXCLUSIVE:
			return f"borrow {self.target} = &mut {self.source}"
		if k in (OpKind.DEREF_USE, OpKind.USE):
			return f"{k.value} {self.source}"
		if k is OpKind.CALL:
			text = f"call {self.callee}(" + ", ".join(str(a) for a in self.args) + ")"
			return f"{text} -> {self.target}" if self.target is not None else text
		if k is OpKind.RETURN:
			return f"return {self.source}" if self.source is not None else "return"
		return k.value if isinstance(k, OpKind) else str(k)


@dataclass(frozen=True)
class Param:
	name: str
	ty: TypeRef


@dataclass(frozen=True)
class Function:
	name: str
	params: Tuple[Param, ...] = ()
	operations: Tuple[Operation, ...] = ()

	def __iter__(self) -> Iterator[Operation]:
		return iter(self.operations)


@dataclass(frozen=True)
class Program:
	"""Ordered mapping of function name -> Function."""

	functions: Tuple[Function, ...] = ()

	def by_name(self) -> Dict[str, Function]:
		return {fn.name: fn for fn in self.functions}

	def __iter__(self) -> Iterator[Function]:
		return iter(self.functions)

	def __len__(self) -> int:
		return len(self.functions)


__all__ = ["ArgMode", "CallArg", "Function", "Operation", "OpKind", "Param", "Program", "TypeRef"]
