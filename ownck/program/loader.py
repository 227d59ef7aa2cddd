# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Program Model adapter: builds `Program` values from the textual operation
listing emitted by the lowering stage (see `grammar.lark`).

The loader is purely structural. It does not check that places were declared
or that program points increase; those are verifier-side MalformedProgram
conditions so that programs built in memory get the same treatment.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from ownck.core.span import Span
from ownck.places import FieldProj, IndexProj, Place, Projection
from ownck.program.model import ArgMode, CallArg, Function, Operation, OpKind, Param, Program, TypeRef

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)

_SIMPLE_KINDS = {
	"deref_use": OpKind.DEREF_USE,
	"use": OpKind.USE,
	"enter_scope": OpKind.ENTER_SCOPE,
	"exit_scope": OpKind.EXIT_SCOPE,
	"ret": OpKind.RETURN,
}


class ProgramSyntaxError(ValueError):
	"""Raised when an operation listing cannot be parsed."""

	def __init__(self, message: str, *, line: Optional[int] = None, column: Optional[int] = None) -> None:
		self.line = line
		self.column = column
		where = f"{line}:{column}: " if line is not None else ""
		super().__init__(f"{where}{message}")


def parse_program(source: str, *, file: Optional[str] = None) -> Program:
	"""Parse a listing into a Program; raises ProgramSyntaxError on bad input."""
	try:
		tree = _PARSER.parse(source)
	except UnexpectedInput as err:
		raise ProgramSyntaxError(
			f"unexpected input in operation listing: {err.get_context(source).strip()!r}",
			line=getattr(err, "line", None),
			column=getattr(err, "column", None),
		) from err
	return _build_program(tree, file=file)


def load_program(path: Path) -> Program:
	path = Path(path)
	return parse_program(path.read_text(encoding="utf-8"), file=str(path))


def _build_program(tree: Tree, *, file: Optional[str]) -> Program:
	functions: List[Function] = []
	seen: set[str] = set()
	for child in tree.children:
		fn = _build_function(child, file=file)
		if fn.name in seen:
			raise ProgramSyntaxError(f"duplicate function '{fn.name}'", line=child.meta.line, column=child.meta.column)
		seen.add(fn.name)
		functions.append(fn)
	return Program(tuple(functions))


def _build_function(tree: Tree, *, file: Optional[str]) -> Function:
	name_tok, *rest = tree.children
	params: List[Param] = []
	ops: List[Operation] = []
	for child in rest:
		if child.data == "param":
			pname, pty = child.children
			params.append(Param(str(pname), _build_type(pty)))
		else:
			ops.append(_build_op(child, file=file))
	return Function(str(name_tok), tuple(params), tuple(ops))


def _build_op(tree: Tree, *, file: Optional[str]) -> Operation:
	point_tok, stmt = tree.children
	point = int(point_tok)
	span = Span.from_meta(tree.meta, file=file)
	kind_name = stmt.data
	kids = stmt.children

	if kind_name == "declare":
		return Operation(point, OpKind.DECLARE, target=_build_place(kids[0]), ty=_build_type(kids[1]), span=span)
	if kind_name == "assign":
		places = [_build_place(k) for k in kids]
		return Operation(point, OpKind.ASSIGN, target=places[0], sources=tuple(places[1:]), span=span)
	if kind_name == "move_assign":
		return Operation(point, OpKind.MOVE_ASSIGN, target=_build_place(kids[0]), sources=(_build_place(kids[1]),), span=span)
	if kind_name in ("borrow_shared", "borrow_exclusive"):
		kind = OpKind.BORROW_SHARED if kind_name == "borrow_shared" else OpKind.BORROW_EXCLUSIVE
		return Operation(point, kind, target=_build_place(kids[0]), sources=(_build_place(kids[1]),), span=span)
	if kind_name == "call":
		callee, *rest = kids
		args: List[CallArg] = []
		result: Optional[Place] = None
		for item in rest:
			if item.data in ("arg_value", "arg_shared", "arg_exclusive"):
				args.append(_build_arg(item))
			else:
				result = _build_place(item)
		return Operation(point, OpKind.CALL, target=result, args=tuple(args), callee=str(callee), span=span)
	simple = _SIMPLE_KINDS.get(kind_name)
	if simple is not None:
		sources = tuple(_build_place(k) for k in kids)
		return Operation(point, simple, sources=sources, span=span)
	raise ProgramSyntaxError(f"unknown operation '{kind_name}'", line=span.line, column=span.column)


def _build_arg(tree: Tree) -> CallArg:
	place = _build_place(tree.children[0])
	if tree.data == "arg_shared":
		return CallArg(place, ArgMode.SHARED)
	if tree.data == "arg_exclusive":
		return CallArg(place, ArgMode.EXCLUSIVE)
	return CallArg(place, ArgMode.VALUE)


def _build_place(node: object) -> Place:
	if isinstance(node, Token):
		return Place(str(node))
	if not isinstance(node, Tree):
		raise ProgramSyntaxError(f"expected a place, got {node!r}")
	if node.data == "deref_place":
		return _build_place(node.children[0]).deref()
	if node.data == "path":
		base, *projs = node.children
		place = _build_place(base)
		for proj in projs:
			place = place.with_projection(_build_proj(proj))
		return place
	raise ProgramSyntaxError(f"expected a place, got '{node.data}'")


def _build_proj(tree: Tree) -> Projection:
	(tok,) = tree.children
	if tree.data == "field_proj":
		return FieldProj(str(tok))
	if tree.data == "const_index":
		return IndexProj.const(int(tok))
	return IndexProj.any(str(tok))


def _build_type(tree: Tree) -> TypeRef:
	if tree.data == "shared_type":
		return TypeRef.shared_ref(_build_type(tree.children[0]))
	if tree.data == "exclusive_type":
		return TypeRef.exclusive_ref(_build_type(tree.children[0]))
	name, *args = tree.children
	inner: Tuple[TypeRef, ...] = tuple(_build_type(a) for a in args)
	return TypeRef(str(name), inner)


__all__ = ["ProgramSyntaxError", "load_program", "parse_program"]
