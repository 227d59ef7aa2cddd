# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Program Model consumed by the verifier.

`model` defines the lowered operation form; `loader` builds it from the
textual listing produced by the upstream lowering stage.
"""

from ownck.program.model import ArgMode, CallArg, Function, Operation, OpKind, Param, Program, TypeRef

__all__ = ["ArgMode", "CallArg", "Function", "Operation", "OpKind", "Param", "Program", "TypeRef"]
