# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Renderer-neutral form of a verifier finding.

`ConflictRecord.to_diagnostic` produces these; turning them into terminal or
editor output is left to whoever consumes the report.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple

from ownck.core.span import Span


@dataclass(frozen=True)
class Diagnostic:
	"""One rejected function, keyed by `code` (e.g. E_USE_AFTER_MOVE)."""

	message: str
	code: str
	phase: str = "borrowcheck"
	severity: str = "error"
	span: Span = Span()
	notes: Tuple[str, ...] = ()

	@property
	def location(self) -> str:
		"""`file:line:column` prefix, or an empty string for unknown spans."""
		if not self.span.is_known():
			return ""
		parts = [self.span.file or "<listing>", str(self.span.line)]
		if self.span.column is not None:
			parts.append(str(self.span.column))
		return ":".join(parts)

	def __str__(self) -> str:
		head = f"{self.location}: " if self.location else ""
		return f"{head}{self.severity}[{self.code}]: {self.message}"

	def to_dict(self) -> dict[str, Any]:
		return {
			"message": self.message,
			"code": self.code,
			"phase": self.phase,
			"severity": self.severity,
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"notes": list(self.notes),
		}


__all__ = ["Diagnostic"]
