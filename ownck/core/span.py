# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Source locations for lowered operations.

Operations are identified by their program point; a Span is optional extra
context pointing back into the listing the operation was loaded from.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Best-effort line/column range (Span() denotes unknown)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None

	@classmethod
	def from_meta(cls, meta: Any, *, file: Optional[str] = None) -> "Span":
		"""
		Build a Span from a lark `Meta` (requires `propagate_positions=True`).

		Empty metas (rules that matched nothing) have no `line` attribute and map
		to the unknown span.
		"""
		if meta is None or getattr(meta, "empty", True):
			return cls(file=file)
		return cls(
			file=file,
			line=getattr(meta, "line", None),
			column=getattr(meta, "column", None),
			end_line=getattr(meta, "end_line", None),
			end_column=getattr(meta, "end_column", None),
		)

	def is_known(self) -> bool:
		return self.line is not None


__all__ = ["Span"]
