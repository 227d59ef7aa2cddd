# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Verifier configuration.

The only policy knobs are duplication semantics (which types are Copy, which
types are indexable containers) and how many worker threads program-level
verification may use. Everything else about the rules is fixed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

_DEFAULT_COPY_TYPES = frozenset(
	{
		"i8", "i16", "i32", "i64", "i128", "isize",
		"u8", "u16", "u32", "u64", "u128", "usize",
		"f32", "f64",
		"bool", "char",
		"Int", "Uint", "Float", "Bool",
	}
)

_DEFAULT_CONTAINER_TYPES = frozenset({"Vec", "VecDeque", "Array", "Box"})


@dataclass(frozen=True)
class VerifierConfig:
	"""Immutable verifier settings shared read-only by every function walk."""

	copy_types: frozenset[str] = field(default_factory=lambda: _DEFAULT_COPY_TYPES)
	container_types: frozenset[str] = field(default_factory=lambda: _DEFAULT_CONTAINER_TYPES)
	max_workers: int = 1

	def __post_init__(self) -> None:
		if self.max_workers < 1:
			raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

	@classmethod
	def from_mapping(cls, data: Mapping[str, Any]) -> "VerifierConfig":
		"""
		Build a config from a plain mapping (e.g. decoded JSON).

		`copy_types` / `container_types` replace the defaults; the
		`extra_copy_types` key extends them instead.
		"""
		known = {"copy_types", "extra_copy_types", "container_types", "max_workers"}
		unknown = sorted(set(data) - known)
		if unknown:
			raise ValueError(f"unknown verifier config keys: {', '.join(unknown)}")
		copy_types = frozenset(data.get("copy_types", _DEFAULT_COPY_TYPES))
		copy_types |= frozenset(data.get("extra_copy_types", ()))
		container_types = frozenset(data.get("container_types", _DEFAULT_CONTAINER_TYPES))
		max_workers = data.get("max_workers", 1)
		if not isinstance(max_workers, int) or isinstance(max_workers, bool):
			raise ValueError(f"max_workers must be an integer, got {max_workers!r}")
		return cls(copy_types=copy_types, container_types=container_types, max_workers=max_workers)

	@classmethod
	def load(cls, path: Path) -> "VerifierConfig":
		obj = json.loads(Path(path).read_text(encoding="utf-8"))
		if not isinstance(obj, dict):
			raise ValueError(f"{path}: expected a JSON object at top level")
		return cls.from_mapping(obj)


__all__ = ["VerifierConfig"]
