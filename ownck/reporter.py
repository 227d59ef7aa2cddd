# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Diagnostic Reporter and program-level verification.

Every function gets exactly one verdict: `Accepted`, or `Rejected` carrying the
first ConflictRecord. Functions are verified independently (fresh Place Table
and Loan Tracker each), optionally on a thread pool; the Program Model is only
read, so no locking is involved.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from ownck.core.config import VerifierConfig
from ownck.core.diagnostics import Diagnostic
from ownck.program.model import Function, Program
from ownck.rule_engine import RuleEngine
from ownck.rules import BorrowViolation, ConflictRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Accepted:
	function: str

	@property
	def ok(self) -> bool:
		return True


@dataclass(frozen=True)
class Rejected:
	function: str
	record: ConflictRecord

	@property
	def ok(self) -> bool:
		return False


Verdict = Union[Accepted, Rejected]


@dataclass
class DiagnosticReporter:
	"""
	Collects verdicts; each function is reported exactly once.

	`reject` is called on the first failure and `accept` on a clean walk, so a
	second report for the same function indicates a driver bug.
	"""

	verdicts: Dict[str, Verdict] = field(default_factory=dict)

	def accept(self, function: str) -> Accepted:
		verdict = Accepted(function)
		self.add(verdict)
		return verdict

	def reject(self, function: str, record: ConflictRecord) -> Rejected:
		verdict = Rejected(function, record)
		self.add(verdict)
		return verdict

	def add(self, verdict: Verdict) -> None:
		if verdict.function in self.verdicts:
			raise RuntimeError(f"function '{verdict.function}' reported twice")
		self.verdicts[verdict.function] = verdict


@dataclass(frozen=True)
class ProgramReport:
	"""Verdicts for a whole program, in program order."""

	results: Dict[str, Verdict]

	@property
	def ok(self) -> bool:
		return all(v.ok for v in self.results.values())

	def rejected(self) -> List[Rejected]:
		return [v for v in self.results.values() if isinstance(v, Rejected)]

	def diagnostics(self) -> List[Diagnostic]:
		return [v.record.to_diagnostic() for v in self.rejected()]

	def __getitem__(self, name: str) -> Verdict:
		return self.results[name]


def verify_function(
	fn: Function,
	config: Optional[VerifierConfig] = None,
	*,
	reporter: Optional[DiagnosticReporter] = None,
) -> Verdict:
	"""Verify one function; never raises for unsafe or malformed input."""
	reporter = reporter if reporter is not None else DiagnosticReporter()
	logger.debug("verifying %s (%d operations)", fn.name, len(fn.operations))
	try:
		RuleEngine(fn, config).run()
	except BorrowViolation as err:
		logger.info("%s rejected: %s", fn.name, err.record.summary())
		return reporter.reject(fn.name, err.record)
	logger.debug("%s accepted", fn.name)
	return reporter.accept(fn.name)


def verify_program(program: Program, config: Optional[VerifierConfig] = None) -> ProgramReport:
	"""
	Verify every function of `program`.

	With `config.max_workers > 1` functions run on a thread pool; verdicts are
	still returned in program order.
	"""
	config = config or VerifierConfig()
	functions = list(program)
	if config.max_workers == 1 or len(functions) < 2:
		verdicts = [verify_function(fn, config) for fn in functions]
	else:
		with concurrent.futures.ThreadPoolExecutor(max_workers=config.max_workers) as executor:
			futures = [executor.submit(verify_function, fn, config) for fn in functions]
			verdicts = [f.result() for f in futures]
	reporter = DiagnosticReporter()
	for verdict in verdicts:
		reporter.add(verdict)
	return ProgramReport(results=dict(reporter.verdicts))


__all__ = [
	"Accepted",
	"DiagnosticReporter",
	"ProgramReport",
	"Rejected",
	"Verdict",
	"verify_function",
	"verify_program",
]
