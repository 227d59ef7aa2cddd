# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck: static ownership-and-borrow verifier.

Layers:
  program:      Program Model (lowered operations per function) and its loader
  places:       places, projections and overlap
  place_table:  per-place ownership state
  loan_tracker: loans, liveness collection/propagation, open-loan bookkeeping
  rule_engine:  per-function walk enforcing the ownership rules
  reporter:     Accepted/Rejected results and program-level verification
"""

from ownck.reporter import Accepted, ProgramReport, Rejected, verify_function, verify_program
from ownck.rules import BorrowViolation, ConflictRecord, MalformedProgramError, RuleTag, VerifierInternalError

__all__ = [
	"Accepted",
	"BorrowViolation",
	"ConflictRecord",
	"MalformedProgramError",
	"ProgramReport",
	"Rejected",
	"RuleTag",
	"VerifierInternalError",
	"verify_function",
	"verify_program",
]
