# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Shared leaf modules: spans, diagnostics, verifier configuration."""

__all__ = ["config", "diagnostics", "span"]
