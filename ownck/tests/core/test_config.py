#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Verifier configuration loading."""

import json

import pytest

from ownck.core.config import VerifierConfig


def test_defaults():
	cfg = VerifierConfig()
	assert "i32" in cfg.copy_types
	assert "String" not in cfg.copy_types
	assert "Vec" in cfg.container_types
	assert cfg.max_workers == 1


def test_from_mapping_replaces_and_extends():
	cfg = VerifierConfig.from_mapping({"copy_types": ["Int"], "extra_copy_types": ["Point"], "max_workers": 3})
	assert cfg.copy_types == frozenset({"Int", "Point"})
	assert cfg.max_workers == 3


@pytest.mark.parametrize(
	"data",
	[{"copy_typez": []}, {"max_workers": 0}, {"max_workers": "2"}, {"max_workers": True}],
)
def test_invalid_mappings(data):
	with pytest.raises(ValueError):
		VerifierConfig.from_mapping(data)


def test_load_json(tmp_path):
	path = tmp_path / "ownck.json"
	path.write_text(json.dumps({"container_types": ["Vec", "Slots"], "max_workers": 2}), encoding="utf-8")
	cfg = VerifierConfig.load(path)
	assert cfg.container_types == frozenset({"Vec", "Slots"})
	assert cfg.max_workers == 2


def test_load_rejects_non_object(tmp_path):
	path = tmp_path / "ownck.json"
	path.write_text("[1, 2]", encoding="utf-8")
	with pytest.raises(ValueError):
		VerifierConfig.load(path)
