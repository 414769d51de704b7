"""
Tests for the conflict detector.
"""

import pytest

from docsync.replication.conflict import ConflictReason, detect_conflict, assumed_updated_at
from docsync.replication.models import Document


@pytest.fixture
def stored() -> Document:
    return Document(id="a", data={"title": "server"}, updated_at=100)


def test_first_write_is_not_a_conflict():
    assert detect_conflict(None, None) is ConflictReason.NONE


def test_existing_document_assumed_new(stored):
    assert detect_conflict(stored, None) is ConflictReason.EXISTS_BUT_ASSUMED_NEW


def test_missing_document_assumed_existing():
    reason = detect_conflict(None, {"id": "a", "updatedAt": 100})
    assert reason is ConflictReason.MISSING_BUT_ASSUMED_EXISTING
    assert reason.is_conflict


def test_matching_stamp(stored):
    assert detect_conflict(stored, {"id": "a", "updatedAt": 100}) is ConflictReason.NONE


def test_stale_stamp(stored):
    assert detect_conflict(stored, {"id": "a", "updatedAt": 50}) is ConflictReason.VERSION_MISMATCH


def test_newer_stamp_is_also_a_mismatch(stored):
    assert detect_conflict(stored, {"updatedAt": 150}).is_conflict


@pytest.mark.parametrize("assumed", [
    {"id": "a"},
    {"id": "a", "updatedAt": None},
    {"id": "a", "updatedAt": "later"},
    {"id": "a", "updatedAt": True},
])
def test_missing_or_unusable_stamp_never_matches(stored, assumed):
    assert detect_conflict(stored, assumed) is ConflictReason.VERSION_MISMATCH


def test_numeric_string_stamp_matches(stored):
    assert detect_conflict(stored, {"updatedAt": "100"}) is ConflictReason.NONE


def test_content_is_not_compared(stored):
    assumed = {"id": "a", "updatedAt": 100, "title": "something else entirely"}
    assert detect_conflict(stored, assumed) is ConflictReason.NONE


def test_assumed_updated_at():
    assert assumed_updated_at({"updatedAt": 12.0}) == 12
    assert assumed_updated_at({}) is None
