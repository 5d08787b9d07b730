"""Tests for teacher threshold settings."""

import pytest

from engines.validation import (
    DEFAULT_THRESHOLDS,
    ThresholdSettingsService,
    ThresholdValidationError,
    ValidationError,
    merge_thresholds,
)


@pytest.fixture
def settings(stores):
    return ThresholdSettingsService(stores.settings)


def test_defaults_when_nothing_stored(settings):
    current = settings.get("teacher-1")
    assert current.needs_support_score == 40
    assert current.developing_upper == 70
    assert current.escalation_help_requests == 3
    assert current.model_dump() == DEFAULT_THRESHOLDS


def test_partial_update_merges_with_defaults(settings, stores):
    updated = settings.update("teacher-1", {"needs_support_score": 35})
    assert updated.needs_support_score == 35
    assert updated.strong_threshold == 90
    assert stores.settings.load("teacher-1") == {"needs_support_score": 35}
    assert settings.get("teacher-2").needs_support_score == 40


@pytest.mark.parametrize(
    "updates",
    [
        {"needs_support_score": 120},
        {"needs_support_hint_threshold": 1.5},
        {"escalation_help_requests": 0},
        {"escalation_help_requests": 2.5},
        {"needs_support_score": "high"},
        {"unknown_field": 1},
        {"needs_support_score": 75},
        {"developing_hint_min": 0.6, "developing_hint_max": 0.4},
    ],
)
def test_invalid_updates_are_rejected_before_saving(settings, stores, updates):
    with pytest.raises(ThresholdValidationError):
        settings.update("teacher-1", updates)
    assert stores.settings.load("teacher-1") is None


def test_ordering_checked_against_stored_values(settings):
    settings.update("teacher-1", {"developing_upper": 60})
    with pytest.raises(ValidationError):
        settings.update("teacher-1", {"needs_support_score": 65})
    assert settings.get("teacher-1").needs_support_score == 40


def test_reset_restores_defaults(settings, stores):
    settings.update("teacher-1", {"strong_threshold": 95})
    assert settings.reset("teacher-1").strong_threshold == 90
    assert stores.settings.load("teacher-1") is None


def test_merge_ignores_unknown_stored_keys():
    assert merge_thresholds({"legacy": 1, "min_group_size": 3}).min_group_size == 3
