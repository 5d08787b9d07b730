"""Validation and defaults handling for teacher threshold settings."""

from typing import Any, Dict, Mapping, Optional, Tuple, Union

from schemas import TeacherThresholdSettings


class ValidationError(Exception):
    """Base class for validation errors."""
    pass


class ThresholdValidationError(ValidationError):
    """Raised when a threshold update is out of range or inconsistent."""
    pass


Number = Union[int, float]

# field -> (minimum, maximum, integer-only)
THRESHOLD_RANGES: Dict[str, Tuple[Number, Number, bool]] = {
    "needs_support_score": (0, 100, False),
    "needs_support_hint_threshold": (0, 1, False),
    "developing_upper": (0, 100, False),
    "developing_hint_min": (0, 1, False),
    "developing_hint_max": (0, 1, False),
    "strong_threshold": (0, 100, False),
    "escalation_help_requests": (1, 20, True),
    "heavy_hint_usage": (0, 1, False),
    "minimal_hint_usage": (0, 1, False),
    "min_group_size": (2, 50, True),
    "significant_improvement": (1, 100, False),
    "monitor_min_days": (0, 365, True),
}

DEFAULT_THRESHOLDS: Dict[str, Any] = TeacherThresholdSettings().model_dump()


def validate_threshold_values(values: Mapping[str, Any]) -> None:
    """Check the range of each supplied field.

    Raises ThresholdValidationError on unknown fields, non-numeric values or
    values outside the allowed range.
    """
    for field, value in values.items():
        if field not in THRESHOLD_RANGES:
            raise ThresholdValidationError(f"Unknown threshold field: {field}")
        minimum, maximum, integer_only = THRESHOLD_RANGES[field]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ThresholdValidationError(f"{field} must be numeric")
        if integer_only and not float(value).is_integer():
            raise ThresholdValidationError(f"{field} must be a whole number")
        if not (minimum <= value <= maximum):
            raise ThresholdValidationError(f"{field} must be between {minimum} and {maximum}")


def validate_threshold_consistency(settings: TeacherThresholdSettings) -> None:
    """Cross-field ordering checks on the fully merged settings."""
    if settings.needs_support_score >= settings.developing_upper:
        raise ThresholdValidationError("needs_support_score must be below developing_upper")
    if settings.developing_hint_min > settings.developing_hint_max:
        raise ThresholdValidationError("developing_hint_min must not exceed developing_hint_max")
    if settings.developing_upper > settings.strong_threshold:
        raise ThresholdValidationError("developing_upper must not exceed strong_threshold")
    if settings.minimal_hint_usage >= settings.heavy_hint_usage:
        raise ThresholdValidationError("minimal_hint_usage must be below heavy_hint_usage")


def merge_thresholds(overrides: Optional[Mapping[str, Any]] = None) -> TeacherThresholdSettings:
    merged = dict(DEFAULT_THRESHOLDS)
    for field, value in (overrides or {}).items():
        if field in merged:
            merged[field] = value
    return TeacherThresholdSettings(**merged)


class ThresholdSettingsService:
    """Teacher-scoped threshold settings merged over the defaults."""

    def __init__(self, store):
        self.store = store

    def get(self, teacher_id: str) -> TeacherThresholdSettings:
        return merge_thresholds(self.store.load(teacher_id))

    def update(self, teacher_id: str, updates: Mapping[str, Any]) -> TeacherThresholdSettings:
        """Validate and persist a partial update; nothing is written if validation fails."""
        validate_threshold_values(updates)
        current = self.store.load(teacher_id) or {}
        overrides = {**current, **dict(updates)}
        merged = merge_thresholds(overrides)
        validate_threshold_consistency(merged)
        self.store.save(teacher_id, overrides)
        return merged

    def reset(self, teacher_id: str) -> TeacherThresholdSettings:
        self.store.delete(teacher_id)
        return merge_thresholds()
