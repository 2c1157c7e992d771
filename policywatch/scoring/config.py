"""
Scoring configuration: dimension weights, flag effects, severity multipliers
and grade thresholds. Validated once at load time; immutable afterwards.
"""
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from policywatch.config import settings

logger = logging.getLogger(__name__)


DEFAULT_DIMENSION_WEIGHTS: Dict[str, int] = {
    "transparency": 20,
    "user_rights": 20,
    "data_collection": 20,
    "legal_rights": 20,
    "fairness_balance": 10,
    "notifications": 10,
}

DEFAULT_SEVERITY_MULTIPLIERS: Dict[int, float] = {
    1: 0.3, 2: 0.4, 3: 0.5, 4: 0.6, 5: 0.7,
    6: 0.8, 7: 0.9, 8: 1.0, 9: 1.1, 10: 1.2,
}

DEFAULT_FLAG_EFFECTS: Dict[str, Dict[str, float]] = {
    # Legal rights
    "forced_arbitration": {"legal_rights": -20},
    "class_action_waiver": {"legal_rights": -15},
    "unilateral_modification": {"legal_rights": -10, "fairness_balance": -5},
    "jurisdiction_limitation": {"legal_rights": -8},
    "liability_limitation": {"legal_rights": -8},
    "indemnification_clause": {"legal_rights": -5},
    # Data collection and sharing
    "sell_data": {"data_collection": -25, "transparency": -5},
    "share_with_advertisers": {"data_collection": -15},
    "third_party_sharing": {"data_collection": -10},
    "vague_data_sharing": {"data_collection": -8, "transparency": -5},
    "excessive_data_collection": {"data_collection": -12},
    "location_tracking": {"data_collection": -8},
    "cross_device_tracking": {"data_collection": -10},
    "biometric_data": {"data_collection": -10},
    "sensitive_data_collection": {"data_collection": -12},
    "extended_retention": {"data_collection": -8, "user_rights": -5},
    "expanded_sharing": {"data_collection": -12},
    # User rights
    "no_deletion_right": {"user_rights": -20},
    "removed_deletion_right": {"user_rights": -15},
    "difficult_deletion": {"user_rights": -10},
    "no_opt_out": {"user_rights": -15},
    "limited_access_rights": {"user_rights": -8},
    "no_portability": {"user_rights": -5},
    "automatic_consent": {"user_rights": -12, "fairness_balance": -5},
    # Transparency
    "vague_language": {"transparency": -8},
    "hidden_terms": {"transparency": -15},
    "complex_language": {"transparency": -5},
    "undefined_terms": {"transparency": -5},
    "buried_important_terms": {"transparency": -10},
    # Fairness
    "one_sided_terms": {"fairness_balance": -10},
    "surprise_terms": {"fairness_balance": -8, "transparency": -5},
    "take_it_or_leave_it": {"fairness_balance": -5},
    # Notifications
    "no_change_notification": {"notifications": -10},
    "vague_notification_policy": {"notifications": -5},
    "continued_use_consent": {"notifications": -8, "user_rights": -5},
    "reduced_notice": {"notifications": -8},
    # Update timing (behavioral signals merged in as flags)
    "major_holiday_update": {"notifications": -8, "fairness_balance": -4},
    "minor_holiday_update": {"notifications": -4},
    "holiday_weekend_update": {"notifications": -5},
    "weekend_update": {"notifications": -2},
    "late_night_update": {"notifications": -3},
    "friday_afternoon_drop": {"notifications": -4},
    "rapid_changes": {"notifications": -6, "fairness_balance": -3},
    "frequent_changes": {"notifications": -3},
    "stealth_update": {"notifications": -6, "transparency": -3},
    "suspicious_pattern": {"fairness_balance": -5},
    # Positive
    "clear_deletion_rights": {"user_rights": 10},
    "easy_opt_out": {"user_rights": 8},
    "data_portability": {"user_rights": 5},
    "plain_language": {"transparency": 10},
    "no_data_selling": {"data_collection": 10},
    "minimal_data_collection": {"data_collection": 8},
    "clear_data_usage": {"transparency": 8, "data_collection": 5},
    "proactive_notifications": {"notifications": 10},
    "gdpr_compliant": {"user_rights": 5, "data_collection": 5},
    "ccpa_compliant": {"user_rights": 5, "data_collection": 5},
    "encryption_mentioned": {"data_collection": 3},
    "limited_retention": {"data_collection": 5},
    "user_control": {"user_rights": 8},
}

DEFAULT_FLAG_CATEGORIES: Dict[str, List[str]] = {
    "red": [
        "forced_arbitration", "class_action_waiver", "sell_data", "no_deletion_right",
        "automatic_consent", "hidden_terms", "excessive_data_collection", "biometric_data",
        "share_with_advertisers", "no_opt_out", "sensitive_data_collection",
        "removed_deletion_right", "major_holiday_update", "rapid_changes", "suspicious_pattern",
    ],
    "yellow": [
        "vague_data_sharing", "third_party_sharing", "location_tracking", "one_sided_terms",
        "vague_language", "continued_use_consent", "unilateral_modification",
        "jurisdiction_limitation", "liability_limitation", "indemnification_clause",
        "cross_device_tracking", "difficult_deletion", "limited_access_rights", "no_portability",
        "complex_language", "undefined_terms", "buried_important_terms", "surprise_terms",
        "take_it_or_leave_it", "no_change_notification", "vague_notification_policy",
        "extended_retention", "expanded_sharing", "reduced_notice",
        "minor_holiday_update", "holiday_weekend_update", "weekend_update", "late_night_update",
        "friday_afternoon_drop", "frequent_changes", "stealth_update",
    ],
    "green": [
        "clear_deletion_rights", "easy_opt_out", "plain_language", "no_data_selling",
        "minimal_data_collection", "proactive_notifications", "data_portability", "gdpr_compliant",
        "clear_data_usage", "ccpa_compliant", "encryption_mentioned", "limited_retention",
        "user_control",
    ],
}

DEFAULT_GRADE_THRESHOLDS: Dict[str, int] = {"A": 90, "B": 80, "C": 70, "D": 60, "F": 0}
GRADE_LABELS: Dict[str, str] = {"A": "Excellent", "B": "Good", "C": "Fair", "D": "Poor", "F": "Failing"}
GRADE_COLORS: Dict[str, str] = {"A": "green", "B": "blue", "C": "yellow", "D": "orange", "F": "red"}


class ScoringConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    dimension_weights: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_DIMENSION_WEIGHTS))
    baseline_fraction: float = Field(0.7, ge=0.0, le=1.0)
    severity_multipliers: Dict[int, float] = Field(default_factory=lambda: dict(DEFAULT_SEVERITY_MULTIPLIERS))
    default_multiplier: float = 0.7
    default_severity: int = Field(5, ge=1, le=10)
    flag_effects: Dict[str, Dict[str, float]] = Field(default_factory=lambda: dict(DEFAULT_FLAG_EFFECTS))
    flag_categories: Dict[str, List[str]] = Field(default_factory=lambda: dict(DEFAULT_FLAG_CATEGORIES))
    grade_thresholds: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_GRADE_THRESHOLDS))

    @model_validator(mode="after")
    def _validate(self) -> "ScoringConfig":
        if sum(self.dimension_weights.values()) != 100:
            raise ValueError(
                f"Dimension weights must sum to 100, got {sum(self.dimension_weights.values())}"
            )
        if any(weight < 0 for weight in self.dimension_weights.values()):
            raise ValueError("Dimension weights must be non-negative")
        for flag_type, effects in self.flag_effects.items():
            unknown = set(effects) - set(self.dimension_weights)
            if unknown:
                raise ValueError(f"Flag '{flag_type}' references unknown dimensions: {sorted(unknown)}")
        bad_severities = [s for s in self.severity_multipliers if not 1 <= s <= 10]
        if bad_severities:
            raise ValueError(f"Severity multiplier keys must be 1-10, got {bad_severities}")
        for grade, threshold in self.grade_thresholds.items():
            if not 0 <= threshold <= 100:
                raise ValueError(f"Grade threshold for {grade} must be within 0-100, got {threshold}")
        return self

    def grades_descending(self) -> List[tuple]:
        return sorted(self.grade_thresholds.items(), key=lambda item: item[1], reverse=True)


def load_scoring_config(path: Optional[str] = None) -> ScoringConfig:
    """Build a config from a JSON or YAML file; missing keys keep their defaults."""
    if not path:
        return ScoringConfig()

    file_path = Path(path)
    raw_text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(raw_text) or {}
    else:
        data = json.loads(raw_text)

    config = ScoringConfig.model_validate(data)
    logger.info(f"Loaded scoring config from {path} ({len(config.flag_effects)} flag types)")
    return config


@lru_cache
def get_scoring_config() -> ScoringConfig:
    return load_scoring_config(settings.SCORING_CONFIG_PATH)
