import json

import pytest
from pydantic import ValidationError

from policywatch.analysis.schemas import Flag
from policywatch.scoring.config import ScoringConfig, load_scoring_config
from policywatch.scoring.service import ScoringEngine


@pytest.fixture
def engine():
    return ScoringEngine(ScoringConfig())


def flag(flag_type, severity=5, color="red"):
    return Flag(type=flag_type, severity=severity, color=color, description="")


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

class TestProcessAnalysis:
    def test_no_flags_scores_the_baseline(self, engine):
        report = engine.process_analysis([])

        assert report.dimension_scores == {
            "transparency": 14.0,
            "user_rights": 14.0,
            "data_collection": 14.0,
            "legal_rights": 14.0,
            "fairness_balance": 7.0,
            "notifications": 7.0,
        }
        assert report.total_score == 70
        assert report.grade == "C"
        assert report.grade_label == "Fair"
        assert report.flag_summary == {"red": 0, "yellow": 0, "green": 0, "total": 0}

    def test_retention_and_arbitration_scenario(self, engine):
        report = engine.process_analysis([
            flag("extended_retention", 7, "yellow"),
            flag("forced_arbitration", 10, "red"),
        ])
        scores = report.dimension_scores

        # 14 - 20 * 1.2 clamps at zero
        assert scores["legal_rights"] == 0.0
        # 14 - 8 * 0.9 and 14 - 5 * 0.9
        assert scores["data_collection"] == 6.8
        assert scores["user_rights"] == 9.5
        assert scores["transparency"] == 14.0
        assert report.total_score == 44
        assert report.grade == "F"
        assert report.grade_color == "red"
        assert report.flag_summary == {"red": 1, "yellow": 1, "green": 0, "total": 2}

    def test_positive_flags_clamp_at_weight(self, engine):
        report = engine.process_analysis([
            flag("clear_deletion_rights", 10, "green"),
            flag("easy_opt_out", 10, "green"),
            flag("user_control", 10, "green"),
        ])
        assert report.dimension_scores["user_rights"] == 20.0
        assert report.total_score == 76

    def test_unknown_flag_type_is_ignored(self, engine):
        baseline = engine.process_analysis([])
        report = engine.process_analysis([flag("model_invented_type", 10)])
        assert report.dimension_scores == baseline.dimension_scores
        assert report.flag_summary["red"] == 1

    def test_accepts_plain_dicts(self, engine):
        report = engine.process_analysis([{"type": "sell_data", "severity": 8, "color": "red"}])
        assert report.dimension_scores["data_collection"] == 0.0
        assert report.dimension_scores["transparency"] == 9.0

    def test_missing_severity_uses_default(self, engine):
        report = engine.process_analysis([{"type": "forced_arbitration", "severity": None, "color": "red"}])
        # default severity 5 -> multiplier 0.7
        assert report.dimension_scores["legal_rights"] == 0.0
        report = engine.process_analysis([{"type": "liability_limitation", "severity": "high", "color": "red"}])
        assert report.dimension_scores["legal_rights"] == 8.4

    def test_deterministic(self, engine):
        flags = [
            flag("vague_language", 3, "yellow"),
            flag("third_party_sharing", 6, "yellow"),
            flag("plain_language", 9, "green"),
            flag("continued_use_consent", 7, "yellow"),
        ]
        first = engine.process_analysis(flags)
        second = engine.process_analysis(list(reversed(flags)))
        assert first == second
        assert first == engine.process_analysis(flags)

    def test_scores_stay_in_bounds(self, engine):
        every_negative = [
            flag(flag_type, 10)
            for flag_type, effects in engine.config.flag_effects.items()
            if all(delta < 0 for delta in effects.values())
        ]
        report = engine.process_analysis(every_negative)
        for dimension, value in report.dimension_scores.items():
            assert 0 <= value <= engine.config.dimension_weights[dimension]
        assert report.total_score == 0
        assert report.grade == "F"


class TestScoreBreakdown:
    def test_breakdown_lists_applied_effects(self, engine):
        breakdown = engine.score_breakdown([
            flag("unilateral_modification", 8),
            flag("not_a_real_type", 8),
        ])
        assert len(breakdown) == 1
        entry = breakdown[0]
        assert entry.type == "unilateral_modification"
        assert entry.multiplier == 1.0
        assert {(e.dimension, e.delta) for e in entry.effects} == {
            ("legal_rights", -10.0),
            ("fairness_balance", -5.0),
        }


class TestGrades:
    @pytest.mark.parametrize("total,grade", [(100, "A"), (90, "A"), (89, "B"), (80, "B"), (70, "C"), (60, "D"), (59, "F"), (0, "F")])
    def test_grade_thresholds(self, engine, total, grade):
        assert engine.grade_for(total) == grade


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestScoringConfig:
    def test_weights_must_sum_to_100(self):
        with pytest.raises(ValidationError, match="sum to 100"):
            ScoringConfig(dimension_weights={"transparency": 50, "user_rights": 40})

    def test_effects_must_reference_known_dimensions(self):
        with pytest.raises(ValidationError, match="unknown dimensions"):
            ScoringConfig(flag_effects={"forced_arbitration": {"karma": -5}})

    def test_severity_keys_in_range(self):
        with pytest.raises(ValidationError):
            ScoringConfig(severity_multipliers={0: 0.1, 11: 2.0})

    def test_config_is_frozen(self):
        config = ScoringConfig()
        with pytest.raises(ValidationError):
            config.baseline_fraction = 0.5

    def test_load_yaml_overrides(self, tmp_path):
        path = tmp_path / "scoring.yaml"
        path.write_text(
            "baseline_fraction: 0.5\n"
            "flag_effects:\n"
            "  forced_arbitration:\n"
            "    legal_rights: -5\n"
        )
        config = load_scoring_config(str(path))
        engine = ScoringEngine(config)

        assert config.dimension_weights["transparency"] == 20
        report = engine.process_analysis([flag("forced_arbitration", 8)])
        assert report.dimension_scores["legal_rights"] == 5.0
        assert report.total_score == 45
        # Only the configured effects are known
        assert not engine.flag_type_exists("sell_data")

    def test_load_json(self, tmp_path):
        path = tmp_path / "scoring.json"
        path.write_text(json.dumps({"grade_thresholds": {"A": 95, "B": 85, "C": 75, "D": 65, "F": 0}}))
        engine = ScoringEngine(load_scoring_config(str(path)))
        assert engine.grade_for(70) == "D"

    def test_no_path_gives_defaults(self):
        assert load_scoring_config(None) == ScoringConfig()
