import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from policywatch.analysis.schemas import Flag
from policywatch.scoring.config import GRADE_COLORS, GRADE_LABELS, ScoringConfig, get_scoring_config
from policywatch.scoring.schemas import FlagEffect, ScoreBreakdownEntry, ScoreReport

logger = logging.getLogger(__name__)

FlagLike = Union[Flag, Mapping[str, Any]]

_TENTH = Decimal("0.1")
_ONE = Decimal("1")


def _dec(value: float) -> Decimal:
    # str() keeps 0.7 as 0.7 instead of its binary expansion
    return Decimal(str(value))


def _flag_fields(flag: FlagLike) -> tuple:
    if isinstance(flag, Flag):
        return flag.type, flag.severity, flag.color
    return flag.get("type"), flag.get("severity"), flag.get("color")


class ScoringEngine:
    """
    Deterministic flags -> score conversion. Pure function of (flags, config):
    no I/O and no dependence on flag order beyond summation.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or get_scoring_config()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def flag_type_exists(self, flag_type: str) -> bool:
        return flag_type in self.config.flag_effects

    def all_flag_types(self) -> List[str]:
        return sorted(self.config.flag_effects)

    def flag_types_for_category(self, category: str) -> List[str]:
        return list(self.config.flag_categories.get(category, []))

    def normalize_severity(self, severity: Any) -> int:
        try:
            return int(severity)
        except (TypeError, ValueError):
            return self.config.default_severity

    def severity_multiplier(self, severity: Any) -> Decimal:
        multiplier = self.config.severity_multipliers.get(
            self.normalize_severity(severity), self.config.default_multiplier
        )
        return _dec(multiplier)

    def grade_for(self, total: int) -> str:
        grades = self.config.grades_descending()
        for grade, threshold in grades:
            if total >= threshold:
                return grade
        return grades[-1][0]

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _baselines(self) -> Dict[str, Decimal]:
        fraction = _dec(self.config.baseline_fraction)
        return {dim: Decimal(weight) * fraction for dim, weight in self.config.dimension_weights.items()}

    def _apply(self, flags: Iterable[FlagLike], breakdown: Optional[List[ScoreBreakdownEntry]] = None) -> Dict[str, Decimal]:
        scores = self._baselines()
        for flag in flags:
            flag_type, severity, color = _flag_fields(flag)
            effects = self.config.flag_effects.get(flag_type)
            if effects is None:
                logger.info(f"Ignoring unknown flag type '{flag_type}'")
                continue

            multiplier = self.severity_multiplier(severity)
            applied = []
            for dimension, base_delta in effects.items():
                if dimension not in scores:
                    continue
                delta = _dec(base_delta) * multiplier
                scores[dimension] += delta
                applied.append(FlagEffect(dimension=dimension, base_delta=base_delta, delta=float(delta)))

            if breakdown is not None:
                breakdown.append(ScoreBreakdownEntry(
                    type=flag_type,
                    color=color,
                    severity=self.normalize_severity(severity),
                    multiplier=float(multiplier),
                    effects=applied,
                ))
        return scores

    def _clamp(self, scores: Dict[str, Decimal]) -> Dict[str, Decimal]:
        clamped = {}
        for dimension, value in scores.items():
            weight = Decimal(self.config.dimension_weights[dimension])
            rounded = value.quantize(_TENTH, rounding=ROUND_HALF_UP)
            clamped[dimension] = max(Decimal(0), min(weight, rounded))
        return clamped

    def calculate_dimension_scores(self, flags: Iterable[FlagLike]) -> Dict[str, float]:
        return {dim: float(value) for dim, value in self._clamp(self._apply(flags)).items()}

    def calculate_total_score(self, dimension_scores: Mapping[str, float]) -> int:
        total = sum((_dec(value) for value in dimension_scores.values()), Decimal(0))
        total = total.quantize(_ONE, rounding=ROUND_HALF_UP)
        return int(max(Decimal(0), min(Decimal(100), total)))

    def flag_summary(self, flags: Iterable[FlagLike]) -> Dict[str, int]:
        summary = {"red": 0, "yellow": 0, "green": 0}
        for flag in flags:
            _, _, color = _flag_fields(flag)
            if color in summary:
                summary[color] += 1
        summary["total"] = summary["red"] + summary["yellow"] + summary["green"]
        return summary

    def process_analysis(self, flags: Iterable[FlagLike]) -> ScoreReport:
        flags = list(flags)
        dimension_scores = self.calculate_dimension_scores(flags)
        total = self.calculate_total_score(dimension_scores)
        grade = self.grade_for(total)
        return ScoreReport(
            dimension_scores=dimension_scores,
            total_score=total,
            grade=grade,
            grade_label=GRADE_LABELS.get(grade, grade),
            grade_color=GRADE_COLORS.get(grade, "gray"),
            flag_summary=self.flag_summary(flags),
        )

    def score_breakdown(self, flags: Iterable[FlagLike]) -> List[ScoreBreakdownEntry]:
        """Per-flag effects, in input order. Unknown flag types are omitted."""
        breakdown: List[ScoreBreakdownEntry] = []
        self._apply(flags, breakdown)
        return breakdown
