"""
Behavioral timing signals: *when* a policy change was published, as a proxy
for an attempt to avoid user attention (holidays, weekends, off-hours,
Friday afternoons, bursts of changes).
"""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from dateutil import parser as date_parser
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.documents.models import DocumentVersion
from policywatch.timing import holidays
from policywatch.timing.schemas import (
    BehavioralReport, HistoryReport, PatternSignal, TimingSignal, TimingVerdict,
)

logger = logging.getLogger(__name__)

SIGNAL_PENALTIES: Dict[str, int] = {
    "major_holiday_update": -15,
    "minor_holiday_update": -8,
    "holiday_weekend_update": -10,
    "weekend_update": -3,
    "late_night_update": -5,
    "rapid_changes": -12,
    "frequent_changes": -6,
    "stealth_update": -10,
    "friday_afternoon_drop": -7,
    "suspicious_pattern": -8,
}

SEVERITY_RISK_POINTS: Dict[str, int] = {"critical": 30, "high": 20, "medium": 10, "low": 5}

RAPID_WINDOW = timedelta(days=90)
FREQUENT_WINDOW = timedelta(days=30)

NO_SIGNALS_SUMMARY = "No concerning timing patterns detected."


def _naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_update_timestamp(version: DocumentVersion) -> Tuple[Optional[datetime], bool]:
    """
    Best timestamp for when a version was published, and whether it carries a
    real time of day. Stated effective date first, then scrape/creation time.
    """
    metadata = version.version_metadata or {}
    effective = metadata.get("effective_date") if isinstance(metadata, dict) else None
    value = effective.get("value") if isinstance(effective, dict) else None
    if value:
        try:
            return date_parser.parse(str(value)), ":" in str(value)
        except (ValueError, OverflowError) as e:
            logger.debug(f"Unparseable effective date {value!r} on version {version.id}: {e}")

    if version.effective_date:
        return datetime.combine(version.effective_date, time()), False

    fallback = version.scraped_at or version.created_at
    if fallback:
        return fallback, True
    return None, False


class BehavioralSignalsService:
    def __init__(self, db: Optional[AsyncSession] = None):
        self.db = db

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    @staticmethod
    def check_holiday(ts: datetime) -> Optional[TimingSignal]:
        match = holidays.find_holiday(ts.date())
        if match is None:
            return None
        timing = match.timing
        if match.tier == "major":
            return TimingSignal(
                type="major_holiday_update",
                severity="critical",
                penalty=SIGNAL_PENALTIES["major_holiday_update"],
                holiday=match.name,
                timing=timing,
                description=f"Policy updated {timing} {match.name}, when users are most distracted.",
                details=f"Changes published around {match.name} are less likely to be noticed and reviewed.",
            )
        return TimingSignal(
            type="minor_holiday_update",
            severity="high",
            penalty=SIGNAL_PENALTIES["minor_holiday_update"],
            holiday=match.name,
            timing=timing,
            description=f"Policy updated {timing} {match.name}.",
            details="Holiday-adjacent updates may be timed to reduce user attention.",
        )

    @staticmethod
    def check_weekend(ts: datetime) -> Optional[TimingSignal]:
        if ts.weekday() < 5:
            return None
        day = ts.strftime("%A")
        return TimingSignal(
            type="weekend_update",
            severity="low",
            penalty=SIGNAL_PENALTIES["weekend_update"],
            day=day,
            description=f"Policy updated on {day}; weekend updates get less visibility.",
            details="Fewer users monitor policy changes on weekends.",
        )

    @staticmethod
    def check_late_night(ts: datetime) -> Optional[TimingSignal]:
        if 6 <= ts.hour < 22:
            return None
        period = "early morning" if ts.hour < 6 else "late night"
        return TimingSignal(
            type="late_night_update",
            severity="medium",
            penalty=SIGNAL_PENALTIES["late_night_update"],
            hour=ts.hour,
            description=f"Policy updated at {ts.strftime('%I:%M %p').lstrip('0')} ({period}); off-hours updates attract less attention.",
            details="Updates outside business hours may be timed for reduced visibility.",
        )

    @staticmethod
    def check_friday_afternoon(ts: datetime) -> Optional[TimingSignal]:
        if ts.weekday() != 4 or ts.hour < 15:
            return None
        return TimingSignal(
            type="friday_afternoon_drop",
            severity="medium",
            penalty=SIGNAL_PENALTIES["friday_afternoon_drop"],
            description="Policy updated Friday afternoon, the classic timing for burying unfavorable news.",
            details="Organizations often release news they want ignored late on Fridays.",
        )

    @staticmethod
    def check_frequency(ts: datetime, sibling_timestamps: Iterable[datetime]) -> List[TimingSignal]:
        reference = _naive_utc(ts)
        others = [_naive_utc(other) for other in sibling_timestamps if other is not None]
        in_90 = sum(1 for other in others if reference - RAPID_WINDOW <= other <= reference)
        in_30 = sum(1 for other in others if reference - FREQUENT_WINDOW <= other <= reference)

        if in_90 >= 2:
            return [TimingSignal(
                type="rapid_changes",
                severity="high",
                penalty=SIGNAL_PENALTIES["rapid_changes"],
                count=in_90 + 1,
                period="90 days",
                description=f"{in_90 + 1} policy changes in the last 90 days; rapid changes obscure important modifications.",
                details="Frequent updates make it hard for users to track what changed.",
            )]
        if in_30 >= 1:
            return [TimingSignal(
                type="frequent_changes",
                severity="medium",
                penalty=SIGNAL_PENALTIES["frequent_changes"],
                count=in_30 + 1,
                period="30 days",
                description=f"{in_30 + 1} policy changes in the last 30 days.",
                details="Several updates in a short period deserve close attention.",
            )]
        return []

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_risk_score(signals: Sequence[TimingSignal]) -> int:
        return min(100, sum(SEVERITY_RISK_POINTS.get(signal.severity, 5) for signal in signals))

    @staticmethod
    def summarize(signals: Sequence[TimingSignal]) -> str:
        if not signals:
            return NO_SIGNALS_SUMMARY
        return " ".join(signal.description for signal in signals)

    def analyze_timestamp(
        self,
        ts: datetime,
        sibling_timestamps: Iterable[datetime] = (),
        has_time: bool = True,
    ) -> BehavioralReport:
        signals: List[TimingSignal] = []
        checks = [self.check_holiday, self.check_weekend]
        if has_time:
            checks += [self.check_late_night, self.check_friday_afternoon]
        for check in checks:
            signal = check(ts)
            if signal is not None:
                signals.append(signal)
        signals.extend(self.check_frequency(ts, sibling_timestamps))

        risk_score = self.calculate_risk_score(signals)
        if len(signals) >= 3:
            signals.append(TimingSignal(
                type="suspicious_pattern",
                severity="high",
                penalty=SIGNAL_PENALTIES["suspicious_pattern"],
                description="Multiple timing red flags; this update shows signs of deliberate timing to avoid attention.",
                details=f"Found {len(signals)} timing signals.",
            ))

        return BehavioralReport(
            signals=signals,
            penalty=sum(signal.penalty for signal in signals),
            risk_score=risk_score,
            update_date=ts,
            summary=self.summarize(signals),
        )

    def analyze_version(
        self, version: DocumentVersion, sibling_timestamps: Iterable[datetime] = ()
    ) -> BehavioralReport:
        ts, has_time = resolve_update_timestamp(version)
        if ts is None:
            return BehavioralReport()
        return self.analyze_timestamp(ts, sibling_timestamps, has_time=has_time)

    @staticmethod
    def detect_patterns(reports: Sequence[BehavioralReport], total_versions: int) -> List[PatternSignal]:
        holiday_updates = weekend_updates = 0
        for report in reports:
            types = {signal.type for signal in report.signals}
            if types & {"major_holiday_update", "minor_holiday_update"}:
                holiday_updates += 1
            if "weekend_update" in types:
                weekend_updates += 1

        patterns: List[PatternSignal] = []
        if holiday_updates >= 2 or (holiday_updates and holiday_updates / total_versions > 0.3):
            patterns.append(PatternSignal(
                type="habitual_holiday_timing",
                severity="critical",
                description=f"Pattern detected: {holiday_updates} of {total_versions} updates were near holidays.",
                implication="This company appears to habitually time policy changes around holidays.",
            ))
        if weekend_updates >= 3 or (weekend_updates and weekend_updates / total_versions > 0.3):
            patterns.append(PatternSignal(
                type="habitual_weekend_timing",
                severity="high",
                description=f"Pattern detected: {weekend_updates} of {total_versions} updates were on weekends.",
                implication="Weekend updates may be a deliberate strategy to reduce visibility.",
            ))
        return patterns

    @staticmethod
    def overall_risk(all_signals: Sequence[TimingSignal], patterns: Sequence[PatternSignal]) -> str:
        severities = [s.severity for s in all_signals] + [p.severity for p in patterns]
        high_count = severities.count("high")
        if "critical" in severities or high_count >= 3:
            return "critical"
        if high_count >= 2 or len(severities) >= 5:
            return "high"
        if len(severities) >= 2:
            return "medium"
        if severities:
            return "low"
        return "none"

    def analyze_document_history(self, versions: Sequence[DocumentVersion]) -> HistoryReport:
        if len(versions) < 2:
            return HistoryReport(
                overall_risk="low",
                pattern_summary="Insufficient version history for pattern analysis.",
            )

        stamps = {version.id: resolve_update_timestamp(version)[0] for version in versions}
        reports: Dict[str, BehavioralReport] = {}
        all_signals: List[TimingSignal] = []
        for version in versions:
            siblings = [ts for vid, ts in stamps.items() if vid != version.id and ts is not None]
            report = self.analyze_version(version, siblings)
            reports[str(version.id)] = report
            all_signals.extend(report.signals)

        patterns = self.detect_patterns(list(reports.values()), len(versions))
        if patterns:
            summary = f"Analyzed {len(versions)} versions. " + " ".join(p.description for p in patterns)
        else:
            summary = f"Analyzed {len(versions)} versions. No systematic timing manipulation detected."

        return HistoryReport(
            signals=patterns,
            version_analyses=reports,
            overall_risk=self.overall_risk(all_signals, patterns),
            pattern_summary=summary,
        )

    # ------------------------------------------------------------------
    # Database-backed entry points
    # ------------------------------------------------------------------

    async def _document_versions(self, document_id: UUID) -> List[DocumentVersion]:
        if self.db is None:
            raise ValueError("BehavioralSignalsService needs a database session for this call")
        result = await self.db.execute(
            select(DocumentVersion).where(DocumentVersion.document_id == document_id)
        )
        return list(result.scalars().all())

    async def signals_for_version(self, version: DocumentVersion) -> BehavioralReport:
        siblings = [
            resolve_update_timestamp(other)[0]
            for other in await self._document_versions(version.document_id)
            if other.id != version.id
        ]
        return self.analyze_version(version, [ts for ts in siblings if ts is not None])

    async def document_history(self, document_id: UUID) -> HistoryReport:
        return self.analyze_document_history(await self._document_versions(document_id))


# ---------------------------------------------------------------------------
# Simple verdict used by change analysis
# ---------------------------------------------------------------------------

_NON_HOLIDAY_FLAGS = {"nighttime", "weekend", "negative_changes_during_suspicious_timing"}


def _holiday_display_name(key: str) -> str:
    for window in (*holidays.MAJOR_HOLIDAYS, *holidays.MINOR_HOLIDAYS):
        if window.key == key:
            return window.name
    return key.replace("_", " ").title()


class SuspiciousTimingService:
    @staticmethod
    def is_nighttime(ts: datetime) -> bool:
        return ts.hour >= 22 or ts.hour < 6

    @staticmethod
    def is_weekend(ts: datetime) -> bool:
        return ts.weekday() >= 5

    @staticmethod
    def get_holiday(ts: datetime) -> Optional[str]:
        return holidays.exact_holiday(ts.date())

    def calculate_score(self, ts: datetime, impact_delta: Optional[int] = None) -> Tuple[int, List[str]]:
        flags: List[str] = []
        score = 0
        if self.is_nighttime(ts):
            flags.append("nighttime")
            score -= 5
        if self.is_weekend(ts):
            flags.append("weekend")
            score -= 5
        holiday = self.get_holiday(ts)
        if holiday:
            flags.append(holiday)
            score -= 10
        if impact_delta is not None and impact_delta < -10 and flags:
            flags.append("negative_changes_during_suspicious_timing")
            score -= 10
        return score, flags

    @staticmethod
    def generate_notes(flags: Sequence[str]) -> str:
        notes = []
        if "nighttime" in flags:
            notes.append("Published during late night hours when users are unlikely to notice")
        if "weekend" in flags:
            notes.append("Published on a weekend when fewer people are paying attention")
        holiday_flags = [flag for flag in flags if flag not in _NON_HOLIDAY_FLAGS]
        if holiday_flags:
            notes.append(f"Published on {_holiday_display_name(holiday_flags[0])} when users are distracted")
        if "negative_changes_during_suspicious_timing" in flags:
            notes.append("Significant negative changes made during a suspicious timing window")
        return ". ".join(notes) + "." if notes else ""

    def evaluate_timestamp(self, ts: datetime, impact_delta: Optional[int] = None) -> TimingVerdict:
        score, flags = self.calculate_score(ts, impact_delta)
        is_suspicious = score < 0
        context = {
            "local_time": ts.isoformat(),
            "weekday": ts.strftime("%A"),
            "hour": ts.hour,
            "flags": flags,
            "impact_delta": impact_delta,
        }
        if is_suspicious:
            context["notes"] = self.generate_notes(flags)
        return TimingVerdict(is_suspicious=is_suspicious, score=score, context=context)

    def evaluate(self, version: DocumentVersion, impact_delta: Optional[int] = None) -> TimingVerdict:
        ts, _ = resolve_update_timestamp(version)
        if ts is None:
            return TimingVerdict(is_suspicious=False, score=0, context={"error": "No timestamp available"})
        verdict = self.evaluate_timestamp(ts, impact_delta)
        logger.debug(
            f"Timing verdict for version {version.id}: suspicious={verdict.is_suspicious} score={verdict.score}"
        )
        return verdict
