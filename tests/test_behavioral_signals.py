from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from policywatch.documents.models import DocumentVersion
from policywatch.timing.service import BehavioralSignalsService, resolve_update_timestamp

from helpers import create_document, create_version


@pytest.fixture
def service():
    return BehavioralSignalsService()


def make_version(**kwargs) -> DocumentVersion:
    return DocumentVersion(id=uuid4(), document_id=uuid4(), version_number="1.0", content_text="x", **kwargs)


def signal_types(report):
    return [signal.type for signal in report.signals]


# ---------------------------------------------------------------------------
# Single timestamp
# ---------------------------------------------------------------------------

class TestAnalyzeTimestamp:
    def test_friday_afternoon(self, service):
        report = service.analyze_timestamp(datetime(2024, 3, 15, 16, 0))

        assert signal_types(report) == ["friday_afternoon_drop"]
        assert report.penalty == -7
        assert report.risk_score == 10

    def test_tuesday_afternoon_is_clean(self, service):
        report = service.analyze_timestamp(datetime(2024, 3, 12, 14, 0))

        assert report.signals == []
        assert report.penalty == 0
        assert report.risk_score == 0
        assert report.summary == "No concerning timing patterns detected."

    def test_saturday(self, service):
        report = service.analyze_timestamp(datetime(2024, 3, 16, 12, 0))
        assert signal_types(report) == ["weekend_update"]
        assert report.signals[0].day == "Saturday"
        assert report.penalty == -3

    @pytest.mark.parametrize("hour,fires", [(5, True), (6, False), (21, False), (22, True), (0, True)])
    def test_late_night_boundaries(self, service, hour, fires):
        report = service.analyze_timestamp(datetime(2024, 3, 12, hour, 30))
        assert ("late_night_update" in signal_types(report)) is fires

    def test_friday_before_three_is_clean(self, service):
        assert service.analyze_timestamp(datetime(2024, 3, 15, 14, 59)).signals == []

    def test_major_holiday(self, service):
        report = service.analyze_timestamp(datetime(2024, 11, 28, 12, 0))
        assert signal_types(report) == ["major_holiday_update"]
        assert report.signals[0].holiday == "Thanksgiving"
        assert report.signals[0].severity == "critical"
        assert report.risk_score == 30

    def test_minor_holiday(self, service):
        report = service.analyze_timestamp(datetime(2024, 7, 4, 12, 0))
        assert signal_types(report) == ["minor_holiday_update"]
        assert report.penalty == -8

    def test_three_signals_add_suspicious_pattern(self, service):
        ts = datetime(2024, 11, 28, 23, 30)
        siblings = [datetime(2024, 10, 1, 12, 0), datetime(2024, 11, 1, 12, 0)]
        report = service.analyze_timestamp(ts, siblings)

        assert signal_types(report) == [
            "major_holiday_update", "late_night_update", "rapid_changes", "suspicious_pattern",
        ]
        assert report.penalty == -15 - 5 - 12 - 8
        # Risk score is computed from the underlying signals only
        assert report.risk_score == 60

    def test_date_only_skips_hour_based_checks(self, service):
        report = service.analyze_timestamp(datetime(2024, 3, 15, 0, 0), has_time=False)
        assert report.signals == []


class TestFrequency:
    def test_rapid_suppresses_frequent(self, service):
        ts = datetime(2024, 6, 30, 12, 0)
        siblings = [ts - timedelta(days=5), ts - timedelta(days=60)]
        signals = service.check_frequency(ts, siblings)

        assert [s.type for s in signals] == ["rapid_changes"]
        assert signals[0].count == 3
        assert signals[0].period == "90 days"

    def test_frequent(self, service):
        ts = datetime(2024, 6, 30, 12, 0)
        signals = service.check_frequency(ts, [ts - timedelta(days=10)])
        assert [s.type for s in signals] == ["frequent_changes"]
        assert signals[0].count == 2

    def test_later_versions_do_not_count(self, service):
        ts = datetime(2024, 6, 30, 12, 0)
        assert service.check_frequency(ts, [ts + timedelta(days=3), ts + timedelta(days=4)]) == []

    def test_mixed_timezone_awareness(self, service):
        ts = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
        signals = service.check_frequency(ts, [datetime(2024, 6, 25, 12, 0)])
        assert [s.type for s in signals] == ["frequent_changes"]


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

class TestResolveTimestamp:
    def test_metadata_effective_date_with_time(self):
        version = make_version(
            version_metadata={"effective_date": {"value": "2024-03-15T16:00:00"}},
            scraped_at=datetime(2024, 3, 20, 9, 0),
        )
        assert resolve_update_timestamp(version) == (datetime(2024, 3, 15, 16, 0), True)

    def test_metadata_date_only(self):
        version = make_version(version_metadata={"effective_date": {"value": "March 15, 2024"}})
        assert resolve_update_timestamp(version) == (datetime(2024, 3, 15), False)

    def test_unparseable_metadata_falls_back(self):
        version = make_version(
            version_metadata={"effective_date": {"value": "sometime soon"}},
            effective_date=date(2024, 3, 15),
        )
        assert resolve_update_timestamp(version) == (datetime(2024, 3, 15), False)

    def test_scraped_at(self):
        version = make_version(scraped_at=datetime(2024, 3, 15, 16, 0))
        assert resolve_update_timestamp(version) == (datetime(2024, 3, 15, 16, 0), True)

    def test_nothing(self):
        assert resolve_update_timestamp(make_version()) == (None, False)


class TestAnalyzeVersion:
    def test_stated_friday_date_without_time(self, service):
        version = make_version(version_metadata={"effective_date": {"value": "2024-03-15"}})
        assert service.analyze_version(version).signals == []

    def test_stated_friday_afternoon(self, service):
        version = make_version(version_metadata={"effective_date": {"value": "2024-03-15T16:00:00"}})
        assert signal_types(service.analyze_version(version)) == ["friday_afternoon_drop"]

    def test_no_timestamp(self, service):
        report = service.analyze_version(make_version())
        assert report.signals == []
        assert report.update_date is None


class TestDocumentHistory:
    def test_single_version_is_insufficient(self, service):
        report = service.analyze_document_history([make_version(scraped_at=datetime(2024, 11, 28, 12, 0))])
        assert report.overall_risk == "low"
        assert report.pattern_summary == "Insufficient version history for pattern analysis."

    def test_habitual_holiday_timing(self, service):
        versions = [
            make_version(scraped_at=datetime(2023, 11, 23, 14, 0)),
            make_version(scraped_at=datetime(2024, 6, 11, 14, 0)),
            make_version(scraped_at=datetime(2024, 12, 25, 14, 0)),
        ]
        report = service.analyze_document_history(versions)

        assert [p.type for p in report.signals] == ["habitual_holiday_timing"]
        assert report.overall_risk == "critical"
        assert report.pattern_summary.startswith(
            "Analyzed 3 versions. Pattern detected: 2 of 3 updates were near holidays."
        )
        assert set(report.version_analyses) == {str(v.id) for v in versions}

    def test_clean_history(self, service):
        versions = [
            make_version(scraped_at=datetime(2024, 3, 12, 14, 0)),
            make_version(scraped_at=datetime(2024, 9, 10, 14, 0)),
        ]
        report = service.analyze_document_history(versions)
        assert report.signals == []
        assert report.overall_risk == "none"
        assert report.pattern_summary == "Analyzed 2 versions. No systematic timing manipulation detected."

    def test_weekend_pattern(self, service):
        versions = [
            make_version(scraped_at=datetime(2024, 3, 16, 12, 0)),
            make_version(scraped_at=datetime(2024, 8, 13, 12, 0)),
            make_version(scraped_at=datetime(2025, 3, 11, 12, 0)),
        ]
        report = service.analyze_document_history(versions)
        assert [p.type for p in report.signals] == ["habitual_weekend_timing"]


class TestDatabaseEntryPoints:
    @pytest.mark.asyncio
    async def test_signals_for_version_uses_siblings(self, db_session):
        document = await create_document(db_session)
        await create_version(db_session, document, "v1", "1.0", datetime(2024, 3, 1, 14, 0), is_current=False)
        latest = await create_version(db_session, document, "v2", "1.1", datetime(2024, 3, 12, 14, 0))

        report = await BehavioralSignalsService(db_session).signals_for_version(latest)
        assert signal_types(report) == ["frequent_changes"]

    @pytest.mark.asyncio
    async def test_document_history(self, db_session):
        document = await create_document(db_session)
        await create_version(db_session, document, "v1", "1.0", datetime(2023, 11, 23, 14, 0), is_current=False)
        await create_version(db_session, document, "v2", "1.1", datetime(2024, 12, 25, 14, 0))

        report = await BehavioralSignalsService(db_session).document_history(document.id)
        assert report.overall_risk == "critical"
        assert len(report.version_analyses) == 2

    @pytest.mark.asyncio
    async def test_requires_session(self):
        with pytest.raises(ValueError):
            await BehavioralSignalsService().document_history(uuid4())
