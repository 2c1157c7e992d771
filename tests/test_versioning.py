from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from policywatch.config import settings
from policywatch.documents.models import DocumentVersion, VersionComparison
from policywatch.documents.schemas import ScrapeResult
from policywatch.versions.service import VersioningService, next_version_number

from helpers import create_document, create_version

OLD_TEXT = "Welcome to Example.\nWe keep data for 30 days.\nContact us any time."
NEW_TEXT = "Welcome to Example.\nWe keep data for 90 days.\nContact us any time.\nDisputes go to arbitration."


def scrape(text, **kwargs):
    return ScrapeResult(plain_text=text, **kwargs)


async def current_count(db, document_id):
    return await db.scalar(
        select(func.count()).select_from(DocumentVersion).where(
            DocumentVersion.document_id == document_id,
            DocumentVersion.is_current == True,
        )
    )


class TestVersionNumbers:
    @pytest.mark.parametrize("latest,expected", [
        (None, "1.0"),
        ("", "1.0"),
        ("1.0", "1.1"),
        ("1.9", "1.10"),
        ("2.4", "2.5"),
    ])
    def test_next_version_number(self, latest, expected):
        assert next_version_number(latest) == expected


class TestConsiderNewVersion:
    @pytest.mark.asyncio
    async def test_first_scrape_creates_version_one(self, db_session):
        document = await create_document(db_session)
        service = VersioningService(db_session)

        version = await service.consider_new_version(document, scrape(OLD_TEXT, final_url="https://example.com/legal/terms"))

        assert version.version_number == "1.0"
        assert version.is_current is True
        assert version.content_hash == scrape(OLD_TEXT).content_hash
        assert version.word_count == len(OLD_TEXT.split())
        assert await db_session.scalar(select(func.count()).select_from(VersionComparison)) == 0

        await db_session.refresh(document)
        assert document.scrape_status == "success"
        assert document.canonical_url == "https://example.com/legal/terms"

    @pytest.mark.asyncio
    async def test_identical_scrape_is_a_no_op(self, db_session):
        document = await create_document(db_session)
        service = VersioningService(db_session)
        await service.consider_new_version(document, scrape(OLD_TEXT))

        assert await service.consider_new_version(document, scrape(OLD_TEXT)) is None
        assert len(await service.list_versions(document.id)) == 1
        await db_session.refresh(document)
        assert document.scrape_status == "unchanged"

    @pytest.mark.asyncio
    async def test_changed_scrape_creates_version_and_comparison(self, db_session):
        document = await create_document(db_session)
        service = VersioningService(db_session)
        first = await service.consider_new_version(document, scrape(OLD_TEXT))

        second = await service.consider_new_version(document, scrape(NEW_TEXT))

        assert second.version_number == "1.1"
        assert await current_count(db_session, document.id) == 1
        await db_session.refresh(first)
        assert first.is_current is False
        assert (await service.get_current_version(document.id)).id == second.id

        comparison = await service.get_comparison(first.id, second.id)
        assert comparison is not None
        assert comparison.document_id == document.id
        assert comparison.diff_blocks
        assert comparison.additions_count >= 1
        assert comparison.deletions_count >= 1
        assert 0.0 < comparison.similarity_score < 1.0
        assert comparison.change_severity in ("minor", "moderate", "major", "critical")
        assert comparison.is_analyzed is False
        assert "diff-add" in comparison.diff_html

    @pytest.mark.asyncio
    async def test_versions_are_listed_newest_first(self, db_session):
        document = await create_document(db_session)
        service = VersioningService(db_session)
        for i in range(11):
            await service.consider_new_version(document, scrape(f"Terms revision {i}."))

        numbers = [v.version_number for v in await service.list_versions(document.id)]
        assert numbers[:3] == ["1.10", "1.9", "1.8"]
        assert numbers[-1] == "1.0"
        assert await service.get_latest_version_number(document.id) == "1.10"

    @pytest.mark.asyncio
    async def test_oversize_diff_still_records_version(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "DIFF_MAX_LINE_PRODUCT", 1)
        document = await create_document(db_session)
        service = VersioningService(db_session)
        await service.consider_new_version(document, scrape(OLD_TEXT))

        second = await service.consider_new_version(document, scrape(NEW_TEXT))

        assert second.version_number == "1.1"
        assert second.is_current is True
        assert await db_session.scalar(select(func.count()).select_from(VersionComparison)) == 0

    @pytest.mark.asyncio
    async def test_record_scrape_returns_comparison_against_replaced_version(self, db_session):
        document = await create_document(db_session)
        service = VersioningService(db_session)

        first, no_comparison = await service.record_scrape(document, scrape(OLD_TEXT))
        assert no_comparison is None
        assert await service.record_scrape(document, scrape(OLD_TEXT)) == (None, None)

        second, comparison = await service.record_scrape(document, scrape(NEW_TEXT))
        assert comparison.old_version_id == first.id
        assert comparison.new_version_id == second.id
        assert (await service.get_comparison(first.id, second.id)).id == comparison.id

    @pytest.mark.asyncio
    async def test_needs_new_version(self, db_session):
        document = await create_document(db_session)
        service = VersioningService(db_session)
        assert await service.needs_new_version(document.id, scrape(OLD_TEXT)) is True

        await service.consider_new_version(document, scrape(OLD_TEXT))
        assert await service.needs_new_version(document.id, scrape(OLD_TEXT)) is False
        assert await service.needs_new_version(document.id, scrape(NEW_TEXT)) is True

    @pytest.mark.asyncio
    async def test_second_current_version_is_rejected(self, db_session):
        document = await create_document(db_session)
        await create_version(db_session, document, OLD_TEXT, "1.0")

        with pytest.raises(IntegrityError):
            await create_version(db_session, document, NEW_TEXT, "1.1")
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_missing_document(self, db_session):
        with pytest.raises(ValueError, match="not found"):
            await VersioningService(db_session).get_document(uuid4())


class TestComparisons:
    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, db_session):
        document = await create_document(db_session)
        old = await create_version(db_session, document, OLD_TEXT, "1.0", is_current=False)
        new = await create_version(db_session, document, NEW_TEXT, "1.1", datetime(2024, 3, 19, 14, 0))
        service = VersioningService(db_session)

        first = await service.get_or_create_comparison(old, new)
        again = await service.get_or_create_comparison(old, new)

        assert again.id == first.id
        assert await db_session.scalar(select(func.count()).select_from(VersionComparison)) == 1

    @pytest.mark.asyncio
    async def test_versions_of_different_documents(self, db_session):
        a = await create_version(db_session, await create_document(db_session), OLD_TEXT)
        b = await create_version(db_session, await create_document(db_session, name="Other"), NEW_TEXT)

        with pytest.raises(ValueError, match="different documents"):
            await VersioningService(db_session).create_comparison(a, b)
