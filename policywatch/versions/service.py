import logging
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.diff import engine as diff_engine
from policywatch.documents.models import Document, DocumentVersion, ScrapeStatus, VersionComparison
from policywatch.documents.schemas import ScrapeResult

logger = logging.getLogger(__name__)


def _version_key(version_number: str) -> tuple:
    major, _, minor = version_number.partition(".")
    try:
        return int(major), int(minor or 0)
    except ValueError:
        return 0, 0


def next_version_number(latest: Optional[str]) -> str:
    """'1.0' for the first version, then the minor number is incremented."""
    if not latest:
        return "1.0"
    major, minor = _version_key(latest)
    return f"{major}.{minor + 1}"


class VersioningService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_document(self, document_id: UUID, lock: bool = False) -> Document:
        stmt = select(Document).where(Document.id == document_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        document = result.scalar_one_or_none()
        if not document:
            raise ValueError(f"Document {document_id} not found")
        return document

    async def get_current_version(self, document_id: UUID) -> Optional[DocumentVersion]:
        result = await self.db.execute(
            select(DocumentVersion).where(
                DocumentVersion.document_id == document_id,
                DocumentVersion.is_current == True,
            )
        )
        return result.scalar_one_or_none()

    async def list_versions(self, document_id: UUID) -> List[DocumentVersion]:
        result = await self.db.execute(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(desc(DocumentVersion.created_at))
        )
        return sorted(result.scalars().all(), key=lambda v: _version_key(v.version_number), reverse=True)

    async def get_latest_version_number(self, document_id: UUID) -> Optional[str]:
        result = await self.db.execute(
            select(DocumentVersion.version_number).where(DocumentVersion.document_id == document_id)
        )
        numbers = result.scalars().all()
        return max(numbers, key=_version_key) if numbers else None

    async def needs_new_version(self, document_id: UUID, scrape: ScrapeResult) -> bool:
        current = await self.get_current_version(document_id)
        return current is None or current.content_hash != scrape.content_hash

    async def consider_new_version(self, document: Document, scrape: ScrapeResult) -> Optional[DocumentVersion]:
        """Record a scrape. Returns the new current version, or None when unchanged."""
        version, _ = await self.record_scrape(document, scrape)
        return version

    async def record_scrape(
        self, document: Document, scrape: ScrapeResult
    ) -> Tuple[Optional[DocumentVersion], Optional[VersionComparison]]:
        """
        Record a scrape. Returns ``(version, comparison)``: the new current
        version and its comparison against the version it replaced. Both are
        None when the content hash matches the current version; the comparison
        is None for a first version.

        The previous version is read, its ``is_current`` cleared and the new one
        set in the same transaction, under a row lock on the document.
        """
        now = datetime.utcnow()
        try:
            locked = await self.get_document(document.id, lock=True)
            previous = await self.get_current_version(locked.id)

            if previous is not None and previous.content_hash == scrape.content_hash:
                locked.last_scraped_at = now
                locked.scrape_status = ScrapeStatus.UNCHANGED.value
                await self.db.commit()
                logger.info(f"Document {locked.id}: content unchanged (hash {scrape.content_hash[:12]})")
                return None, None

            version_number = next_version_number(await self.get_latest_version_number(locked.id))

            await self.db.execute(
                update(DocumentVersion)
                .where(DocumentVersion.document_id == locked.id, DocumentVersion.is_current == True)
                .values(is_current=False)
            )
            if previous is not None:
                previous.is_current = False

            version = DocumentVersion(
                document_id=locked.id,
                version_number=version_number,
                content_raw=scrape.raw_html,
                content_text=scrape.plain_text,
                content_markdown=scrape.markdown,
                content_hash=scrape.content_hash,
                word_count=scrape.word_count,
                character_count=scrape.character_count,
                language=scrape.language,
                scraped_at=now,
                effective_date=scrape.effective_date,
                extraction_metadata={"http_status": scrape.http_status, "final_url": scrape.final_url},
                version_metadata=scrape.metadata,
                is_current=True,
            )
            self.db.add(version)

            locked.last_scraped_at = now
            locked.last_changed_at = now
            locked.scrape_status = ScrapeStatus.SUCCESS.value
            if scrape.final_url:
                locked.canonical_url = scrape.final_url

            await self.db.flush()
            await self.db.commit()
            await self.db.refresh(version)
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Document {locked.id}: created version {version.version_number}")

        comparison = None
        if previous is not None:
            try:
                comparison = await self.get_or_create_comparison(previous, version)
            except ValueError as e:
                # Oversize diff input; the comparison can be created later
                logger.error(f"Comparison for version {version.id} not created: {e}")

        return version, comparison

    async def get_comparison(self, old_version_id: UUID, new_version_id: UUID) -> Optional[VersionComparison]:
        result = await self.db.execute(
            select(VersionComparison).where(
                VersionComparison.old_version_id == old_version_id,
                VersionComparison.new_version_id == new_version_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_comparison(self, old: DocumentVersion, new: DocumentVersion) -> VersionComparison:
        existing = await self.get_comparison(old.id, new.id)
        if existing:
            return existing
        return await self.create_comparison(old, new)

    async def create_comparison(self, old: DocumentVersion, new: DocumentVersion) -> VersionComparison:
        if old.document_id != new.document_id:
            raise ValueError("Cannot compare versions of different documents")

        old_text = old.content_text or ""
        new_text = new.content_text or ""
        diff = diff_engine.generate_diff(old_text, new_text)
        counts = diff_engine.count_changes(old_text, new_text)
        similarity = diff_engine.calculate_similarity(old_text, new_text)

        comparison = VersionComparison(
            document_id=new.document_id,
            old_version_id=old.id,
            new_version_id=new.id,
            diff_html=diff_engine.generate_html_diff(old_text, new_text),
            diff_blocks=diff["blocks"],
            diff_stats=diff["stats"],
            changes=diff_engine.extract_changed_sections(old_text, new_text),
            additions_count=counts["additions"],
            deletions_count=counts["deletions"],
            modifications_count=counts["modifications"],
            similarity_score=similarity,
            change_severity=diff_engine.severity_for_similarity(similarity),
            is_analyzed=False,
        )
        self.db.add(comparison)
        await self.db.commit()
        await self.db.refresh(comparison)

        logger.info(
            f"Comparison {comparison.id}: {old.version_number} -> {new.version_number}, "
            f"similarity {similarity}, severity {comparison.change_severity}"
        )
        return comparison
