from enum import Enum
from sqlalchemy import (
    Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, text,
)
from policywatch.database import Base
from policywatch.shared.models import AuditMixin, JSONType


class DocumentType(str, Enum):
    TERMS_OF_SERVICE = "terms_of_service"
    PRIVACY_POLICY = "privacy_policy"
    COOKIE_POLICY = "cookie_policy"
    OTHER = "other"


class ScrapeStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class ChangeSeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class Document(Base, AuditMixin):
    """A tracked policy page (one URL) belonging to a company."""
    __tablename__ = "documents"

    name = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    document_type = Column(String, nullable=False, default=DocumentType.OTHER.value)
    source_url = Column(String, nullable=False)
    canonical_url = Column(String, nullable=True)
    scrape_status = Column(String, nullable=False, default=ScrapeStatus.PENDING.value)
    last_scraped_at = Column(DateTime, nullable=True)
    last_changed_at = Column(DateTime, nullable=True)


class DocumentVersion(Base, AuditMixin):
    """Immutable content snapshot. Only ``is_current`` changes after insert."""
    __tablename__ = "document_versions"
    __table_args__ = (
        # At most one current version per document
        Index(
            "uq_document_versions_current",
            "document_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        UniqueConstraint("document_id", "version_number", name="uq_document_versions_number"),
    )

    document_id = Column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(String(20), nullable=False)  # "major.minor"
    content_raw = Column(Text, nullable=True)
    content_text = Column(Text, nullable=False)
    content_markdown = Column(Text, nullable=True)
    content_hash = Column(String(64), nullable=False, index=True)  # SHA-256 of content_text
    word_count = Column(Integer, default=0, nullable=False)
    character_count = Column(Integer, default=0, nullable=False)
    language = Column(String(16), nullable=True)
    scraped_at = Column(DateTime, nullable=True)
    effective_date = Column(Date, nullable=True)
    extraction_metadata = Column(JSONType, nullable=True)  # http status, final url
    version_metadata = Column("metadata", JSONType, nullable=True)
    is_current = Column(Boolean, default=False, nullable=False)


class VersionComparison(Base, AuditMixin):
    __tablename__ = "version_comparisons"
    __table_args__ = (
        UniqueConstraint("old_version_id", "new_version_id", name="uq_version_comparisons_pair"),
    )

    document_id = Column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    old_version_id = Column(ForeignKey("document_versions.id", ondelete="CASCADE"), nullable=False)
    new_version_id = Column(ForeignKey("document_versions.id", ondelete="CASCADE"), nullable=False)

    # Deterministic diff output
    diff_html = Column(Text, nullable=True)
    diff_blocks = Column(JSONType, nullable=True)
    diff_stats = Column(JSONType, nullable=True)
    changes = Column(JSONType, nullable=True)  # paragraph-level added/removed
    additions_count = Column(Integer, default=0, nullable=False)
    deletions_count = Column(Integer, default=0, nullable=False)
    modifications_count = Column(Integer, default=0, nullable=False)
    similarity_score = Column(Float, nullable=True)
    change_severity = Column(String(16), nullable=True)

    # Filled in by change analysis
    is_analyzed = Column(Boolean, default=False, nullable=False)
    ai_change_summary = Column(Text, nullable=True)
    ai_impact_analysis = Column(Text, nullable=True)
    impact_score_delta = Column(Integer, nullable=True)
    change_flags = Column(JSONType, nullable=True)
    overall_direction = Column(String(16), nullable=True)
    chunk_summaries = Column(JSONType, nullable=True)
    is_suspicious_timing = Column(Boolean, default=False, nullable=False)
    suspicious_timing_score = Column(Integer, nullable=True)
    timing_context = Column(JSONType, nullable=True)
    ai_model_used = Column(String, nullable=True)
    ai_tokens_used = Column(Integer, nullable=True)
    ai_analysis_cost = Column(Float, nullable=True)
    ai_analyzed_at = Column(DateTime, nullable=True)
