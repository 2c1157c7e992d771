from datetime import datetime
from enum import Enum
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from policywatch.database import Base
from policywatch.shared.models import AuditMixin, JSONType


class AnalysisType(str, Enum):
    FULL_ANALYSIS = "full_analysis"
    CHANGE_ANALYSIS = "change_analysis"
    SUMMARY = "summary"
    QUICK_SCAN = "quick_scan"


class AnalysisJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisResult(Base, AuditMixin):
    """Full-document analysis of one version. Immutable except ``is_current``."""
    __tablename__ = "analysis_results"
    __table_args__ = (
        Index(
            "uq_analysis_results_current",
            "document_version_id",
            "analysis_type",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    document_version_id = Column(ForeignKey("document_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    analysis_type = Column(String(32), nullable=False, default=AnalysisType.FULL_ANALYSIS.value)
    overall_score = Column(Integer, nullable=True)
    overall_rating = Column(String(2), nullable=True)  # letter grade
    summary = Column(Text, nullable=True)
    key_concerns = Column(Text, nullable=True)
    positive_aspects = Column(Text, nullable=True)
    recommendations = Column(Text, nullable=True)
    extracted_data = Column(JSONType, nullable=True)  # faq, dimension_scores, chunk_summaries
    flags = Column(JSONType, nullable=True)  # {"red": [...], "yellow": [...], "green": [...]}
    behavioral_signals = Column(JSONType, nullable=True)
    tags = Column(JSONType, nullable=True)
    model_used = Column(String, nullable=True)
    tokens_used = Column(Integer, default=0, nullable=False)
    input_tokens = Column(Integer, default=0, nullable=False)
    output_tokens = Column(Integer, default=0, nullable=False)
    analysis_cost = Column(Float, default=0.0, nullable=False)
    confidence = Column(String(16), default="high", nullable=False)
    processing_errors = Column(JSONType, nullable=True)
    is_current = Column(Boolean, default=False, nullable=False)


class AnalysisJob(Base, AuditMixin):
    """Bookkeeping for one analysis run; never left in ``running``."""
    __tablename__ = "analysis_jobs"

    document_version_id = Column(ForeignKey("document_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    analysis_type = Column(String(32), nullable=False, default=AnalysisType.FULL_ANALYSIS.value)
    status = Column(String(16), nullable=False, default=AnalysisJobStatus.PENDING.value)
    model_used = Column(String, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    analysis_cost = Column(Float, nullable=True)
    analysis_result_id = Column(ForeignKey("analysis_results.id", ondelete="SET NULL"), nullable=True)
    progress_log = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)
    total_chunks = Column(Integer, nullable=True)
    processed_chunks = Column(Integer, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    def log_progress(self, message: str) -> None:
        # Reassign so SQLAlchemy sees the JSON column as changed
        self.progress_log = [
            *(self.progress_log or []),
            {"timestamp": datetime.utcnow().isoformat(), "message": message},
        ]

    def mark_running(self) -> None:
        self.status = AnalysisJobStatus.RUNNING.value
        self.started_at = datetime.utcnow()
        self.log_progress("Analysis started")

    def _finish(self) -> None:
        self.completed_at = datetime.utcnow()
        if self.started_at:
            self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)

    def mark_completed(self, result_id, model_used, tokens_used, analysis_cost) -> None:
        self.status = AnalysisJobStatus.COMPLETED.value
        self.analysis_result_id = result_id
        self.model_used = model_used
        self.tokens_used = tokens_used
        self.analysis_cost = analysis_cost
        self._finish()
        self.log_progress("Analysis completed")

    def mark_failed(self, error_message: str) -> None:
        self.status = AnalysisJobStatus.FAILED.value
        self.error_message = error_message
        self._finish()
        self.log_progress(f"Analysis failed: {error_message}")
