import hashlib
import logging
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.analysis import prompts
from policywatch.analysis.json_repair import parse_model_json
from policywatch.config import settings
from policywatch.diff import engine as diff_engine
from policywatch.documents.models import Document, DocumentVersion, VersionComparison
from policywatch.llm.client import LLMClient
from policywatch.llm.exceptions import LLMDeadlineExceeded, LLMError
from policywatch.llm.pricing import UsageTracker
from policywatch.timing.service import SuspiciousTimingService

logger = logging.getLogger(__name__)

FAILED_SUMMARY = "Analysis could not be completed."

NEGATIVE_CHANGE_TYPES: Dict[str, int] = {
    "forced_arbitration": -20,
    "class_action_waiver": -15,
    "sell_data": -25,
    "removed_deletion_right": -15,
    "extended_retention": -10,
    "expanded_sharing": -12,
    "reduced_notice": -8,
    "automatic_consent": -10,
    "liability_expansion": -10,
}

POSITIVE_CHANGE_TYPES: Dict[str, int] = {
    "added_deletion_right": 15,
    "limited_sharing": 12,
    "shorter_retention": 8,
    "added_opt_out": 10,
    "clearer_language": 5,
    "added_notice": 8,
    "enhanced_security": 5,
}

CHANGE_FLAG_KEYS = ("new_clauses", "removed_clauses", "modified_clauses", "neutral_changes")

_HALF = Decimal("0.5")


def _severity_fraction(clause: Mapping[str, Any]) -> Decimal:
    try:
        severity = int(clause.get("severity", 5))
    except (TypeError, ValueError):
        severity = 5
    return Decimal(severity) / Decimal(10)


def _clauses(change_flags: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    return [c for c in change_flags.get(key) or [] if isinstance(c, Mapping)]


def sample_content(content: str, max_chars: Optional[int] = None) -> str:
    """Beginning, middle and end of ``content``, each a third of ``max_chars``."""
    max_chars = max_chars or settings.CHANGE_SAMPLE_CHARS
    if len(content) <= max_chars:
        return content
    section = max_chars // 3
    middle_start = len(content) // 2 - section // 2
    return (
        content[:section]
        + "\n\n[...middle section...]\n\n"
        + content[middle_start:middle_start + section]
        + "\n\n[...end section...]\n\n"
        + content[-section:]
    )


def _chunk_hash(removed_text: str, added_text: str) -> str:
    return hashlib.sha256(f"{removed_text}\x00{added_text}".encode("utf-8")).hexdigest()


class ChangeAnalysisService:
    """AI annotation of a VersionComparison: summary, change flags, impact delta, timing."""

    def __init__(
        self,
        db: AsyncSession,
        llm_client: Optional[LLMClient] = None,
        timing_service: Optional[SuspiciousTimingService] = None,
    ):
        self.db = db
        self.llm = llm_client or LLMClient.from_settings()
        self.timing = timing_service or SuspiciousTimingService()

    @staticmethod
    def calculate_impact_delta(change_flags: Optional[Mapping[str, Any]]) -> int:
        """
        Estimated score movement caused by a change set. New negative clauses
        cost their base penalty scaled by severity, unknown new clauses cost
        their severity; removing a positive feature costs its bonus, removing a
        negative one gives its penalty back; modifications count half.
        """
        change_flags = change_flags or {}
        delta = Decimal(0)

        for clause in _clauses(change_flags, "new_clauses"):
            clause_type = clause.get("type") or ""
            if clause_type in NEGATIVE_CHANGE_TYPES:
                delta += NEGATIVE_CHANGE_TYPES[clause_type] * _severity_fraction(clause)
            else:
                delta -= _severity_fraction(clause) * 10

        for clause in _clauses(change_flags, "removed_clauses"):
            clause_type = clause.get("type") or ""
            if clause_type in POSITIVE_CHANGE_TYPES:
                delta -= POSITIVE_CHANGE_TYPES[clause_type] * _severity_fraction(clause)
            if clause_type in NEGATIVE_CHANGE_TYPES:
                delta -= NEGATIVE_CHANGE_TYPES[clause_type] * _severity_fraction(clause)

        for clause in _clauses(change_flags, "modified_clauses"):
            clause_type = clause.get("type") or ""
            if clause_type in NEGATIVE_CHANGE_TYPES:
                delta += NEGATIVE_CHANGE_TYPES[clause_type] * _severity_fraction(clause) * _HALF
            elif clause_type in POSITIVE_CHANGE_TYPES:
                delta += POSITIVE_CHANGE_TYPES[clause_type] * _severity_fraction(clause) * _HALF

        return int(delta.quantize(Decimal(1), rounding=ROUND_HALF_UP))

    async def get_comparison(self, comparison_id: UUID) -> VersionComparison:
        comparison = await self.db.get(VersionComparison, comparison_id)
        if not comparison:
            raise ValueError(f"Comparison {comparison_id} not found")
        return comparison

    async def analyze_comparison(self, comparison: Union[VersionComparison, UUID]) -> VersionComparison:
        if not isinstance(comparison, VersionComparison):
            comparison = await self.get_comparison(comparison)

        old_version = await self.db.get(DocumentVersion, comparison.old_version_id)
        new_version = await self.db.get(DocumentVersion, comparison.new_version_id)
        if not old_version or not new_version:
            raise ValueError(f"Comparison {comparison.id} is missing version references")

        document = await self.db.get(Document, comparison.document_id)
        document_type = document.document_type.replace("_", " ") if document else "legal document"
        company_name = (document.company_name if document else None) or "the company"

        deadline = time.monotonic() + settings.ANALYSIS_DEADLINE_SECONDS
        usage = UsageTracker()
        logger.info(f"Starting change analysis for comparison {comparison.id}")

        # 1. Overall change analysis
        analysis = await self._analyze_changes(
            old_version, new_version, comparison.changes or [], document_type, company_name, usage, deadline
        )
        impact_delta = self.calculate_impact_delta(analysis["change_flags"])

        # 2. Timing of the new version, weighted by the impact
        verdict = self.timing.evaluate(new_version, impact_delta)

        failed = not analysis["summary"] or analysis["summary"] == FAILED_SUMMARY
        if failed and comparison.is_analyzed:
            logger.warning(f"Change analysis for comparison {comparison.id} failed; keeping previous results")
            return comparison

        # 3. Per-edit summaries
        if failed:
            chunk_summaries = list(comparison.chunk_summaries or [])
        else:
            chunk_summaries = await self._summarize_change_chunks(
                comparison, old_version, new_version, usage, deadline
            )

        model_used = usage.model or self.llm.model_name
        comparison.ai_change_summary = analysis["summary"]
        comparison.ai_impact_analysis = analysis["impact_analysis"]
        comparison.impact_score_delta = impact_delta
        comparison.change_flags = analysis["change_flags"]
        comparison.overall_direction = analysis["overall_direction"]
        comparison.chunk_summaries = chunk_summaries
        comparison.is_suspicious_timing = verdict.is_suspicious
        comparison.suspicious_timing_score = verdict.score
        comparison.timing_context = verdict.context
        comparison.ai_model_used = model_used
        comparison.ai_tokens_used = usage.total_tokens
        comparison.ai_analysis_cost = usage.cost(model_used)
        comparison.ai_analyzed_at = datetime.utcnow()
        if not failed and not comparison.is_analyzed:
            comparison.is_analyzed = True

        await self.db.commit()
        await self.db.refresh(comparison)

        if failed:
            logger.warning(f"Change analysis for comparison {comparison.id} did not produce a summary")
        else:
            logger.info(
                f"Change analysis for comparison {comparison.id} done: impact {impact_delta}, "
                f"direction {comparison.overall_direction}, suspicious timing {verdict.is_suspicious}"
            )
        return comparison

    async def _analyze_changes(
        self,
        old_version: DocumentVersion,
        new_version: DocumentVersion,
        structured_changes: List[Dict[str, Any]],
        document_type: str,
        company_name: str,
        usage: UsageTracker,
        deadline: float,
    ) -> Dict[str, Any]:
        change_context = ""
        if structured_changes:
            lines = ["Structural changes detected:"]
            for change in structured_changes:
                lines.append(f"- [{change.get('type', 'unknown')}]: {(change.get('content') or '')[:200]}...")
            change_context = "\n".join(lines)

        messages = prompts.CHANGE_ANALYSIS_TEMPLATE.format_messages(
            document_type=document_type,
            company_name=company_name,
            change_context=change_context,
            old_sample=sample_content(old_version.content_text or ""),
            new_sample=sample_content(new_version.content_text or ""),
        )

        try:
            response = await self.llm.complete(
                messages,
                temperature=0.2,
                max_tokens=settings.ANALYSIS_REASONING_MAX_TOKENS,
                deadline=deadline,
            )
        except LLMDeadlineExceeded:
            raise
        except LLMError as e:
            logger.error(f"Change analysis request failed: {e}")
            return self._failed_analysis()

        usage.record(response)
        if response.was_truncated:
            logger.warning(f"Change analysis response truncated ({response.output_tokens} output tokens)")

        data, repaired = parse_model_json(response.content)
        if not isinstance(data, dict):
            logger.error(f"Change analysis returned unparseable content: {response.content[:500]!r}")
            return self._failed_analysis()
        if repaired:
            logger.warning("Change analysis JSON was repaired; change flags may be incomplete")

        raw_flags = data.get("change_flags") if isinstance(data.get("change_flags"), dict) else {}
        return {
            "summary": data.get("summary") if isinstance(data.get("summary"), str) else None,
            "impact_analysis": data.get("impact_analysis") if isinstance(data.get("impact_analysis"), str) else None,
            "change_flags": {key: _clauses(raw_flags, key) for key in CHANGE_FLAG_KEYS},
            "overall_direction": str(data.get("overall_direction") or "unknown").lower(),
        }

    @staticmethod
    def _failed_analysis() -> Dict[str, Any]:
        return {
            "summary": FAILED_SUMMARY,
            "impact_analysis": None,
            "change_flags": {},
            "overall_direction": "unknown",
        }

    async def _summarize_change_chunks(
        self,
        comparison: VersionComparison,
        old_version: DocumentVersion,
        new_version: DocumentVersion,
        usage: UsageTracker,
        deadline: float,
    ) -> List[Dict[str, Any]]:
        try:
            diff = diff_engine.generate_diff(
                old_version.content_markdown or old_version.content_text or "",
                new_version.content_markdown or new_version.content_text or "",
            )
        except ValueError as e:
            logger.warning(f"Skipping per-change summaries for comparison {comparison.id}: {e}")
            return list(comparison.chunk_summaries or [])

        # Summaries from an earlier run are reused when the edit is unchanged
        previous = {entry.get("content_hash"): entry for entry in comparison.chunk_summaries or []}
        summaries = []
        for index, chunk in enumerate(diff_engine.identify_change_chunks(diff["blocks"])):
            removed_text = chunk["removed_text"].strip()
            added_text = chunk["added_text"].strip()
            if not removed_text and not added_text:
                continue

            content_hash = _chunk_hash(removed_text, added_text)
            if content_hash in previous:
                summaries.append({**previous[content_hash], "chunk_index": index})
                continue

            data = await self._summarize_chunk(removed_text, added_text, usage, deadline)
            if data is None:
                logger.warning(f"Change {index + 1} of comparison {comparison.id} returned no summary")
                continue

            summaries.append({
                "chunk_index": index,
                "content_hash": content_hash,
                "start_old_line": chunk.get("start_old_line"),
                "start_new_line": chunk.get("start_new_line"),
                "title": data.get("title"),
                "summary": data.get("summary"),
                "impact": data.get("impact") or "neutral",
                "grade": data.get("grade"),
                "reason": data.get("reason"),
            })
        return summaries

    async def _summarize_chunk(
        self, removed_text: str, added_text: str, usage: UsageTracker, deadline: float
    ) -> Optional[Dict[str, Any]]:
        messages = prompts.CHANGE_CHUNK_TEMPLATE.format_messages(
            removed_text=removed_text or "(nothing removed)",
            added_text=added_text or "(nothing added)",
        )
        try:
            response = await self.llm.complete(
                messages,
                temperature=0.2,
                max_tokens=self.llm.default_max_tokens(),
                deadline=deadline,
            )
        except LLMDeadlineExceeded:
            raise
        except LLMError as e:
            logger.warning(f"Change summary request failed: {e}")
            return None

        usage.record(response)
        data, _ = parse_model_json(response.content)
        return data if isinstance(data, dict) else None
