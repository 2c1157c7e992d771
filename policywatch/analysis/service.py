import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from langchain_core.messages import BaseMessage
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.analysis import prompts
from policywatch.analysis.chunker import chunk_content
from policywatch.analysis.json_repair import parse_model_json
from policywatch.analysis.models import AnalysisResult, AnalysisType
from policywatch.analysis.schemas import FLAG_COLORS, ChunkResult, FaqEntry, Flag, FlagSet
from policywatch.config import settings
from policywatch.documents.models import Document, DocumentVersion
from policywatch.llm.client import LLMClient, LLMResponse
from policywatch.llm.exceptions import LLMDeadlineExceeded, LLMError
from policywatch.llm.pricing import UsageTracker
from policywatch.scoring.service import ScoringEngine
from policywatch.timing.schemas import BehavioralReport, TimingSignal
from policywatch.timing.service import BehavioralSignalsService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], Awaitable[None]]

SIGNAL_FLAG_SEVERITY = {"critical": 10, "high": 8, "medium": 6, "low": 4}

TAG_FALLBACKS = {
    "forced_arbitration": "arbitration",
    "class_action_waiver": "class-action-waiver",
    "sell_data": "data-selling",
    "no_deletion_right": "no-deletion-rights",
    "automatic_consent": "automatic-consent",
    "hidden_terms": "hidden-terms",
    "excessive_data_collection": "excessive-data",
    "biometric_data": "biometric-data",
    "vague_data_sharing": "vague-sharing",
    "third_party_sharing": "third-party-sharing",
    "location_tracking": "location-data",
    "one_sided_terms": "one-sided-terms",
    "vague_language": "vague-language",
    "continued_use_consent": "implied-consent",
    "clear_deletion_rights": "data-deletion",
    "easy_opt_out": "opt-out",
    "plain_language": "plain-language",
    "no_data_selling": "no-data-selling",
    "minimal_data_collection": "minimal-data",
    "proactive_notifications": "notifications",
    "data_portability": "data-portability",
    "gdpr_compliant": "gdpr",
}

HOLIDAY_TAG_SIGNAL = "major_holiday_update"


class AnalysisCancelled(Exception):
    """Raised between chunk requests once the caller's cancel event is set."""


# ---------------------------------------------------------------------------
# Flag helpers
# ---------------------------------------------------------------------------

def normalize_flags(raw: Any, color: str) -> List[Flag]:
    """Turn model output for one color into Flag objects; junk entries are dropped."""
    if not isinstance(raw, list):
        return []
    flags = []
    for item in raw:
        if not isinstance(item, dict) or not str(item.get("type") or "").strip():
            logger.warning(f"Dropping malformed {color} flag: {item!r}")
            continue
        try:
            severity = int(item.get("severity", 5))
        except (TypeError, ValueError):
            severity = 5
        try:
            flags.append(Flag(
                type=str(item["type"]).strip(),
                description=str(item.get("description") or ""),
                section_reference=item.get("section_reference") or None,
                severity=max(1, min(10, severity)),
                color=color,
            ))
        except ValidationError as e:
            logger.warning(f"Dropping invalid {color} flag {item!r}: {e}")
    return flags


def dedupe_flags(flags: Sequence[Flag]) -> List[Flag]:
    """One flag per type, keeping the highest severity; first-seen order."""
    best: Dict[str, Flag] = {}
    for flag in flags:
        kept = best.get(flag.type)
        if kept is None or flag.severity > kept.severity:
            best[flag.type] = flag
    return list(best.values())


def dedupe_flag_set(flag_set: FlagSet) -> FlagSet:
    return FlagSet(**{color: dedupe_flags(getattr(flag_set, color)) for color in FLAG_COLORS})


def signals_to_flags(signals: Sequence[TimingSignal]) -> List[Flag]:
    flags = []
    for signal in signals:
        flags.append(Flag(
            type=signal.type,
            description=signal.description,
            section_reference="Update Timing",
            severity=SIGNAL_FLAG_SEVERITY.get(signal.severity, 5),
            color="red" if signal.severity in ("critical", "high") else "yellow",
        ))
    return flags


def fallback_tags(flag_set: FlagSet) -> List[str]:
    return _unique([TAG_FALLBACKS.get(flag.type, flag.type.replace("_", "-")) for flag in flag_set.all()])


def _unique(values: Sequence[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


def _clean_tags(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return _unique([tag.strip().lower() for tag in raw if isinstance(tag, str) and tag.strip()])


def _first_list(data: Any) -> Any:
    # JSON-mode providers wrap top-level arrays in an object
    if isinstance(data, dict):
        for value in data.values():
            if isinstance(value, list):
                return value
    return data


def _format_flag_list(flags: Sequence[Flag]) -> Optional[str]:
    if not flags:
        return None
    return "\n".join(f"- **{flag.type.replace('_', ' ').title()}**: {flag.description}" for flag in flags)


class PolicyAnalysisService:
    def __init__(
        self,
        db: AsyncSession,
        llm_client: Optional[LLMClient] = None,
        scoring_engine: Optional[ScoringEngine] = None,
        behavioral_service: Optional[BehavioralSignalsService] = None,
        chunk_concurrency: Optional[int] = None,
    ):
        self.db = db
        self.llm = llm_client or LLMClient.from_settings()
        self.scoring = scoring_engine or ScoringEngine()
        self.behavioral = behavioral_service or BehavioralSignalsService(db)
        self.chunk_concurrency = max(1, chunk_concurrency or settings.ANALYSIS_CHUNK_CONCURRENCY)

    async def get_version(self, version_id: UUID) -> DocumentVersion:
        result = await self.db.execute(select(DocumentVersion).where(DocumentVersion.id == version_id))
        version = result.scalar_one_or_none()
        if not version:
            raise ValueError(f"Document version {version_id} not found")
        return version

    async def get_current_result(
        self, version_id: UUID, analysis_type: str = AnalysisType.FULL_ANALYSIS.value
    ) -> Optional[AnalysisResult]:
        result = await self.db.execute(
            select(AnalysisResult).where(
                AnalysisResult.document_version_id == version_id,
                AnalysisResult.analysis_type == analysis_type,
                AnalysisResult.is_current == True,
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def analyze(
        self,
        version: DocumentVersion,
        analysis_type: str = AnalysisType.FULL_ANALYSIS.value,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressCallback] = None,
        deadline: Optional[float] = None,
    ) -> AnalysisResult:
        """
        Chunk the version's content, ask the model for flags per chunk, then
        summarize, score and persist a new current AnalysisResult.

        ``deadline`` is an absolute ``time.monotonic()`` value; it defaults to
        ANALYSIS_DEADLINE_SECONDS from now.
        """
        # 1. Validate before any model call
        content = version.content_markdown or version.content_text or ""
        if not content.strip():
            raise ValueError(f"Document version {version.id} has no content to analyze")
        if deadline is None:
            deadline = time.monotonic() + settings.ANALYSIS_DEADLINE_SECONDS

        document = await self.db.get(Document, version.document_id)
        document_type = (document.document_type if document else "document").replace("_", " ")
        company_name = (document.company_name if document else None) or "the company"

        usage = UsageTracker()
        errors: List[str] = []

        # 2. Chunk
        chunks = chunk_content(content)
        logger.info(f"Analyzing version {version.id}: {len(chunks)} chunk(s), model {self.llm.model_name}")

        # 3-4. Per-chunk analysis
        chunk_results = await self._analyze_chunks(chunks, usage, deadline, cancel_event, progress)

        # 5. Aggregate
        reduced = False
        summaries: List[str] = []
        merged = FlagSet()
        for chunk in chunk_results:
            if chunk.plain_summary:
                summaries.append(chunk.plain_summary)
            for color in FLAG_COLORS:
                getattr(merged, color).extend(getattr(chunk.flags, color))
            if chunk.error:
                errors.append(chunk.error)
                reduced = True
            if chunk.truncated:
                errors.append(f"Chunk {chunk.index + 1}: response truncated at the token limit")
                reduced = True
            if chunk.repaired:
                errors.append(f"Chunk {chunk.index + 1}: malformed JSON was repaired, findings may be incomplete")
                reduced = True
        flag_set = dedupe_flag_set(merged)

        # 6. Executive summary
        counts = flag_set.counts()
        summary, recommendations = await self._generate_summary(
            summaries, counts, document_type, company_name, usage, deadline, errors
        )

        # 7. Behavioral signals become flags before scoring
        behavior = await self._behavioral_report(version, errors)
        for flag in signals_to_flags(behavior.signals):
            getattr(flag_set, flag.color).append(flag)
        flag_set = dedupe_flag_set(flag_set)

        # 8-9. FAQ and tags
        if analysis_type == AnalysisType.QUICK_SCAN.value:
            faq: List[FaqEntry] = []
            tags = fallback_tags(flag_set)
        else:
            faq = await self._generate_faq(flag_set, document_type, usage, deadline, errors)
            tags = await self._generate_tags(flag_set, summaries, document_type, usage, deadline, errors)
        if behavior.signals:
            tags.append("timing-concerns")
            if any(signal.type == HOLIDAY_TAG_SIGNAL for signal in behavior.signals):
                tags.append("holiday-update")
        tags = _unique(tags)

        # 10. Score
        all_flags = flag_set.all()
        report = self.scoring.process_analysis(all_flags)
        breakdown = self.scoring.score_breakdown(all_flags)

        # 11. Persist as the new current result
        model_used = usage.model or self.llm.model_name
        result = AnalysisResult(
            document_version_id=version.id,
            analysis_type=analysis_type,
            overall_score=report.total_score,
            overall_rating=report.grade,
            summary=summary,
            key_concerns=_format_flag_list(flag_set.red),
            positive_aspects=_format_flag_list(flag_set.green),
            recommendations=recommendations,
            extracted_data={
                "faq": [entry.model_dump() for entry in faq],
                "dimension_scores": report.dimension_scores,
                "grade_label": report.grade_label,
                "grade_color": report.grade_color,
                "flag_summary": report.flag_summary,
                "chunk_summaries": summaries,
                "score_breakdown": [entry.model_dump() for entry in breakdown],
            },
            flags={color: [flag.model_dump() for flag in getattr(flag_set, color)] for color in FLAG_COLORS},
            behavioral_signals=behavior.model_dump(mode="json"),
            tags=tags,
            model_used=model_used,
            tokens_used=usage.total_tokens,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            analysis_cost=usage.cost(model_used),
            confidence="reduced" if reduced else "high",
            processing_errors=errors or None,
        )
        await self._store_current(result)

        logger.info(
            f"Version {version.id} analyzed: score {report.total_score} ({report.grade}), "
            f"{usage.calls} call(s), {usage.total_tokens} tokens, ${result.analysis_cost}"
        )
        return result

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def _analyze_chunks(
        self,
        chunks: List[str],
        usage: UsageTracker,
        deadline: float,
        cancel_event: Optional[asyncio.Event],
        progress: Optional[ProgressCallback],
    ) -> List[ChunkResult]:
        total = len(chunks)
        semaphore = asyncio.Semaphore(self.chunk_concurrency)
        progress_lock = asyncio.Lock()
        done = 0

        async def run(index: int, chunk: str) -> ChunkResult:
            nonlocal done
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    raise AnalysisCancelled(f"Analysis cancelled before chunk {index + 1} of {total}")
                result = await self._analyze_chunk(index, total, chunk, usage, deadline)
            if progress is not None:
                async with progress_lock:
                    done += 1
                    await progress(done, total, f"Analyzed chunk {index + 1} of {total}")
            return result

        tasks = [asyncio.ensure_future(run(index, chunk)) for index, chunk in enumerate(chunks)]
        try:
            # gather keeps chunk order regardless of completion order
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _analyze_chunk(
        self, index: int, total: int, chunk: str, usage: UsageTracker, deadline: float
    ) -> ChunkResult:
        messages = prompts.CHUNK_ANALYSIS_TEMPLATE.format_messages(
            index=index + 1,
            total=total,
            red_types=", ".join(prompts.RED_FLAG_TYPES),
            yellow_types=", ".join(prompts.YELLOW_FLAG_TYPES),
            green_types=", ".join(prompts.GREEN_FLAG_TYPES),
            chunk=chunk,
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
            logger.warning(f"Chunk {index + 1}/{total} failed: {e}")
            return ChunkResult(index=index, error=f"Chunk {index + 1}: {e}")

        usage.record(response)
        data, repaired = parse_model_json(response.content)
        if not isinstance(data, dict):
            logger.warning(f"Chunk {index + 1}/{total}: unparseable response ({len(response.content)} chars)")
            return ChunkResult(
                index=index,
                error=f"Chunk {index + 1}: response was not valid JSON",
                truncated=response.was_truncated,
            )

        raw_flags = data.get("flags") if isinstance(data.get("flags"), dict) else {}
        return ChunkResult(
            index=index,
            plain_summary=str(data.get("plain_summary") or "").strip(),
            flags=FlagSet(**{color: normalize_flags(raw_flags.get(color), color) for color in FLAG_COLORS}),
            repaired=repaired,
            truncated=response.was_truncated,
        )

    # ------------------------------------------------------------------
    # Document-level requests
    # ------------------------------------------------------------------

    async def _request_json(
        self,
        messages: List[BaseMessage],
        temperature: float,
        usage: UsageTracker,
        deadline: float,
        errors: List[str],
        label: str,
    ) -> Any:
        """One document-level call. None on failure; deadline still propagates."""
        try:
            response: LLMResponse = await self.llm.complete(
                messages,
                temperature=temperature,
                max_tokens=self.llm.default_max_tokens(),
                deadline=deadline,
            )
        except LLMDeadlineExceeded:
            raise
        except LLMError as e:
            logger.warning(f"{label} request failed: {e}")
            errors.append(f"{label}: {e}")
            return None

        usage.record(response)
        data, repaired = parse_model_json(response.content)
        if data is None:
            errors.append(f"{label}: response was not valid JSON")
        elif repaired:
            errors.append(f"{label}: malformed JSON was repaired")
        return data

    async def _generate_summary(
        self,
        summaries: List[str],
        counts: Dict[str, int],
        document_type: str,
        company_name: str,
        usage: UsageTracker,
        deadline: float,
        errors: List[str],
    ) -> Tuple[Optional[str], Optional[str]]:
        messages = prompts.OVERALL_SUMMARY_TEMPLATE.format_messages(
            document_type=document_type,
            company_name=company_name,
            chunk_summaries="\n\n".join(f"Section {i + 1}: {s}" for i, s in enumerate(summaries)) or "(none)",
            red_count=counts["red"],
            yellow_count=counts["yellow"],
            green_count=counts["green"],
        )
        data = await self._request_json(messages, 0.3, usage, deadline, errors, "Summary")
        if isinstance(data, dict) and isinstance(data.get("summary"), str) and data["summary"].strip():
            recommendations = data.get("recommendations")
            if isinstance(recommendations, list):
                recommendations = "\n".join(f"{i + 1}. {item}" for i, item in enumerate(recommendations))
            return data["summary"].strip(), recommendations or None

        logger.info("Falling back to chunk summaries for the executive summary")
        return ("\n\n".join(summaries[:3]) or None), None

    async def _generate_faq(
        self,
        flag_set: FlagSet,
        document_type: str,
        usage: UsageTracker,
        deadline: float,
        errors: List[str],
    ) -> List[FaqEntry]:
        messages = prompts.FAQ_TEMPLATE.format_messages(
            document_type=document_type,
            red_types=", ".join(flag_set.types("red")) or "none",
            yellow_types=", ".join(flag_set.types("yellow")) or "none",
            green_types=", ".join(flag_set.types("green")) or "none",
        )
        data = _first_list(await self._request_json(messages, 0.4, usage, deadline, errors, "FAQ"))
        if not isinstance(data, list):
            return []
        faq = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                faq.append(FaqEntry.model_validate(item))
            except ValidationError as e:
                logger.debug(f"Skipping malformed FAQ entry: {e}")
        return faq

    async def _generate_tags(
        self,
        flag_set: FlagSet,
        summaries: List[str],
        document_type: str,
        usage: UsageTracker,
        deadline: float,
        errors: List[str],
    ) -> List[str]:
        messages = prompts.TAGS_TEMPLATE.format_messages(
            document_type=document_type,
            summaries="\n".join(summaries[:5]) or "(none)",
            red_types=", ".join(flag_set.types("red")) or "none",
            yellow_types=", ".join(flag_set.types("yellow")) or "none",
            green_types=", ".join(flag_set.types("green")) or "none",
        )
        tags = _clean_tags(_first_list(await self._request_json(messages, 0.2, usage, deadline, errors, "Tags")))
        return tags or fallback_tags(flag_set)

    async def _behavioral_report(self, version: DocumentVersion, errors: List[str]) -> BehavioralReport:
        try:
            return await self.behavioral.signals_for_version(version)
        except ValueError as e:
            logger.warning(f"Behavioral signals unavailable for version {version.id}: {e}")
            errors.append(f"Behavioral signals: {e}")
            return BehavioralReport()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _store_current(self, result: AnalysisResult) -> None:
        """Insert ``result`` as current, clearing the previous current result in the same transaction."""
        try:
            await self.db.execute(
                select(DocumentVersion.id).where(DocumentVersion.id == result.document_version_id).with_for_update()
            )
            await self.db.execute(
                update(AnalysisResult)
                .where(
                    AnalysisResult.document_version_id == result.document_version_id,
                    AnalysisResult.analysis_type == result.analysis_type,
                    AnalysisResult.is_current == True,
                )
                .values(is_current=False)
            )
            result.is_current = True
            self.db.add(result)
            await self.db.flush()
            await self.db.commit()
            await self.db.refresh(result)
        except Exception:
            await self.db.rollback()
            raise
