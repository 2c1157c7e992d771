import asyncio
import hashlib
import json
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.documents.models import Document, DocumentVersion
from policywatch.llm.client import LLMResponse

CHUNK_PROMPT = "Analyze this section of a legal document"
SUMMARY_PROMPT = "write an overall summary"
FAQ_PROMPT = "frequently asked questions"
TAGS_PROMPT = "list tags describing"
CHANGE_PROMPT = "Compare these two versions"
CHANGE_CHUNK_PROMPT = "A passage of a legal document was edited"


class FakeLLM:
    """
    Stand-in for LLMClient. Each request is routed on the text of its last
    message: ``routes`` maps a substring to a reply (str, dict, list), an
    exception to raise, or a callable taking the prompt and returning either.
    ``delay`` maps a prompt to seconds to wait before replying; ``finished``
    records prompts in the order their replies were produced.
    """

    def __init__(self, routes: dict, model_name: str = "gpt-4o-mini",
                 input_tokens: int = 1000, output_tokens: int = 500, finish_reason: str = "stop", delay=None):
        self.routes = routes
        self.model_name = model_name
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.finish_reason = finish_reason
        self.delay = delay
        self.prompts: List[str] = []
        self.finished: List[str] = []

    def default_max_tokens(self) -> int:
        return 4096

    async def complete(self, messages, temperature=0.2, max_tokens=None, deadline=None) -> LLMResponse:
        prompt = messages[-1].content
        self.prompts.append(prompt)
        for marker, reply in self.routes.items():
            if marker in prompt:
                break
        else:
            raise AssertionError(f"Unexpected prompt: {prompt[:80]!r}")

        if self.delay is not None:
            await asyncio.sleep(self.delay(prompt))
        self.finished.append(prompt)
        if callable(reply):
            reply = reply(prompt)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return LLMResponse(
            content=content,
            model=self.model_name,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            finish_reason=self.finish_reason,
        )

    def count(self, marker: str) -> int:
        return sum(1 for prompt in self.prompts if marker in prompt)


def chunk_reply(summary: str, red=(), yellow=(), green=()) -> dict:
    return {"plain_summary": summary, "flags": {"red": list(red), "yellow": list(yellow), "green": list(green)}}


async def create_document(db: AsyncSession, **kwargs) -> Document:
    document = Document(
        name=kwargs.pop("name", "Example Terms"),
        source_url=kwargs.pop("source_url", "https://example.com/terms"),
        company_name=kwargs.pop("company_name", "Example Inc"),
        document_type=kwargs.pop("document_type", "terms_of_service"),
        **kwargs,
    )
    db.add(document)
    await db.commit()
    await db.refresh(document)
    return document


async def create_version(
    db: AsyncSession,
    document: Document,
    content: str,
    version_number: str = "1.0",
    scraped_at: Optional[datetime] = None,
    is_current: bool = True,
    **kwargs,
) -> DocumentVersion:
    """Insert a version directly, with a fixed scrape time so timing signals are predictable."""
    version = DocumentVersion(
        document_id=document.id,
        version_number=version_number,
        content_text=content,
        content_hash=hashlib.sha256(content.encode("utf-8")).hexdigest(),
        word_count=len(content.split()),
        character_count=len(content),
        # Tuesday afternoon: no timing signals
        scraped_at=scraped_at or datetime(2024, 3, 12, 14, 0),
        is_current=is_current,
        **kwargs,
    )
    db.add(version)
    await db.commit()
    await db.refresh(version)
    return version
