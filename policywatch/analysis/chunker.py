import logging
import re
from typing import List, Optional

from policywatch.config import settings

logger = logging.getLogger(__name__)

# Split *before* level-1/level-2 markdown headings so each section keeps its heading.
_HEADING_SPLIT = re.compile(r"(?=^#{1,2}\s)", re.MULTILINE)
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n+")


def default_chunk_chars() -> int:
    """Per-chunk character budget, sized from the model token budget."""
    return settings.CHUNK_TOKENS * settings.APPROX_CHARS_PER_TOKEN


def chunk_content(text: str, max_chars: Optional[int] = None) -> List[str]:
    """
    Split text into chunks of at most ``max_chars`` characters, in document order.

    Prefers heading boundaries; a section that alone exceeds the budget is
    split on blank-line paragraph boundaries. A single paragraph larger than
    the budget is emitted whole.
    """
    if max_chars is None:
        max_chars = default_chunk_chars()
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    text = text or ""
    if len(text) <= max_chars:
        return [text.strip()] if text.strip() else []

    chunks: List[str] = []
    current = ""

    def flush():
        nonlocal current
        if current.strip():
            chunks.append(current.strip())
        current = ""

    for section in _HEADING_SPLIT.split(text):
        if not section:
            continue

        if len(section) <= max_chars:
            if current and len(current) + len(section) > max_chars:
                flush()
            current += section
            continue

        # Oversize section: fall back to paragraphs
        flush()
        for paragraph in _PARAGRAPH_SPLIT.split(section):
            if not paragraph.strip():
                continue
            if len(paragraph) > max_chars:
                logger.warning(
                    f"Paragraph of {len(paragraph)} chars exceeds chunk budget of {max_chars}; emitting whole"
                )
            if current and len(current) + len(paragraph) + 2 > max_chars:
                flush()
            current = f"{current}\n\n{paragraph}" if current else paragraph
        flush()

    flush()
    logger.debug(f"Split {len(text)} chars into {len(chunks)} chunks (budget {max_chars})")
    return chunks
