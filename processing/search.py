"""
search.py -- Match a free-text query against stored recordings.

Matching order:
1. Case-insensitive substring of the title or transcript
2. The first two characters of the query appearing in the tag list
3. Model-scored similarity (0.0-1.0) through the text generator, when one
   is configured. Unparsable scores and scoring failures count as no match.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from processing.models import RecordingMetadata
from titling.candidates import TextGenerator

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD: float = 0.7
TAG_PREFIX_LENGTH: int = 2
SCORING_TEMPERATURE: float = 0.0

SCORING_INSTRUCTIONS = chr(10).join([
    "유저의 검색어와 음성일기의 메타데이터를 비교해 비슷한 정도를 0.0 ~ 1.0 사이의 소수로 출력한다.",
    "",
    "출력형식:",
    " - 예시: 0.0, 0.8, 1.0",
    " - 이유는 설명하지 않는다.",
    " - 소수외의 다른 메시지는 출력하지 않는다.",
])


def build_scoring_prompt(query: str, recording: RecordingMetadata) -> str:
    lines = [f"유저 검색어: {query}", "", "음성일기 메타데이터: ["]
    lines.append(f"제목: {recording.title}")
    if recording.dialog:
        lines.append(f"대화 내용: {recording.dialog}")
    if recording.bgm_title and recording.bgm_artist:
        lines.append(f"감지된 노래: {recording.bgm_title} - {recording.bgm_artist}")
    if recording.location:
        lines.append(f"위치: {recording.location}")
    lines.append(f"생성일자: {recording.created_at.isoformat()}")
    if recording.weather:
        lines.append(f"날씨: {recording.weather}")
    if recording.tags:
        lines.append(f"태그: {', '.join(recording.tags)}")
    lines.append("]")
    return chr(10).join(lines)


def matches_locally(query: str, recording: RecordingMetadata) -> bool:
    needle = query.strip().lower()
    if not needle:
        return False
    if needle in recording.title.lower():
        return True
    if recording.dialog and needle in recording.dialog.lower():
        return True
    if recording.tags:
        prefix = needle[:TAG_PREFIX_LENGTH]
        return prefix in ", ".join(recording.tags).lower()
    return False


def parse_score(raw: str) -> Optional[float]:
    try:
        return float(raw.strip())
    except ValueError:
        return None


class RecordingSearcher:
    """Search over recordings; model scoring is skipped when no generator is given."""

    def __init__(
        self,
        generator: Optional[TextGenerator] = None,
        threshold: float = SIMILARITY_THRESHOLD,
    ) -> None:
        self.generator = generator
        self.threshold = threshold

    async def matches(self, query: str, recording: RecordingMetadata) -> bool:
        if matches_locally(query, recording):
            logger.info("Matched locally: %s", recording.title or recording.id)
            return True
        if self.generator is None:
            return False

        try:
            raw = await self.generator.generate(
                SCORING_INSTRUCTIONS,
                build_scoring_prompt(query, recording),
                SCORING_TEMPERATURE,
            )
        except Exception as exc:
            logger.warning("Similarity scoring failed for %s: %s", recording.id, exc)
            return False

        score = parse_score(raw)
        if score is None:
            logger.warning("Invalid score format for %s: %r", recording.id, raw)
            return False
        logger.info("Score %.2f for %s", score, recording.title or recording.id)
        return score >= self.threshold

    async def search(
        self, query: str, recordings: Iterable[RecordingMetadata]
    ) -> list[RecordingMetadata]:
        """Matching recordings, in input order."""
        return [r for r in recordings if await self.matches(query, r)]
