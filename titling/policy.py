"""
policy.py -- Title policy document and loader.

The policy is a declarative, versioned JSON document bundled with the package
(data/title_policy.json). It carries guardrail strings, priority flags, the
walking-word constraint, the speech-bias tag list, special-case rules keyed by
a `when` discriminator, few-shot examples, and the localized vocabulary the
scorer matches against.

There is no safe default: a missing or malformed document raises
PolicyLoadError and callers are expected to stop the process.
"""

from __future__ import annotations

import functools
import logging
import os
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from titling.errors import PolicyLoadError

logger = logging.getLogger(__name__)

BUNDLED_POLICY_PATH: Path = Path(__file__).resolve().parent / "data" / "title_policy.json"


class _PolicyModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class PriorityRules(_PolicyModel):
    use_primary_tag_as_main_concept: bool = Field(alias="usePrimaryTagAsMainConcept")
    use_secondary_tag_as_hint: bool = Field(alias="useSecondaryTagAsHint")
    use_hint_tags_as_mood_only: bool = Field(alias="useHintTagsAsMoodOnly")
    ban_new_context_from_hint_tags: bool = Field(alias="banNewContextFromHintTags")


class WalkingConstraints(_PolicyModel):
    require_walking_cues_for_walk_words: bool = Field(alias="requireWalkingCuesForWalkWords")
    walk_words: tuple[str, ...] = Field(alias="walkWords")


class SpeechBias(_PolicyModel):
    enable_when_primary_tag_equals: tuple[str, ...] = Field(alias="enableWhenPrimaryTagEquals")

    def applies_to(self, tag: Optional[str]) -> bool:
        """Case-insensitive substring match of the tag against the bias list."""
        if not tag:
            return False
        lowered = tag.lower()
        return any(key.lower() in lowered for key in self.enable_when_primary_tag_equals)


class Vocabulary(_PolicyModel):
    """Localized words the scorer looks for in candidate titles."""

    discourse_words: tuple[str, ...] = Field(alias="discourseWords")
    speech_words: tuple[str, ...] = Field(alias="speechWords")
    music_words: tuple[str, ...] = Field(alias="musicWords")
    rain_words: tuple[str, ...] = Field(alias="rainWords")
    wave_words: tuple[str, ...] = Field(alias="waveWords")
    siren_words: tuple[str, ...] = Field(alias="sirenWords")
    water_words: tuple[str, ...] = Field(alias="waterWords")
    place_words: tuple[str, ...] = Field(default=(), alias="placeWords")


# ---------------------------------------------------------------------------
# Special cases -- one variant per `when` kind
# ---------------------------------------------------------------------------

class InterviewCase(_PolicyModel):
    when: Literal["interview"]
    title: str
    title_with_name: Optional[str] = Field(default=None, alias="titleWithName")


class WavesCase(_PolicyModel):
    when: Literal["waves"]
    title_talk: str = Field(alias="titleTalk")
    title_ambient: str = Field(alias="titleAmbient")


class MusicDominantCase(_PolicyModel):
    when: Literal["musicDominant"]
    title_meta: str = Field(alias="titleMeta")
    title_title_only: Optional[str] = Field(default=None, alias="titleTitleOnly")
    fallback: str


class TransportCase(_PolicyModel):
    when: Literal["transport"]
    patterns: tuple[str, ...]
    titles_by_transport: dict[str, str] = Field(alias="titlesByTransport")
    fallback: str


class KeywordCase(_PolicyModel):
    when: Literal["keyword"]
    contains: tuple[str, ...]
    title_if_contains: dict[str, str] = Field(alias="titleIfContains")


class SpeechOnlyCase(_PolicyModel):
    when: Literal["speechOnly"]
    title_topic: str = Field(alias="titleTopic")
    title_monologue: str = Field(alias="titleMonologue")
    map_by_dialog: dict[str, str] = Field(default_factory=dict, alias="mapByDialog")


class ScheduleCase(_PolicyModel):
    when: Literal["schedule"]
    schedule_keywords: tuple[str, ...] = Field(alias="scheduleKeywords")
    title_schedule: str = Field(alias="titleSchedule")
    title_schedule_with_name: Optional[str] = Field(default=None, alias="titleScheduleWithName")


SpecialCase = Annotated[
    Union[
        InterviewCase,
        WavesCase,
        MusicDominantCase,
        TransportCase,
        KeywordCase,
        SpeechOnlyCase,
        ScheduleCase,
    ],
    Field(discriminator="when"),
]


class FewShot(_PolicyModel):
    input: dict[str, Optional[str]]
    output: str


class TitlePolicy(_PolicyModel):
    """Immutable title-generation policy, loaded once and passed by reference."""

    policy_version: str = Field(alias="policyVersion")
    lang: str
    guardrails: tuple[str, ...]
    priority_rules: PriorityRules = Field(alias="priorityRules")
    walking_constraints: WalkingConstraints = Field(alias="walkingConstraints")
    speech_bias: SpeechBias = Field(alias="speechBias")
    vocabulary: Vocabulary
    special_cases: tuple[SpecialCase, ...] = Field(default=(), alias="specialCases")
    few_shots: tuple[FewShot, ...] = Field(default=(), alias="fewShots")

    @property
    def special_case_kinds(self) -> list[str]:
        return [case.when for case in self.special_cases]


def load_policy(path: str | Path | None = None) -> TitlePolicy:
    """
    Load and validate a policy document.

    Raises:
        PolicyLoadError: the file is missing, unreadable, not JSON, or does
            not match the policy schema (including unknown `when` kinds).
    """
    policy_path = Path(path) if path else BUNDLED_POLICY_PATH
    try:
        raw = policy_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PolicyLoadError(f"Title policy not readable at {policy_path}: {exc}") from exc
    try:
        policy = TitlePolicy.model_validate_json(raw)
    except ValidationError as exc:
        raise PolicyLoadError(f"Failed to decode title policy {policy_path}: {exc}") from exc
    logger.info(
        "Loaded title policy %s (lang=%s, %d special cases, %d few-shots)",
        policy.policy_version, policy.lang,
        len(policy.special_cases), len(policy.few_shots),
    )
    return policy


@functools.lru_cache(maxsize=1)
def default_policy() -> TitlePolicy:
    """The process-wide policy: TITLE_POLICY_PATH if set, else the bundled document."""
    return load_policy(os.getenv("TITLE_POLICY_PATH") or None)
