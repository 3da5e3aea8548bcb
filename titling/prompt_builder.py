"""
prompt_builder.py -- Layered title prompt assembly.

Layer 1 (Guidance): soft guardrails from the policy
Layer 2 (Hard bans): evidence rules the title MUST NOT break
Layer 3 (Ratios + priority): how tag shares map to the title's focus
Layer 4 (Examples): few-shots from the policy and its special cases
Layer 5 (Input): the context document and the output instruction

The generator only ever sees the derived context document, never the raw
transcript or tag stream.
"""

from __future__ import annotations

import json
import logging
import random
from typing import Optional

from titling.policy import (
    InterviewCase,
    MusicDominantCase,
    TitlePolicy,
    WavesCase,
)

logger = logging.getLogger(__name__)

MAX_FEW_SHOTS: int = 12

SYSTEM_INSTRUCTIONS: str = chr(10).join([
    "너는 녹음 메모에 붙일 한국어 제목을 만들어 주는 도우미야.",
    "",
    "규칙:",
    "- 항상 한국어 한 문장만 출력해",
    "- 줄바꿈, 따옴표, 이모지, 해시태그, 접두 라벨을 쓰지 마",
    "- 입력 JSON에 없는 사람 이름/장소/곡명/행사 이름은 새로 만들지 마",
    "- 음성 비율이 낮으면 '대화/회의/인터뷰/혼잣말' 같은 표현은 피하고, 환경 소리 중심으로 표현해",
    "- 파도/바다/해변 소리가 거의 없으면 그런 단어는 쓰지 마",
    "- 걷는 소리가 거의 없으면 '산책/걷기/조깅' 같은 표현은 쓰지 마",
])


def build_guidance_layer(policy: TitlePolicy) -> str:
    """Layer 1 -- soft guardrails, each marked as a recommendation."""
    lines = ["제목 작성 지향(소프트 가이드):"]
    lines.extend(f"• {rule} (권장)" for rule in policy.guardrails)
    return chr(10).join(lines)


def build_hard_bans_layer() -> str:
    """
    Layer 2 -- hard bans.

    Location is attached to the title afterwards as a canonical suffix, so
    the generator is never allowed to name a place itself.
    """
    return chr(10).join([
        "금지 규칙(MUST NOT):",
        "- 지명/장소(예: 부산, 해운대, 서울, 카페 등)를 절대 쓰지 말 것. 위치는 제목 뒤에 따로 붙는다.",
        "- 입력 JSON에 '음성유무'가 false면 '대화/회의/인터뷰/혼잣말' 등 말 관련 단어를 절대 쓰지 말 것.",
        "- 입력 JSON에 '물/파도허용'이 false면 '파도/바다/해변' 관련 단어를 절대 쓰지 말 것.",
        "- 입력에 없는 인명/행사명/지명/노래제목/가수 등을 절대 창작하지 말 것.",
        "- 태그 비중이 12% 미만인 항목의 단어를 제목에 직접 쓰지 말 것(분위기 힌트는 가능).",
    ])


def build_ratio_layer() -> str:
    """Layer 3a -- how tag shares translate into emphasis."""
    return chr(10).join([
        "비중(태그비율) 원칙:",
        "- 주태그 비율이 35% 이상이면, 그 주태그를 제목의 핵심 콘셉트로 **반드시** 반영.",
        "- 20~35% 구간은 가급적 반영하되, 다른 신호(전사/특수케이스)와 조화롭게 선택.",
        "- 12% 미만인 태그는 단어를 직접 쓰지 말고, 분위기 힌트로만 사용.",
    ])


def build_priority_layer(
    policy: TitlePolicy,
    has_walking_cues: bool,
    primary_tag: Optional[str],
) -> str:
    """Layer 3b -- tag priority, walking-word permission, speech bias."""
    rules = policy.priority_rules
    lines = ["태그 우선순위(권장):"]
    if rules.use_primary_tag_as_main_concept:
        lines.append("- 주태그(primary)가 제목의 핵심 콘셉트가 되도록 지향.")
    if rules.use_secondary_tag_as_hint or rules.use_hint_tags_as_mood_only:
        lines.append("- 부태그/힌트태그는 분위기 보조.")
    if rules.ban_new_context_from_hint_tags:
        lines.append("- 힌트태그로 새로운 맥락 생성 금지.")
    lines.append(walk_hint_line(policy, has_walking_cues))
    if policy.speech_bias.applies_to(primary_tag):
        lines.append(
            "- 주태그가 ‘speech’이면, 음성비율이 충분할 때(≥20~25%) 제목을 대화/회의/인터뷰 축으로 유도."
        )
    return chr(10).join(lines)


def walk_hint_line(policy: TitlePolicy, has_walking_cues: bool) -> str:
    if has_walking_cues or not policy.walking_constraints.require_walking_cues_for_walk_words:
        return "- ‘산책’ 표현 사용 가능(보행 단서 충분)."
    return "- ‘산책’ 금지(보행 단서 부족). ‘대화/소리’ 등으로 표현."


def _compact(payload: dict[str, Optional[str]]) -> str:
    return json.dumps(
        {key: value for key, value in payload.items() if value is not None},
        ensure_ascii=False,
    )


def make_few_shots(
    policy: TitlePolicy,
    rng: Optional[random.Random] = None,
) -> list[tuple[str, str]]:
    """
    Collect (input JSON, output) few-shot pairs.

    Policy few-shots come first with null inputs dropped; the interview,
    waves and musicDominant special cases each contribute representative
    examples with their placeholders filled. The list is shuffled and capped.
    """
    items: list[tuple[str, str]] = [
        (_compact(shot.input), shot.output) for shot in policy.few_shots
    ]

    for case in policy.special_cases:
        if isinstance(case, InterviewCase):
            items.append((_compact({"주태그": "speech", "전사": "자기소개 부탁드립니다"}), case.title))
            if case.title_with_name:
                items.append((
                    _compact({"주태그": "speech", "전사": "민수 씨, 인터뷰 시작하겠습니다"}),
                    case.title_with_name.replace("{name}", "민수"),
                ))
        elif isinstance(case, WavesCase):
            items.append((
                _compact({"주태그": "waves", "부태그": "speech", "전사": "사진 한 장 더 찍자"}),
                case.title_talk,
            ))
            items.append((_compact({"주태그": "waves"}), case.title_ambient))
        elif isinstance(case, MusicDominantCase):
            items.append((
                _compact({
                    "주태그": "music", "부태그": "singing",
                    "배경음악제목": "Lo-fi beats", "배경음악아티스트": "Playlist",
                }),
                case.title_meta
                .replace("{bgmTitle}", "Lo-fi beats")
                .replace("{bgmArtist}", "Playlist"),
            ))
            items.append((_compact({"주태그": "music"}), case.fallback))

    (rng or random).shuffle(items)
    return items[:MAX_FEW_SHOTS]


def build_example_layer(policy: TitlePolicy, rng: Optional[random.Random] = None) -> str:
    """Layer 4 -- few-shot examples, for reference only."""
    shots = make_few_shots(policy, rng)
    blocks = [f"입력: {inp}{chr(10)}출력: {out}" for inp, out in shots]
    return "예시(Few-shot, 참고용):" + chr(10) + (chr(10) + chr(10)).join(blocks)


def assemble_prompt(
    context_json: str,
    policy: TitlePolicy,
    has_walking_cues: bool,
    primary_tag: Optional[str],
    rng: Optional[random.Random] = None,
) -> str:
    """Assemble all layers plus the context document into a single prompt."""
    sections = [
        "모든 입출력은 한국어(ko-KR)로 작성합니다.",
        build_guidance_layer(policy),
        build_hard_bans_layer(),
        build_ratio_layer(),
        build_priority_layer(policy, has_walking_cues, primary_tag),
        build_example_layer(policy, rng),
        "입력(JSON):" + chr(10) + context_json,
        "위 지향과 금지 규칙을 모두 준수하여 자연스럽고 간결한 **한국어 한 문장** 제목만 출력하세요."
        + chr(10) + "따옴표/이모지/해시태그/접두 라벨/줄바꿈 금지.",
    ]
    prompt = (chr(10) + chr(10)).join(sections)
    logger.debug(
        "Assembled title prompt: %d chars, primary='%s', walking=%s",
        len(prompt), primary_tag, has_walking_cues,
    )
    return prompt


def build_fallback_prompt(context_json: str) -> str:
    """Minimal Korean-only prompt for generators that reject the full prompt's language."""
    return chr(10).join([
        "한국어 한 문장 제목만 출력하세요. 따옴표/이모지/해시태그 금지.",
        "입력:",
        context_json,
        "출력: 한국어 한 문장.",
    ])
