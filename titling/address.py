"""
address.py -- Korean administrative address canonicalization.

Turns a free-form address ("경상북도 포항시 남구 효자동", "포항시지곡동")
into a compact "<city> <unit>" suffix ("포항 남구", "포항 지곡동") that can
be attached to a title. Province tokens are skipped, the city suffix is
dropped from the city name, and a district (구/군) is preferred over a minor
division (읍/면/동).

Geocoders such as Kakao shorten the metropolitan units ("서울 강남구 ...",
"부산 해운대구 ..."); those leading tokens are expanded to the full city name
before matching.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

PROVINCE_SUFFIXES: tuple[str, ...] = ("특별자치도", "도")
CITY_SUFFIXES: tuple[str, ...] = ("특별자치시", "특별시", "광역시", "시")
DISTRICT_SUFFIXES: tuple[str, ...] = ("구", "군")
MINOR_SUFFIXES: tuple[str, ...] = ("읍", "면", "동")

METROPOLITAN_ABBREVIATIONS: dict[str, str] = {
    "서울": "서울특별시",
    "부산": "부산광역시",
    "대구": "대구광역시",
    "인천": "인천광역시",
    "광주": "광주광역시",
    "대전": "대전광역시",
    "울산": "울산광역시",
    "세종": "세종특별자치시",
}

CITY_SCAN_WINDOW: int = 3

_TOKEN_SPLIT_RE = re.compile(r"[\s,]+")


def _alternation(suffixes: tuple[str, ...]) -> str:
    ordered = sorted(suffixes, key=len, reverse=True)
    return "|".join(re.escape(s) for s in ordered)


_CITY_TOKEN_RE = re.compile(rf"^(.+?)({_alternation(CITY_SUFFIXES)})$")
_CITY_SPLIT_RE = re.compile(rf"^(.+?(?:{_alternation(CITY_SUFFIXES)}))(.+)$")


def tokenize(address: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT_RE.split(address.strip()) if t]


def _longest_suffix(token: str, suffixes: tuple[str, ...]) -> Optional[str]:
    for suffix in sorted(suffixes, key=len, reverse=True):
        if token.endswith(suffix) and len(token) > len(suffix):
            return suffix
    return None


def _city_base(city_token: str) -> str:
    match = _CITY_TOKEN_RE.match(city_token)
    return match.group(1) if match else city_token


def _find_city(tokens: list[str], start: int) -> Optional[tuple[int, str, Optional[str]]]:
    """
    Locate the city unit within CITY_SCAN_WINDOW tokens from `start`.

    Returns (token index, city token, residual text split off that token).
    A whole-token match anywhere in the window beats an intra-token split.
    """
    window = range(start, min(start + CITY_SCAN_WINDOW, len(tokens)))
    for i in window:
        if _CITY_TOKEN_RE.match(tokens[i]):
            return i, tokens[i], None
    for i in window:
        match = _CITY_SPLIT_RE.match(tokens[i])
        if match:
            return i, match.group(1), match.group(2)
    return None


def _find_unit(tokens: list[str], suffixes: tuple[str, ...]) -> Optional[str]:
    """Whole-token suffix match first, then the shortest prefix ending in a suffix."""
    for token in tokens:
        if _longest_suffix(token, suffixes):
            return token
    split_re = re.compile(rf"^(.+?(?:{_alternation(suffixes)}))(.+)$")
    for token in tokens:
        match = split_re.match(token)
        if match:
            return match.group(1)
    return None


def canonicalize_address(address: Optional[str]) -> Optional[str]:
    """
    Reduce an address to "<city-base> <unit>" or "<city-base>".

    Returns None when no city-level unit can be recognized.
    """
    if not address or not address.strip():
        return None
    tokens = tokenize(address)
    if not tokens:
        return None
    tokens[0] = METROPOLITAN_ABBREVIATIONS.get(tokens[0], tokens[0])

    start = 1 if _longest_suffix(tokens[0], PROVINCE_SUFFIXES) else 0
    found = _find_city(tokens, start)
    if found is None:
        logger.debug("No city unit in address %r", address)
        return None
    index, city_token, residual = found

    rest = tokens[index + 1:]
    if residual:
        rest = [residual] + rest
    unit = _find_unit(rest, DISTRICT_SUFFIXES) or _find_unit(rest, MINOR_SUFFIXES)

    base = _city_base(city_token)
    return f"{base} {unit}" if unit else base


def attach_location(title: str, location: Optional[str]) -> str:
    """Append the canonical location suffix to a title, when one can be derived."""
    suffix = canonicalize_address(location)
    if not suffix:
        return title
    return f"{title}, {suffix}"
