"""Words and phrases flagged in generated Croatian articles.

The list is advisory: matches become review issues and result warnings, they
never fail a job on their own.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache

BANNED_WORDS: tuple[str, ...] = (
    # hype (Croatian)
    "revolucionarno",
    "revolucionaran",
    "transformativno",
    "transformativan",
    "inovativan",
    "inovativno",
    "krajobraz",
    "putovanje",
    "sinergija",
    "optimizirati",
    "leverirati",
    "implementirati",
    # English buzzwords
    "game-changing",
    "cutting-edge",
    "state-of-the-art",
    "unprecedented",
    "groundbreaking",
    "revolutionary",
    "transformative",
    "innovative",
    "leverage",
    "synergy",
    "paradigm",
    "holistic",
    "robust",
    "seamless",
    "streamline",
)

BANNED_PHRASES: tuple[str, ...] = (
    "u današnjem svijetu",
    "u svijetu koji se stalno mijenja",
    "nije tajna da",
    "važno je napomenuti",
    "vrijedi spomenuti",
    "kao što svi znamo",
    "bez sumnje",
    "jednostavno rečeno",
    "ovim putem",
    "s poštovanjem",
    "sa zadovoljstvom",
    "u tom kontekstu",
    "u tom smislu",
    "s tim u vezi",
    "iznimno važno",
    "od velike važnosti",
    "bitno je naglasiti",
    "posebno treba istaknuti",
)

# \b treats č, ć, š, ž and đ as non-word characters, so boundaries are explicit.
_WORD_CHARS = "a-zA-ZčćšžđČĆŠŽĐáéíóúàèìòùäëïöüâêîôû0-9"


@lru_cache(maxsize=None)
def _word_pattern(word: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?<![{_WORD_CHARS}]){re.escape(word)}(?![{_WORD_CHARS}])",
        re.IGNORECASE,
    )


@dataclass(frozen=True, slots=True)
class BannedMatches:
    words: list[str] = field(default_factory=list)
    phrases: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.words or self.phrases)

    def all(self) -> set[str]:
        return set(self.words) | set(self.phrases)


def find_banned_words(text: str) -> list[str]:
    return [word for word in BANNED_WORDS if _word_pattern(word).search(text)]


def find_banned_phrases(text: str) -> list[str]:
    lowered = text.lower()
    return [phrase for phrase in BANNED_PHRASES if phrase.lower() in lowered]


def find_all_banned(text: str) -> BannedMatches:
    return BannedMatches(words=find_banned_words(text), phrases=find_banned_phrases(text))
