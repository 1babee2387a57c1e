"""
First-order word-level Markov chain.

Each token maps to a frequency table of the tokens that followed it. The
empty string marks both the start and the end of a sequence, so a fed line
"hello world" records "" -> hello -> world -> "".
"""

from __future__ import annotations

import random
from collections import defaultdict
from typing import Any

BOUNDARY = ""
MAX_GENERATED_TOKENS = 500


class MarkovChain:
    """Token transition frequencies with weighted random generation."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._transitions: dict[str, dict[str, int]] = defaultdict(dict)
        self._rng = rng or random.Random()

    def is_empty(self) -> bool:
        return not self._transitions

    def __len__(self) -> int:
        """Number of distinct tokens with outgoing transitions, start marker included."""
        return len(self._transitions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MarkovChain):
            return NotImplemented
        return self.to_state() == other.to_state()

    def clear(self) -> None:
        self._transitions.clear()

    def feed(self, tokens: list[str]) -> None:
        """Record one sequence of tokens."""
        if not tokens:
            return
        path = [BOUNDARY, *tokens, BOUNDARY]
        for current, following in zip(path, path[1:]):
            counts = self._transitions[current]
            counts[following] = counts.get(following, 0) + 1

    def feed_str(self, line: str) -> None:
        """Record one whitespace-tokenized line."""
        self.feed(line.split())

    def generate(self) -> list[str]:
        """Walk from the start marker until the end marker is drawn."""
        return self._walk(BOUNDARY)

    def generate_from(self, token: str) -> list[str]:
        """Walk starting at token; empty if the token was never seen."""
        if token == BOUNDARY or token not in self._transitions:
            return []
        return [token, *self._walk(token)]

    def generate_str(self) -> str:
        return " ".join(self.generate())

    def _walk(self, start: str) -> list[str]:
        result: list[str] = []
        current = start
        while len(result) < MAX_GENERATED_TOKENS:
            counts = self._transitions.get(current)
            if not counts:
                break
            current = self._rng.choices(list(counts), weights=list(counts.values()))[0]
            if current == BOUNDARY:
                break
            result.append(current)
        return result

    def stats(self) -> dict[str, int]:
        """Summary counts for inspection."""
        return {
            "tokens": len(self._transitions) - (1 if BOUNDARY in self._transitions else 0),
            "transitions": sum(len(c) for c in self._transitions.values()),
            "sequences": sum(self._transitions.get(BOUNDARY, {}).values()),
        }

    def to_state(self) -> dict[str, Any]:
        return {token: dict(counts) for token, counts in self._transitions.items()}

    @classmethod
    def from_state(
        cls, state: dict[str, dict[str, int]], rng: random.Random | None = None
    ) -> MarkovChain:
        chain = cls(rng=rng)
        for token, counts in state.items():
            if counts:
                chain._transitions[token] = dict(counts)
        return chain
