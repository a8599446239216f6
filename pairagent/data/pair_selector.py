"""Candidate pair selection from a configured symbol universe."""

from __future__ import annotations

import random

import structlog

from pairagent.core.config import DataConfig
from pairagent.core.models import CandidatePair
from pairagent.data.provider import PairSelector

logger = structlog.get_logger()


def _dedupe(symbols: list[str]) -> list[str]:
    return list(dict.fromkeys(s.upper() for s in symbols))


class RandomPairSelector:
    """Shuffle the whole universe and pair consecutive picks."""

    def __init__(self, symbols: list[str], rng: random.Random | None = None) -> None:
        self._symbols = _dedupe(symbols)
        self._rng = rng or random.Random()
        self._log = logger.bind(component="pair_selector", strategy="random")

    async def next_candidates(self, count: int) -> list[CandidatePair]:
        picks = list(self._symbols)
        self._rng.shuffle(picks)
        picks = picks[: count * 2]

        pairs = [CandidatePair(picks[i], picks[i + 1]) for i in range(0, len(picks) - 1, 2)]
        self._log.info("candidates_selected", count=len(pairs), pairs=[p.pair_id for p in pairs])
        return pairs


class CategoryPairSelector:
    """Draw both legs of each pair from the same category (e.g. L1s, DeFi)."""

    def __init__(self, universe: dict[str, list[str]], rng: random.Random | None = None) -> None:
        # Categories with fewer than two symbols can never form a pair
        self._universe = {
            name: symbols
            for name, symbols in ((n, _dedupe(s)) for n, s in universe.items())
            if len(symbols) >= 2
        }
        self._rng = rng or random.Random()
        self._log = logger.bind(component="pair_selector", strategy="category")

    async def next_candidates(self, count: int) -> list[CandidatePair]:
        if not self._universe:
            return []

        pairs: list[CandidatePair] = []
        seen: set[tuple[str, str]] = set()
        categories = list(self._universe)
        # Bounded so a small universe cannot spin forever on duplicates
        for _ in range(count * 5):
            if len(pairs) >= count:
                break
            category = self._rng.choice(categories)
            a, b = self._rng.sample(self._universe[category], 2)
            candidate = CandidatePair(a, b, category=category)
            if candidate.key in seen:
                continue
            seen.add(candidate.key)
            pairs.append(candidate)

        self._log.info("candidates_selected", count=len(pairs), pairs=[p.pair_id for p in pairs])
        return pairs


def build_selector(config: DataConfig, rng: random.Random | None = None) -> PairSelector:
    """Selector for the configured strategy over the configured universe."""
    if config.selector == "category":
        return CategoryPairSelector(config.universe, rng=rng)
    symbols = [s for group in config.universe.values() for s in group]
    return RandomPairSelector(symbols, rng=rng)
