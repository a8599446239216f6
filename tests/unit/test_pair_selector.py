from __future__ import annotations

import random

import pytest

from pairagent.core.config import DataConfig
from pairagent.data.pair_selector import CategoryPairSelector, RandomPairSelector, build_selector

UNIVERSE = {
    "majors": ["BTCUSDT", "ETHUSDT", "BNBUSDT"],
    "l1": ["SOLUSDT", "AVAXUSDT", "ADAUSDT", "DOTUSDT"],
    "solo": ["XRPUSDT"],
}


@pytest.mark.asyncio
async def test_random_pairs_use_distinct_symbols() -> None:
    symbols = [s for group in UNIVERSE.values() for s in group]
    selector = RandomPairSelector(symbols, rng=random.Random(42))

    pairs = await selector.next_candidates(3)

    assert len(pairs) == 3
    legs = [s for p in pairs for s in (p.symbol_a, p.symbol_b)]
    assert len(set(legs)) == 6
    assert all(p.symbol_a != p.symbol_b for p in pairs)


@pytest.mark.asyncio
async def test_random_selector_limited_by_universe() -> None:
    selector = RandomPairSelector(["btcusdt", "ETHUSDT", "BTCUSDT"], rng=random.Random(1))

    pairs = await selector.next_candidates(5)

    assert len(pairs) == 1
    assert {pairs[0].symbol_a, pairs[0].symbol_b} == {"BTCUSDT", "ETHUSDT"}


@pytest.mark.asyncio
async def test_category_pairs_stay_within_category() -> None:
    selector = CategoryPairSelector(UNIVERSE, rng=random.Random(7))

    pairs = await selector.next_candidates(4)

    assert pairs
    keys = [p.key for p in pairs]
    assert len(keys) == len(set(keys))
    for pair in pairs:
        assert pair.category in ("majors", "l1")
        assert {pair.symbol_a, pair.symbol_b} <= set(UNIVERSE[pair.category])


@pytest.mark.asyncio
async def test_category_selector_without_pairable_category() -> None:
    selector = CategoryPairSelector({"solo": ["XRPUSDT"]})

    assert await selector.next_candidates(3) == []


def test_build_selector_from_config() -> None:
    assert isinstance(build_selector(DataConfig(universe=UNIVERSE)), RandomPairSelector)
    assert isinstance(build_selector(DataConfig(universe=UNIVERSE, selector="category")), CategoryPairSelector)
