"""Unit tests for short-code generation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from urlshortener.codegen import ALPHABET, ShortCodeGenerator, random_code
from urlshortener.config import Settings
from urlshortener.exceptions import StoreUnavailableError


def _generator(exists_side_effect) -> tuple[ShortCodeGenerator, MagicMock]:
    store = MagicMock()
    store.code_exists = AsyncMock(side_effect=exists_side_effect)
    return ShortCodeGenerator(store, Settings()), store


def test_alphabet_excludes_ambiguous_characters() -> None:
    assert len(ALPHABET) == 57
    assert len(set(ALPHABET)) == 57
    for ambiguous in "IOilo":
        assert ambiguous not in ALPHABET


def test_random_code_length_and_alphabet() -> None:
    for length in (7, 10):
        for _ in range(200):
            code = random_code(length)
            assert len(code) == length
            assert all(c in ALPHABET for c in code)


def test_random_code_uniqueness() -> None:
    codes = {random_code(7) for _ in range(1000)}
    # 57^7 possibilities, 1000 draws should not collide
    assert len(codes) == 1000


@pytest.mark.asyncio
async def test_generate_returns_first_free_code() -> None:
    generator, store = _generator([False])
    code = await generator.generate()
    assert len(code) == 7
    store.code_exists.assert_awaited_once_with(code)


@pytest.mark.asyncio
async def test_generate_retries_on_collision() -> None:
    generator, store = _generator([True, True, False])
    code = await generator.generate()
    assert len(code) == 7
    assert store.code_exists.await_count == 3


@pytest.mark.asyncio
async def test_generate_falls_back_to_longer_code() -> None:
    generator, store = _generator(lambda code: True)
    code = await generator.generate(max_attempts=5)
    assert len(code) == 10
    assert all(c in ALPHABET for c in code)
    # the fallback code is not checked
    assert store.code_exists.await_count == 5


@pytest.mark.asyncio
async def test_generate_propagates_store_failure() -> None:
    generator, _ = _generator(StoreUnavailableError("connection refused"))
    with pytest.raises(StoreUnavailableError):
        await generator.generate()


@pytest.mark.asyncio
async def test_deleted_codes_are_never_reissued(service, store) -> None:
    record, _ = await service.create_mapping("https://example.com/retired", "10.0.0.1")
    await service.delete_mapping(record.short_code)

    assert await store.code_exists(record.short_code)


@pytest.mark.parametrize("length", [0, -3, "7"])
def test_random_code_rejects_bad_length(length) -> None:
    with pytest.raises(ValueError):
        random_code(length)
