"""Unit tests for db.seed_movies."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from db import seed_movies
from implementation.classes.movie import MovieCreate


def _write_json(tmp_path, payload) -> Path:
    path = tmp_path / "movies_data.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _mock_record_store(count: int = 0) -> MagicMock:
    store = MagicMock()
    store.ensure_schema = AsyncMock()
    store.count = AsyncMock(return_value=count)
    store.delete_all = AsyncMock()
    store.title_exists = AsyncMock(return_value=False)
    store.bulk_insert = AsyncMock(side_effect=lambda batch: len(batch))
    return store


# ===============================
#           LOADING
# ===============================

def test_load_movies_validates_and_skips_bad_entries(tmp_path) -> None:
    path = _write_json(
        tmp_path,
        [
            {"title": "Heat", "release_date": "1995-12-15", "budget": "60000000", "cast": ["Al Pacino"]},
            {"title": "", "budget": 10},
            "not an object",
            {"title": "Ronin", "budget": None, "is_hit": False},
        ],
    )

    movies = seed_movies.load_movies(path)

    assert [movie.title for movie in movies] == ["Heat", "Ronin"]
    assert movies[0].budget == 60_000_000
    assert movies[1].budget is None


def test_load_movies_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        seed_movies.load_movies(tmp_path / "missing.json")


def test_load_movies_rejects_non_array(tmp_path) -> None:
    with pytest.raises(ValueError):
        seed_movies.load_movies(_write_json(tmp_path, {"title": "Heat"}))


# ===============================
#           INSERTING
# ===============================

@pytest.mark.asyncio
async def test_insert_movies_batches_into_empty_table() -> None:
    store = _mock_record_store(count=0)
    movies = [MovieCreate(title=f"Movie {i}") for i in range(seed_movies.INSERT_BATCH_SIZE + 5)]

    inserted = await seed_movies.insert_movies(store, movies)

    assert inserted == len(movies)
    store.ensure_schema.assert_awaited_once()
    batch_sizes = [len(call.args[0]) for call in store.bulk_insert.await_args_list]
    assert batch_sizes == [seed_movies.INSERT_BATCH_SIZE, 5]


@pytest.mark.asyncio
async def test_insert_movies_refuses_non_empty_table() -> None:
    store = _mock_record_store(count=3)
    with pytest.raises(ValueError):
        await seed_movies.insert_movies(store, [MovieCreate(title="Heat")])
    store.bulk_insert.assert_not_awaited()


@pytest.mark.asyncio
async def test_insert_movies_replace_clears_table_first() -> None:
    store = _mock_record_store(count=3)
    inserted = await seed_movies.insert_movies(store, [MovieCreate(title="Heat")], replace=True)
    store.delete_all.assert_awaited_once()
    assert inserted == 1


@pytest.mark.asyncio
async def test_insert_movies_skip_existing_filters_by_title() -> None:
    store = _mock_record_store(count=1)
    store.title_exists.side_effect = lambda title: title == "Heat"

    inserted = await seed_movies.insert_movies(
        store,
        [MovieCreate(title="Heat"), MovieCreate(title="Ronin")],
        skip_existing=True,
    )

    assert inserted == 1
    assert [movie.title for movie in store.bulk_insert.await_args.args[0]] == ["Ronin"]


# ===============================
#              CLI
# ===============================

def test_argument_parser_modes_are_mutually_exclusive() -> None:
    parser = seed_movies.build_argument_parser()
    assert parser.parse_args(["insert", "data.json", "--replace"]).replace is True
    assert parser.parse_args(["stats"]).command == "stats"
    with pytest.raises(SystemExit):
        parser.parse_args(["insert", "data.json", "--replace", "--skip-existing"])


def test_main_missing_file_returns_error_code(mocker, tmp_path) -> None:
    pool = MagicMock()
    pool.open = AsyncMock()
    pool.close = AsyncMock()
    mocker.patch("db.seed_movies.create_pool", return_value=pool)

    assert seed_movies.main(["insert", str(tmp_path / "missing.json")]) == 1
    pool.close.assert_awaited_once()
