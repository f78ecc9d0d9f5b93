"""Deck Builder against an in-memory database.

Invariants:
    - a deck holds deck_size distinct cards with positions 0..deck_size-1
    - category counts follow the quota when the catalog allows it
    - a failed build leaves no deck entries behind
"""

from collections import Counter

from sqlalchemy import inspect as sa_inspect, select
from uuid6 import uuid7

from heartdeck.crud import CreateData, ReadData
from heartdeck.models.schemas import Card, CardGameSession, CardResponse, DeckEntry
from heartdeck.services.deck_db import DeckBuilder

from conftest import seed_catalog


async def read_deck(session_factory, session_id):
    async with session_factory() as session:
        entries = await ReadData.read_deck_entries(session_id, session)
        categories = await ReadData.read_card_categories([e.card_id for e in entries], session)
    return entries, categories


async def test_builds_sixty_card_deck_with_even_split(test_session_factory, catalog, rng):
    session_id = uuid7()
    builder = DeckBuilder(test_session_factory, rng)

    assert await builder.create_deck(session_id, 60)

    entries, categories = await read_deck(test_session_factory, session_id)
    assert [e.position for e in entries] == list(range(60))
    assert len({e.card_id for e in entries}) == 60
    counts = Counter(categories[e.card_id] for e in entries)
    assert counts == {"action": 20, "text": 20, "photo": 20}


async def test_ten_card_deck_follows_quota(test_session_factory, catalog, rng):
    session_id = uuid7()
    assert await DeckBuilder(test_session_factory, rng).create_deck(session_id, 10)

    entries, categories = await read_deck(test_session_factory, session_id)
    counts = Counter(categories[e.card_id] for e in entries)
    assert counts == {"action": 4, "text": 3, "photo": 3}


async def test_short_category_is_covered_by_neighbours(test_session_factory, rng):
    await seed_catalog(test_session_factory, {"action": 2, "text": 10, "photo": 10})
    session_id = uuid7()

    assert await DeckBuilder(test_session_factory, rng).create_deck(session_id, 12)

    entries, categories = await read_deck(test_session_factory, session_id)
    counts = Counter(categories[e.card_id] for e in entries)
    assert len(entries) == 12
    assert counts["action"] == 2


async def test_borrowing_keeps_every_stocked_category(test_session_factory, rng):
    await seed_catalog(test_session_factory, {"action": 1, "text": 10, "photo": 10})
    session_id = uuid7()

    assert await DeckBuilder(test_session_factory, rng).create_deck(session_id, 10)

    entries, categories = await read_deck(test_session_factory, session_id)
    counts = Counter(categories[e.card_id] for e in entries)
    assert counts == {"action": 1, "text": 6, "photo": 3}


async def test_insufficient_catalog_builds_nothing(test_session_factory, rng):
    await seed_catalog(test_session_factory, {"action": 3, "text": 3, "photo": 3})
    session_id = uuid7()

    assert not await DeckBuilder(test_session_factory, rng).create_deck(session_id, 10)

    entries, _ = await read_deck(test_session_factory, session_id)
    assert entries == []


async def test_inactive_cards_are_not_dealt(test_session_factory, catalog, rng):
    async with test_session_factory() as session:
        async with session.begin():
            cards = (await session.execute(select(Card).where(Card.category == "photo"))).scalars().all()
            for card in cards[:25]:
                card.is_active = False
            inactive = {card.card_id for card in cards[:25]}

    session_id = uuid7()
    assert await DeckBuilder(test_session_factory, rng).create_deck(session_id, 30)

    entries, _ = await read_deck(test_session_factory, session_id)
    assert not inactive & {e.card_id for e in entries}


async def test_second_build_for_same_session_is_refused(test_session_factory, catalog, rng):
    session_id = uuid7()
    builder = DeckBuilder(test_session_factory, rng)
    assert await builder.create_deck(session_id, 10)
    assert not await builder.create_deck(session_id, 10)

    async with test_session_factory() as session:
        rows = (await session.execute(select(DeckEntry).where(DeckEntry.session_id == session_id))).scalars().all()
    assert len(rows) == 10


async def test_zero_deck_size_is_refused(test_session_factory, catalog, rng):
    assert not await DeckBuilder(test_session_factory, rng).create_deck(uuid7(), 0)


def test_tables_are_linked_by_explicit_joins_only():
    for table in (CardGameSession, DeckEntry, CardResponse):
        assert not sa_inspect(table).relationships


def test_engine_never_authors_catalog_cards():
    writers = {name for name in vars(CreateData) if not name.startswith("_")}
    assert writers == {"add_session_data", "add_deck_entries", "add_card_response"}
