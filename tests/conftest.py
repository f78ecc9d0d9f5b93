"""Shared fixtures: in-memory database, seeded catalog, fake Redis.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - Randomness comes from a seeded numpy Generator
    - FakeRedis delivers published messages to every subscribed FakePubSub
"""

import asyncio
from typing import Dict, List
from uuid import UUID

import numpy as np
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from uuid6 import uuid7

from heartdeck.models.schemas import Base, Card

PARTICIPANT_A = UUID("0f1e2d3c-4b5a-4978-8695-a4b3c2d1e0f1")
PARTICIPANT_B = UUID("a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d")
STRANGER = UUID("99999999-9999-4999-8999-999999999999")


class FakePubSub:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.channels: set = set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, channel: str):
        if self.redis.fail_subscribe:
            self.redis.fail_subscribe -= 1
            raise RedisConnectionError("connection refused")
        self.channels.add(channel)
        self.redis.subscribers.append(self)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout=None):
        msg = await self.queue.get()
        if isinstance(msg, Exception):
            raise msg
        return msg

    async def unsubscribe(self, channel: str):
        self.channels.discard(channel)
        if self in self.redis.subscribers:
            self.redis.subscribers.remove(self)

    async def aclose(self):
        self.closed = True


class FakeRedis:
    """Just enough of redis.asyncio.Redis for publish/subscribe."""

    def __init__(self):
        self.published: List[tuple] = []
        self.subscribers: List[FakePubSub] = []
        self.fail_subscribe = 0
        self.fail_publish = False

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise RedisConnectionError("connection lost")
        self.published.append((channel, message))
        receivers = [s for s in self.subscribers if channel in s.channels]
        for subscriber in receivers:
            subscriber.queue.put_nowait({"type": "message", "channel": channel, "data": message})
        return len(receivers)

    def break_subscriptions(self):
        for subscriber in list(self.subscribers):
            subscriber.queue.put_nowait(RedisConnectionError("connection reset"))


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
def rng():
    return np.random.default_rng(20240214)


@pytest.fixture
def fake_redis():
    return FakeRedis()


async def seed_catalog(
    session_factory, per_category: Dict[str, int], usage_count: int = 0
) -> List[UUID]:
    """Insert active cards, per_category[c] of category c. Returns their ids."""
    card_ids = []
    async with session_factory() as session:
        async with session.begin():
            for category, count in per_category.items():
                for i in range(count):
                    card_id = uuid7()
                    card_ids.append(card_id)
                    session.add(
                        Card(
                            card_id=card_id,
                            category=category,
                            prompt=f"{category} prompt {i}",
                            difficulty_level=1 + i % 3,
                            usage_count=usage_count,
                            is_active=True,
                        )
                    )
    return card_ids


@pytest.fixture
async def catalog(test_session_factory):
    """A catalog large enough for a 60-card deck in any split."""
    return await seed_catalog(test_session_factory, {"action": 30, "text": 30, "photo": 30})
