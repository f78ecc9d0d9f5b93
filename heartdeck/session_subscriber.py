import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional
from uuid import UUID

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from heartdeck.domain.errors import ChannelError
from heartdeck.domain.sync_rules import SyncView, reduce_snapshot
from heartdeck.load_secrets import channel_retry_seconds, poll_interval_seconds
from heartdeck.models.dc_models import SessionSnapshot
from heartdeck.services.turn_db import session_channel

FetchSnapshot = Callable[[UUID], Awaitable[Optional[SessionSnapshot]]]


class SessionSubscriber:
    """Keeps one participant's view of a session current.

    Redis pub/sub pushes snapshots as they are published. A polling loop
    refreshes from the store whenever the channel is not healthy, so a
    dropped subscription degrades to polling instead of going silent.
    """

    def __init__(
        self,
        fetch_snapshot: FetchSnapshot,
        redis: Redis | None,
        viewer_id: UUID,
        poll_interval: float = poll_interval_seconds,
        retry_interval: float = channel_retry_seconds,
        logger: logging.Logger | None = None,
    ):
        self.fetch_snapshot = fetch_snapshot
        self.redis = redis
        self.viewer_id = viewer_id
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self.logger = logger or logging.getLogger(__name__)

    async def observe(
        self,
        session_id: UUID,
        on_update: Callable,
        on_partner_join: Callable | None = None,
        on_error: Callable | None = None,
    ) -> Callable[[], Awaitable[None]]:
        """Start delivering snapshots of session_id to on_update.

        Callbacks may be plain functions or coroutines. Exceptions raised by
        a callback are logged and do not stop the observation.

        Args:
            session_id (UUID): The session to observe
            on_update (Callable): Called with every accepted SessionSnapshot
            on_partner_join (Callable | None): Called once the partner looks connected
            on_error (Callable | None): Called with a ChannelError when the baseline
                read or the push channel fails

        Returns:
            Callable[[], Awaitable[None]]: unsubscribe; safe to await more than once
        """
        observation = _Observation(self, session_id, on_update, on_partner_join, on_error)
        await observation.start()
        return observation.stop


class _Observation:
    def __init__(self, subscriber: SessionSubscriber, session_id, on_update, on_partner_join, on_error):
        self.subscriber = subscriber
        self.logger = subscriber.logger
        self.session_id = session_id
        self.on_update = on_update
        self.on_partner_join = on_partner_join
        self.on_error = on_error

        self.view: SyncView | None = None
        self.channel_healthy = False
        self.stopped = False
        self.apply_lock = asyncio.Lock()
        self.tasks: list[asyncio.Task] = []

    async def start(self):
        if not await self.refresh():
            # still observed: polling or the channel delivers once the store answers
            await self._call(
                self.on_error, ChannelError(f"No snapshot of session {self.session_id} available")
            )
        if self.subscriber.redis is not None:
            self.tasks.append(asyncio.create_task(self.listen()))
        self.tasks.append(asyncio.create_task(self.poll()))

    async def stop(self):
        if self.stopped:
            return
        self.stopped = True
        current = asyncio.current_task()
        tasks = [task for task in self.tasks if task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.debug(f"Stopped observing session {self.session_id}")

    async def refresh(self) -> bool:
        try:
            snapshot = await self.subscriber.fetch_snapshot(self.session_id)
        except Exception as e:
            self.logger.warning(f"Failed to fetch session {self.session_id}: {e}")
            return False
        if snapshot is None:
            return False
        await self.apply(snapshot)
        return True

    async def apply(self, snapshot: SessionSnapshot):
        async with self.apply_lock:
            if self.stopped:
                return
            view, joined = reduce_snapshot(self.view, snapshot, self.subscriber.viewer_id)
            if view is None:
                self.logger.debug(
                    f"Dropped stale snapshot v{snapshot.version} of session {self.session_id}"
                )
                return
            self.view = view
            await self._call(self.on_update, view.snapshot)
            if joined:
                self.logger.info(f"Partner joined session {self.session_id}")
                await self._call(self.on_partner_join)

    async def listen(self):
        channel = session_channel(self.session_id)
        while not self.stopped:
            pubsub = self.subscriber.redis.pubsub()
            try:
                await pubsub.subscribe(channel)
                self.channel_healthy = True
                self.logger.info(f"Subscribed to {channel}")
                # Catch up on anything published before the subscription landed.
                await self.refresh()
                while True:
                    msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
                    if msg and msg["type"] == "message":
                        await self.handle_message(msg["data"])
            except (RedisError, OSError) as e:
                self.channel_healthy = False
                self.logger.warning(f"Channel {channel} failed, polling until it recovers: {e}")
                await self._call(self.on_error, ChannelError(str(e)))
                await asyncio.sleep(self.subscriber.retry_interval)
            finally:
                self.channel_healthy = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except (RedisError, OSError) as e:
                    self.logger.debug(f"Failed to close subscription to {channel}: {e}")

    async def handle_message(self, data):
        try:
            snapshot = SessionSnapshot.model_validate_json(data)
        except ValidationError:
            # Notification without a usable payload: re-read the row.
            await self.refresh()
            return
        await self.apply(snapshot)

    async def poll(self):
        while not self.stopped:
            await asyncio.sleep(self.subscriber.poll_interval)
            if not self.channel_healthy:
                await self.refresh()

    async def _call(self, callback, *args):
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error(f"Callback for session {self.session_id} failed: {e}")
