from asyncio import Lock
from uuid import UUID


class SessionLockManager:
    """Per-session locks that serialize turn operations inside one process.

    Cross-process races are still settled by the conditional write on the
    session row; this only keeps one client's operations in order.
    """

    def __init__(self):
        self.locks = {}  # session_id -> Lock
        self.lock = Lock()  # protects self.locks

    async def get_lock(self, session_id: UUID) -> Lock:
        """Get the Lock of the specified session_id

        Args:
            session_id (UUID): ID to identify the game session

        Returns:
            Lock: Lock of the specified session_id
        """
        async with self.lock:
            if session_id not in self.locks:
                self.locks[session_id] = Lock()
            return self.locks[session_id]

    async def cleanup(self, session_id: UUID):
        """Delete the Lock of the specified session_id once it is idle

        Args:
            session_id (UUID): ID to identify the game session
        """
        async with self.lock:
            session_lock = self.locks.get(session_id)
            if session_lock is not None and not session_lock.locked():
                del self.locks[session_id]
