from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from ...engine.game import Game


@dataclass
class GameSession:
    """One game held by the API plus the lock serializing access to it."""

    game: Game
    lock: threading.RLock = field(default_factory=threading.RLock)


class InMemorySessionStore:
    """Thread-safe in-memory game session store.

    Responsibilities:
    - Create new sessions with unique `game_id`s, evicting the least recently
      used one once `max_sessions` is reached
    - Retrieve existing sessions by `game_id`
    - Replace a session's game (new position)
    - Delete sessions
    """

    def __init__(self, max_sessions: int = 1024) -> None:
        self._lock = threading.RLock()
        self._sessions: "OrderedDict[str, GameSession]" = OrderedDict()
        self.max_sessions = max_sessions

    def create(self, game: Optional[Game] = None) -> str:
        """Create a new game session and return its `game_id`."""
        gid = str(uuid.uuid4())
        session = GameSession(game if game is not None else Game.new())
        with self._lock:
            while len(self._sessions) >= self.max_sessions:
                self._sessions.popitem(last=False)
            self._sessions[gid] = session
        return gid

    def get(self, game_id: str) -> Optional[GameSession]:
        with self._lock:
            session = self._sessions.get(game_id)
            if session is not None:
                self._sessions.move_to_end(game_id)
            return session

    def replace(self, game_id: str, game: Game) -> GameSession:
        with self._lock:
            session = self._sessions.get(game_id)
            if session is None:
                raise KeyError(game_id)
            with session.lock:
                session.game = game
            return session

    def delete(self, game_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(game_id, None) is not None
