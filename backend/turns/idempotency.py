from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, ContextManager, Iterator, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import TurnRecord

logger = logging.getLogger(__name__)


class IdempotencyStore(Protocol):
    def get(self, game_id: str, key: str) -> str | None: ...

    def put(self, game_id: str, key: str, turn_number: int, result_text: str) -> str: ...

    def lock(self, game_id: str, key: str) -> ContextManager[None]: ...


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class KeyedLocks:
    """Per-key locks, dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], _KeyLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, game_id: str, key: str) -> Iterator[None]:
        name = (game_id, key)
        with self._guard:
            entry = self._locks.setdefault(name, _KeyLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if not entry.holders:
                    del self._locks[name]


class InMemoryIdempotencyStore:
    def __init__(self, locks: KeyedLocks | None = None) -> None:
        self._results: dict[tuple[str, str], str] = {}
        self._locks = locks if locks is not None else KeyedLocks()

    def get(self, game_id: str, key: str) -> str | None:
        return self._results.get((game_id, key))

    def put(self, game_id: str, key: str, turn_number: int, result_text: str) -> str:
        return self._results.setdefault((game_id, key), result_text)

    def lock(self, game_id: str, key: str) -> ContextManager[None]:
        return self._locks.hold(game_id, key)


class SqlIdempotencyStore:
    def __init__(
        self, session_factory: Callable[[], Session], locks: KeyedLocks | None = None
    ) -> None:
        self._session_factory = session_factory
        self._locks = locks if locks is not None else KeyedLocks()

    def get(self, game_id: str, key: str) -> str | None:
        with self._session_factory() as session:
            return session.scalars(
                select(TurnRecord.result_text).where(
                    TurnRecord.game_id == game_id,
                    TurnRecord.idempotency_key == key,
                )
            ).first()

    def put(self, game_id: str, key: str, turn_number: int, result_text: str) -> str:
        with self._session_factory() as session:
            session.add(
                TurnRecord(
                    game_id=game_id,
                    idempotency_key=key,
                    turn_number=turn_number,
                    result_text=result_text,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("Turn %s/%s already recorded by another worker", game_id, key)
                stored = self.get(game_id, key)
                return stored if stored is not None else result_text
        return result_text

    def lock(self, game_id: str, key: str) -> ContextManager[None]:
        return self._locks.hold(game_id, key)
