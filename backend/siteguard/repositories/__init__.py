"""Storage backends for targets, history, alert rules and alert events."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from .base import AlertEventRepository, AlertRuleRepository, HistoryRepository, TargetRepository
from .memory import (
    MemoryAlertEventRepository,
    MemoryAlertRuleRepository,
    MemoryHistoryRepository,
    MemoryTargetRepository,
)
from .sql import SqlAlertEventRepository, SqlAlertRuleRepository, SqlHistoryRepository, SqlTargetRepository


@dataclass
class Repositories:
    """The set of repositories the engine is wired with."""
    targets: TargetRepository
    history: HistoryRepository
    rules: AlertRuleRepository
    events: AlertEventRepository


def memory_repositories() -> Repositories:
    return Repositories(
        targets=MemoryTargetRepository(),
        history=MemoryHistoryRepository(),
        rules=MemoryAlertRuleRepository(),
        events=MemoryAlertEventRepository(),
    )


def sql_repositories(session_factory: async_sessionmaker) -> Repositories:
    return Repositories(
        targets=SqlTargetRepository(session_factory),
        history=SqlHistoryRepository(session_factory),
        rules=SqlAlertRuleRepository(session_factory),
        events=SqlAlertEventRepository(session_factory),
    )


def build_repositories(backend: str, session_factory: Optional[async_sessionmaker] = None) -> Repositories:
    """Build repositories for the configured storage backend ("sql" or "memory")."""
    if backend == "memory":
        return memory_repositories()
    if session_factory is None:
        raise ValueError("SQL storage backend requires a session factory")
    return sql_repositories(session_factory)


__all__ = [
    "Repositories",
    "TargetRepository",
    "HistoryRepository",
    "AlertRuleRepository",
    "AlertEventRepository",
    "memory_repositories",
    "sql_repositories",
    "build_repositories",
]
