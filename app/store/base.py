from __future__ import annotations

import abc
from typing import Any, Dict, Iterable, List, Optional

Row = Dict[str, Any]


class SessionStore(abc.ABC):
    """Authoritative relational store for sessions and their analysis records.

    ``analysis_results`` and ``session_analytics`` hold at most one row per
    session: writers must go through the upsert methods, which insert or
    replace by ``session_id``.
    """

    name: str = "unknown"

    # Identity
    @abc.abstractmethod
    async def get_profile_for_token(self, token: str) -> Optional[Row]:
        """Resolve an end-user bearer token to its profile row, or None when invalid."""

    # Sessions
    @abc.abstractmethod
    async def create_session(self, row: Row) -> Row:
        ...

    @abc.abstractmethod
    async def get_session(self, session_id: str, owner_id: Optional[str] = None) -> Optional[Row]:
        ...

    @abc.abstractmethod
    async def update_session(
        self,
        session_id: str,
        fields: Row,
        expected_statuses: Optional[Iterable[str]] = None,
    ) -> Optional[Row]:
        """Apply ``fields`` and return the updated row.

        With ``expected_statuses`` the update only applies while the row's
        status is one of them; None is returned when nothing matched.
        """

    @abc.abstractmethod
    async def list_recent_sessions(
        self,
        statuses: Iterable[str],
        limit: int = 10,
        owner_id: Optional[str] = None,
    ) -> List[Row]:
        ...

    # Analysis
    @abc.abstractmethod
    async def get_analysis_result(self, session_id: str) -> Optional[Row]:
        ...

    @abc.abstractmethod
    async def upsert_analysis_result(self, row: Row) -> None:
        ...

    @abc.abstractmethod
    async def get_session_analytics(self, session_id: str) -> Optional[Row]:
        ...

    @abc.abstractmethod
    async def upsert_session_analytics(self, row: Row) -> None:
        ...

    # Usage accounting
    @abc.abstractmethod
    async def get_active_subscription(self, profile_id: str) -> Optional[Row]:
        ...

    @abc.abstractmethod
    async def update_subscription(self, subscription_id: str, fields: Row) -> None:
        ...

    @abc.abstractmethod
    async def insert_usage(self, row: Row) -> None:
        ...

    @abc.abstractmethod
    async def insert_audit_log(self, row: Row) -> None:
        ...
