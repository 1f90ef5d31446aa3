"""Per-session agent state: loading flag and the model the backend reports."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pidesk.engine.errors import StateRefreshError

logger = logging.getLogger(__name__)

# Async fetch of the backend's view of a session.
# Signature: async def fetch(session_id) -> dict
# Returns: {"success": True, "data": {"model": {"id": ..., "provider": ...}}}
#       or {"success": False, "error": "..."}
StateFetcher = Callable[[str], Awaitable[dict[str, Any]]]


class AgentStore:
    """Agent status for one session."""

    def __init__(
        self,
        session_id: str,
        state_fetcher: StateFetcher | None = None,
    ) -> None:
        self.session_id = session_id
        self.is_loading = False
        self.error: str | None = None
        self.current_model = ""
        self.current_provider = ""
        self._state_fetcher = state_fetcher

    def set_loading(self, loading: bool) -> None:
        self.is_loading = loading

    async def refresh_state(self) -> None:
        """Pull current model/provider from the backend.

        Raises:
            StateRefreshError: the fetch failed or reported failure.
        """
        if self._state_fetcher is None:
            return
        try:
            response = await self._state_fetcher(self.session_id)
        except StateRefreshError:
            raise
        except Exception as exc:
            raise StateRefreshError(self.session_id, str(exc)) from exc

        if isinstance(response, dict) and response.get("success"):
            data = response.get("data") or {}
            model = data.get("model") if isinstance(data, dict) else None
            model = model if isinstance(model, dict) else {}
            model_id = model.get("id")
            provider = model.get("provider")
            self.current_model = model_id if isinstance(model_id, str) else ""
            self.current_provider = provider if isinstance(provider, str) else ""
            self.error = None
            return

        error = "Failed to get agent state"
        if isinstance(response, dict) and isinstance(response.get("error"), str):
            error = response["error"]
        self.error = error
        raise StateRefreshError(self.session_id, error)
