"""Registry of in-flight agent runs, addressable by request id for aborting."""

from __future__ import annotations

import uuid

from chatlog_agent.core.cancel import CancelToken
from chatlog_agent.log import get_logger

logger = get_logger(__name__)


class AgentRunRegistry:
    """Maps request ids to the cancel tokens of running turns."""

    def __init__(self) -> None:
        self._active: dict[str, CancelToken] = {}

    def start(self, request_id: str | None = None) -> tuple[str, CancelToken]:
        """Register a new run and return its id and cancel token."""
        request_id = request_id or uuid.uuid4().hex[:12]
        if request_id in self._active:
            raise ValueError(f"Request already running: {request_id}")
        token = CancelToken()
        self._active[request_id] = token
        logger.debug("agent_run_started", request_id=request_id)
        return request_id, token

    def abort(self, request_id: str) -> bool:
        """Signal cancellation; ``False`` when no such run is in flight."""
        token = self._active.pop(request_id, None)
        if token is None:
            logger.warning("agent_run_not_found", request_id=request_id)
            return False
        token.cancel()
        logger.info("agent_run_aborted", request_id=request_id)
        return True

    def finish(self, request_id: str) -> None:
        self._active.pop(request_id, None)

    def is_active(self, request_id: str) -> bool:
        return request_id in self._active

    @property
    def active_ids(self) -> list[str]:
        return list(self._active)
