"""Window-to-round matching.

The rule that decides which locked window a round settles is owned by the
results producer. It is injected into settlement through WindowMatcher.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pulp_economy.db.models import PulpyWindow
from pulp_economy.windows.service import WINDOW_LOCKED

logger = logging.getLogger(__name__)


class WindowMatcher(Protocol):
    async def match(self, db: AsyncSession, round_meta: dict[str, Any]) -> PulpyWindow | None:
        """Return the single locked window this round settles, or None."""
        ...


class ExplicitWindowMatcher:
    """Match only the locked window named by round_meta["window_id"]."""

    async def match(self, db: AsyncSession, round_meta: dict[str, Any]) -> PulpyWindow | None:
        window_id = round_meta.get("window_id")
        if window_id is None:
            return None
        try:
            window_id = int(window_id)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-integer window_id in round metadata: %r", window_id)
            return None

        result = await db.execute(
            select(PulpyWindow)
            .where(PulpyWindow.id == window_id, PulpyWindow.status == WINDOW_LOCKED)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
