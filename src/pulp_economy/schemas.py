"""Shared response types."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from pulp_economy.timeutils import as_utc

# Stores like SQLite hand datetimes back without an offset; everything is UTC
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]
