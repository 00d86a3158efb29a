from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, Field

from chatcore.core.clock import ensure_utc

UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
UserId = Annotated[str, Field(min_length=1, max_length=64)]
