from typing import Optional

from pydantic import Field

from ..core.enums import PackCancellationMode
from ._strict_base import StrictModel, StrictRequestModel


class CancelPackRequest(StrictRequestModel):
    mode: PackCancellationMode
    notes: Optional[str] = Field(default=None, max_length=2000)


class PackStats(StrictModel):
    pack_id: str
    status: str
    total_sessions: int
    consumed: int
    remaining: int
    scheduled: int
    completed: int
    no_show: int
    cancelled_penalty: int
    cancelled_no_penalty: int
