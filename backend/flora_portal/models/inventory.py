from typing import Any, List, Optional

from pydantic import BaseModel, Field


class SyncRequest(BaseModel):
    product_ids: List[int] = Field(default_factory=list)


class TransferRequest(BaseModel):
    product_id: Optional[int] = None
    from_location: Optional[int] = None
    to_location: Optional[int] = None
    quantity: Any = None
    notes: Optional[str] = None
