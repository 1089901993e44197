"""
Request bodies for the HTTP API.

Field names follow the stored documents (camelCase on the wire).
"""

from typing import List, Optional

from pydantic import Field

from splitchain.models.ledger import DEFAULT_CURRENCY, Document, SettlementStatus


class CreateGroupRequest(Document):
    name: str = Field(..., min_length=1)
    preferred_chains: List[int] = Field(default_factory=list)
    signature: Optional[str] = None


class JoinGroupRequest(Document):
    preferred_chains: List[int] = Field(default_factory=list)
    signature: Optional[str] = None


class StatusRequest(Document):
    is_active: bool


class ExpenseRequest(Document):
    amount: float = Field(..., ge=0)
    description: str = ""
    split_among: Optional[List[str]] = Field(None, description="Defaults to every participant")
    currency: str = DEFAULT_CURRENCY
    signature: Optional[str] = None


class QuoteRequest(Document):
    to: str
    amount: float = Field(..., gt=0)
    from_chain: int
    to_chain: Optional[int] = None


class SettlementRequest(Document):
    to: str
    amount: float = Field(..., ge=0)
    currency: str = DEFAULT_CURRENCY
    from_chain: Optional[int] = None
    to_chain: Optional[int] = None
    status: SettlementStatus = SettlementStatus.COMPLETED
    tx_hash: Optional[str] = None
    signature: Optional[str] = None
