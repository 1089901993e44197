"""
Document schemas for group state.

Each Pydantic model below is stored as a nested JSON document, one Group per
session id. Field names are serialized in camelCase (``paidBy``,
``splitAmong``...) so documents written by other clients stay readable.
"""

import re
import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
DEFAULT_CURRENCY = "USDC"


def is_valid_address(value) -> bool:
    return isinstance(value, str) and ADDRESS_RE.match(value) is not None


def normalize_address(address: str) -> str:
    return address.lower()


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return normalize_address(a) == normalize_address(b)


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(prefix: Optional[str] = None) -> str:
    ident = f"{now_ms()}-{uuid.uuid4().hex[:9]}"
    return f"{prefix}-{ident}" if prefix else ident


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SettlementStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Participant(Document):
    address: str
    ens_name: Optional[str] = None
    ens_avatar: Optional[str] = None
    preferred_chains: List[int] = Field(default_factory=list)

    @field_validator("preferred_chains", mode="before")
    @classmethod
    def _none_is_unrestricted(cls, value):
        return [] if value is None else value


class Expense(Document):
    id: str
    amount: float = Field(ge=0)
    description: str = ""
    paid_by: str
    paid_by_ens: Optional[str] = None
    # may be empty in documents written by older clients; append paths reject it
    split_among: List[str] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)
    currency: str = DEFAULT_CURRENCY


class Settlement(Document):
    id: str
    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    amount: float = Field(ge=0)
    currency: str = DEFAULT_CURRENCY
    from_chain: Optional[int] = None
    to_chain: Optional[int] = None
    status: SettlementStatus = SettlementStatus.PENDING
    tx_hash: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)


class Group(Document):
    id: str
    name: str
    created_by: str
    created_at: int = Field(default_factory=now_ms)
    participants: List[Participant] = Field(default_factory=list)
    expenses: List[Expense] = Field(default_factory=list)
    settlements: List[Settlement] = Field(default_factory=list)
    is_active: bool = True
    channel_session_id: Optional[str] = None
    updated_at: Optional[int] = None

    # the remote store drops empty arrays, so they come back missing or null
    @field_validator("participants", "expenses", "settlements", mode="before")
    @classmethod
    def _missing_is_empty(cls, value):
        return [] if value is None else value

    def participant_addresses(self) -> List[str]:
        return [p.address for p in self.participants]

    def has_participant(self, address: str) -> bool:
        return any(same_address(p.address, address) for p in self.participants)

    def find_participant(self, address: str) -> Optional[Participant]:
        for p in self.participants:
            if same_address(p.address, address):
                return p
        return None
