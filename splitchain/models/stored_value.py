from datetime import datetime, timezone
from sqlmodel import Field, SQLModel

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class StoredValue(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str = "[]"
    revision: int = 0
    updated_at: datetime = Field(default_factory=utc_now)
