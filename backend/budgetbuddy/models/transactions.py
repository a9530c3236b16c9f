from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TransactionKind = Literal["income", "expense"]


class TransactionInput(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: TransactionKind
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    description: str = ""
    category: str = Field(min_length=1)
    category_icon: str = ""
    occurred_at: date
    notes: str | None = None
    tag_ids: list[str] = Field(default_factory=list)

    @field_validator("category")
    @classmethod
    def _category_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("category required")
        return value

    @field_validator("tag_ids")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for tag_id in value:
            tag_id = tag_id.strip()
            if tag_id:
                seen.setdefault(tag_id, None)
        return list(seen)


class TransactionCreateResponse(BaseModel):
    ok: bool = True
    id: str


class StatsResponse(BaseModel):
    month: str
    income: Decimal
    expense: Decimal
    balance: Decimal
    previous_balance: Decimal
