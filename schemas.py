import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionType


class Credentials(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=200)


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str


class TransactionIn(BaseModel):
    type: TransactionType
    amount: float = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    date: dt.date


class TransactionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: TransactionType
    amount: float = Field(..., ge=0)
    category: str
    description: str = ""
    date: dt.date
    created_at: dt.datetime


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#64748b", pattern=r"^#[0-9a-fA-F]{6}$")


class CategoryRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: Optional[str] = None
    name: str
    type: TransactionType
    color: str
    is_custom: bool


class BudgetIn(BaseModel):
    amount: float = Field(..., ge=0)


class BudgetRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    category_name: str
    amount: float
