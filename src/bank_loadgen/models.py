from enum import StrEnum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field


class OperationType(StrEnum):
    REGISTER = "register"
    LOGIN = "login"
    CREATE_ACCOUNT = "createAccount"
    LIST_ACCOUNTS = "listAccounts"
    TRANSFER = "transfer"
    PAYMENT = "payment"
    HEALTH_CHECK = "healthCheck"


class Credentials(BaseModel):
    name: str
    password: str


class TransactionRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: float
    type: Literal["transfer", "payment"]


class RegisterResponse(BaseModel):
    user_id: str = Field(min_length=1)


class LoginResponse(BaseModel):
    token: str = Field(min_length=1)


class AccountResponse(BaseModel):
    account_id: str = Field(min_length=1, validation_alias=AliasChoices("account_id", "id"))


class AccountListResponse(BaseModel):
    accounts: list[dict[str, Any]]


class HealthResponse(BaseModel):
    status: Literal["OK"]
