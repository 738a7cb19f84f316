from decimal import Decimal
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def _clean(value: str, field: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field} entries must be non-empty strings")
    return value


# --- Requests ---

class VoterRef(BaseModel):
    id: str


class CreateElectionSchema(BaseModel):
    electionName: str = Field(..., min_length=1, examples=["Blockchain Club"])
    candidates: List[str] = Field(..., min_length=1, examples=[["Alice", "Bob"]])
    voters: List[Union[str, VoterRef]] = Field(..., min_length=1, examples=[["Voter1", "Voter2"]])
    depositAmount: Optional[Decimal] = Field(None, examples=["0.05"])

    @field_validator("electionName")
    @classmethod
    def _name(cls, v: str) -> str:
        return _clean(v, "electionName")

    @field_validator("candidates")
    @classmethod
    def _candidates(cls, v: List[str]) -> List[str]:
        return [_clean(c, "candidates") for c in v]

    @field_validator("voters")
    @classmethod
    def _voters(cls, v: List[Union[str, VoterRef]]) -> List[str]:
        # Older clients send [{"id": "Voter1"}, ...]
        return [_clean(x.id if isinstance(x, VoterRef) else x, "voters") for x in v]


class VoteSchema(BaseModel):
    admin: str = Field(..., min_length=1, examples=["0x" + "a" * 40])
    voter: str = Field(..., min_length=1, examples=["Voter1"])
    candidate: str = Field(..., min_length=1, examples=["Alice"])

    @field_validator("admin", "voter", "candidate")
    @classmethod
    def _strip(cls, v: str, info) -> str:
        return _clean(v, info.field_name)


class AdminSchema(BaseModel):
    admin: str = Field(..., min_length=1, examples=["0x" + "a" * 40])


class DepositSchema(AdminSchema):
    amount: Decimal = Field(..., gt=0, examples=["0.02"])


# --- Responses ---

class TxResponse(BaseModel):
    success: bool = True
    txHash: str


class VoteResponse(TxResponse):
    beforeBalance: str
    afterBalance: str


class BalanceResponse(BaseModel):
    balance: str


class ResultsResponse(BaseModel):
    success: bool = True
    result: Dict[str, int]


class ElectionsResponse(BaseModel):
    success: bool = True
    elections: List[str]
