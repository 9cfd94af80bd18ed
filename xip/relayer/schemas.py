"""
Pydantic request models for the relayer HTTP API.

Fields are snake_case in Python and camelCase on the wire. Intent ids and
token amounts travel as decimal strings (plain JSON integers are accepted).
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from xip.relayer.service import SettleRequest
from xip.utils.validation import validate_chain_id, validate_intent_id


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _intent_id(value: Any) -> int:
    valid, err = validate_intent_id(value)
    if not valid:
        raise ValueError(err)
    return int(value)


def _chain_id(value: Any) -> int:
    valid, err = validate_chain_id(value)
    if not valid:
        raise ValueError(err)
    return value


# ============ Verification / Settlement ============

class VerifyRequest(CamelModel):
    chain2_intent_id: int = Field(alias="chain2IntentId")
    chain_id: int

    @field_validator("chain2_intent_id", mode="before")
    @classmethod
    def _check_intent_id(cls, v: Any) -> int:
        return _intent_id(v)

    @field_validator("chain_id", mode="before")
    @classmethod
    def _check_chain_id(cls, v: Any) -> int:
        return _chain_id(v)


class SettleRequestBody(CamelModel):
    intent_id: int
    chain2_intent_id: int = Field(alias="chain2IntentId")
    origin_chain_id: int
    destination_chain_id: int
    solver_address: str

    @field_validator("intent_id", "chain2_intent_id", mode="before")
    @classmethod
    def _check_intent_ids(cls, v: Any) -> int:
        return _intent_id(v)

    @field_validator("origin_chain_id", "destination_chain_id", mode="before")
    @classmethod
    def _check_chain_ids(cls, v: Any) -> int:
        return _chain_id(v)

    def to_request(self) -> SettleRequest:
        return SettleRequest(
            intent_id=self.intent_id,
            chain2_intent_id=self.chain2_intent_id,
            origin_chain_id=self.origin_chain_id,
            destination_chain_id=self.destination_chain_id,
            solver_address=self.solver_address,
        )


class SettleWithProofRequestBody(SettleRequestBody):
    proof_data: Optional[dict[str, Any]] = None


class SubmitProofRequest(CamelModel):
    proof_data: dict[str, Any]


# ============ Recipient privacy store ============

class StoreRecipientsRequest(CamelModel):
    intent_id: str
    recipients: list[str] = Field(default_factory=list)
    amounts: list[Union[int, str]] = Field(default_factory=list)
    chain_id: int

    @field_validator("intent_id", mode="before")
    @classmethod
    def _intent_id_as_string(cls, v: Any) -> str:
        if isinstance(v, bool) or not isinstance(v, (int, str)):
            raise ValueError("intentId must be a string or integer")
        return str(v)
