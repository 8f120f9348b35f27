"""Pydantic models describing the ledger gateway's JSON-RPC payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from escrowsync.domain.amounts import normalize_address, parse_quantity

# Event names emitted by the escrow contract, mapped onto notification types.
CONTRACT_EVENT_ALIASES: dict[str, str] = {
    "ContractCreated": "AgreementCreated",
    "ContractAccepted": "AgreementAccepted",
    "ContractActivated": "AgreementActivated",
    "ContractDisputed": "AgreementDisputed",
    "ContractCompleted": "AgreementCompleted",
    "ContractFinalized": "AgreementFinalized",
    "ContractCancelled": "AgreementCancelled",
}


def _quantity(value: object) -> object:
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        return parse_quantity(value)
    return value


def _optional_quantity(value: object) -> object:
    if value in (None, "", 0, "0", "0x0"):
        return None
    return _quantity(value)


def _address(value: object) -> object:
    if isinstance(value, str):
        return normalize_address(value)
    return value


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class LedgerBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RpcError(LedgerBaseModel):
    code: int
    message: str
    data: Any = None


class RpcResponse(LedgerBaseModel):
    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: RpcError | None = None


class MilestonePayload(LedgerBaseModel):
    description: str = ""
    amount: int
    deadline: int | None = None
    status: int
    deliverable_ref: str | None = Field(default=None, alias="ipfsHash")

    _parse_amount = field_validator("amount", "status", mode="before")(_quantity)
    _parse_deadline = field_validator("deadline", mode="before")(_optional_quantity)
    _normalize_ref = field_validator("deliverable_ref", mode="before")(_blank_to_none)


class AgreementPayload(LedgerBaseModel):
    id: int
    company: str
    talent: str
    title: str = Field(default="", alias="jobTitle")
    total_amount: int = Field(alias="totalAmount")
    metadata_ref: str | None = Field(default=None, alias="ipfsMetadata")
    start_at: int | None = Field(default=None, alias="startDate")
    end_at: int | None = Field(default=None, alias="endDate")
    status: int
    company_approved: bool = Field(default=False, alias="companyApproved")
    talent_approved: bool = Field(default=False, alias="talentApproved")
    milestones: list[MilestonePayload] = Field(default_factory=list["MilestonePayload"])

    _parse_quantities = field_validator("id", "total_amount", "status", mode="before")(_quantity)
    _parse_dates = field_validator("start_at", "end_at", mode="before")(_optional_quantity)
    _normalize_parties = field_validator("company", "talent", mode="before")(_address)
    _normalize_ref = field_validator("metadata_ref", mode="before")(_blank_to_none)


class NotificationArgs(LedgerBaseModel):
    """Union of every event argument; each notification type reads its own subset."""

    agreement_id: int | None = Field(default=None, alias="contractId")
    company: str | None = None
    talent: str | None = None
    total_amount: int | None = Field(default=None, alias="totalAmount")
    milestone_index: int | None = Field(default=None, alias="milestoneIndex")
    deliverable_ref: str | None = Field(default=None, alias="ipfsHash")
    amount: int | None = None
    initiator: str | None = None
    reason: str | None = None
    token_id: int | None = Field(default=None, alias="tokenId")
    issuer: str | None = None
    recipient: str | None = None
    skill_name: str | None = Field(default=None, alias="skillName")

    _parse_quantities = field_validator(
        "agreement_id", "total_amount", "milestone_index", "amount", "token_id", mode="before"
    )(_quantity)
    _normalize_addresses = field_validator(
        "company", "talent", "initiator", "issuer", "recipient", mode="before"
    )(_address)
    _normalize_text = field_validator("deliverable_ref", "reason", mode="before")(_blank_to_none)


class NotificationPayload(LedgerBaseModel):
    type: str = Field(alias="event")
    transaction_hash: str = Field(alias="transactionHash")
    block_number: int = Field(alias="blockNumber")
    log_index: int = Field(default=0, alias="logIndex")
    timestamp: int
    args: NotificationArgs = Field(default_factory=NotificationArgs)

    _parse_quantities = field_validator(
        "block_number", "log_index", "timestamp", mode="before"
    )(_quantity)

    @field_validator("type", mode="before")
    @classmethod
    def _resolve_alias(cls, value: object) -> object:
        if isinstance(value, str):
            return CONTRACT_EVENT_ALIASES.get(value, value)
        return value

    @field_validator("transaction_hash", mode="before")
    @classmethod
    def _lower_hash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.lower()
        return value


__all__ = [
    "CONTRACT_EVENT_ALIASES",
    "AgreementPayload",
    "MilestonePayload",
    "NotificationArgs",
    "NotificationPayload",
    "RpcError",
    "RpcResponse",
]
