"""Peer wire messages exchanged over the P2P data channel.

Every message is a UTF-8 JSON object with a ``t`` type field.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HelloMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    t: Literal["hello"] = "hello"
    client_id: str = Field(alias="clientId")
    impl: str
    version: str


class StartMessage(BaseModel):
    t: Literal["start"] = "start"
    id: str


class TokenMessage(BaseModel):
    t: Literal["token"] = "token"
    id: str
    tok: str


class ReasoningTokenMessage(BaseModel):
    t: Literal["reasoning_token"] = "reasoning_token"
    id: str
    tok: str


class EndMessage(BaseModel):
    t: Literal["end"] = "end"
    id: str


class ErrorMessage(BaseModel):
    t: Literal["error"] = "error"
    id: str
    message: str

