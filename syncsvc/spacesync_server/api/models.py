"""
Request models for the push and pull endpoints.

Field names follow the wire format (clientGroupID, clientID, ...); Python
attributes are snake_case. Unknown fields are ignored so newer clients can
send extra metadata.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import RequestValidationError
from ..sync.pull import PullRequest
from ..sync.push import Mutation, PushRequest

# Largest value SQLite stores as INTEGER
MAX_SQL_INTEGER = 2**63 - 1


class MutationModel(BaseModel):
    """One mutation in a push body."""

    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., alias="clientID", min_length=1, description="Issuing client")
    id: int = Field(..., ge=1, le=MAX_SQL_INTEGER, description="Per-client mutation ID")
    name: str = Field(..., min_length=1, description="Mutator name")
    args: Any = Field(None, description="Mutator arguments")
    timestamp: Optional[float] = Field(None, description="Client clock, informational")


class PushRequestModel(BaseModel):
    """Push body."""

    model_config = ConfigDict(populate_by_name=True)

    client_group_id: str = Field(..., alias="clientGroupID", min_length=1)
    mutations: list[MutationModel] = Field(default_factory=list)
    profile_id: Optional[str] = Field(None, alias="profileID")
    push_version: Optional[int] = Field(None, alias="pushVersion")
    schema_version: Optional[str] = Field(None, alias="schemaVersion")

    def to_request(self, space_id: str) -> PushRequest:
        return PushRequest(
            space_id=space_id,
            client_group_id=self.client_group_id,
            mutations=[
                Mutation(client_id=m.client_id, id=m.id, name=m.name, args=m.args)
                for m in self.mutations
            ],
        )


class PullRequestModel(BaseModel):
    """Pull body. cookie is required but may be null."""

    model_config = ConfigDict(populate_by_name=True)

    client_group_id: str = Field(..., alias="clientGroupID", min_length=1)
    cookie: Optional[int] = Field(..., ge=0, le=MAX_SQL_INTEGER)
    profile_id: Optional[str] = Field(None, alias="profileID")
    schema_version: Optional[str] = Field(None, alias="schemaVersion")

    def to_request(self, space_id: str) -> PullRequest:
        return PullRequest(
            space_id=space_id,
            client_group_id=self.client_group_id,
            cookie=self.cookie,
        )


def _describe(e: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
        for err in e.errors()
    ]


def parse_push(space_id: str, body: Any) -> PushRequest:
    """Validate a push body.

    Raises:
        RequestValidationError: If the body does not match PushRequestModel
    """
    try:
        return PushRequestModel.model_validate(body).to_request(space_id)
    except ValidationError as e:
        raise RequestValidationError("Invalid push request", errors=_describe(e)) from e


def parse_pull(space_id: str, body: Any) -> PullRequest:
    """Validate a pull body.

    Raises:
        RequestValidationError: If the body does not match PullRequestModel
    """
    try:
        return PullRequestModel.model_validate(body).to_request(space_id)
    except ValidationError as e:
        raise RequestValidationError("Invalid pull request", errors=_describe(e)) from e
