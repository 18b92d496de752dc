"""Credential and team scope entities."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DelegatedCredential(BaseModel):
    """Pre-authorized OAuth token issued by the platform itself."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["delegated"] = "delegated"
    token: str = Field(repr=False)


class ImpersonatedCredential(BaseModel):
    """Session token plus session cookie lifted from an interactive login."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["impersonated"] = "impersonated"
    token: str = Field(repr=False)
    session_cookie: str = Field(repr=False)


Credential = DelegatedCredential | ImpersonatedCredential


class Identity(BaseModel):
    """Result of the identity handshake."""

    url: str
    team: str = ""
    user: str = ""
    team_id: str
    user_id: str
    enterprise_id: str | None = None
    bot_id: str | None = None


class TeamScope(BaseModel):
    """Workspace boundary a request is evaluated against."""

    model_config = ConfigDict(frozen=True)

    team_id: str
    is_multi_team: bool = False
    routing_host: str
    enterprise_id: str | None = None
    teams: tuple[str, ...] = ()
