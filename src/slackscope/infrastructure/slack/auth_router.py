"""Credential selection, identity handshake and team scoping."""

from typing import Any

import aiohttp

from slackscope.config.loader import MissingCredentialsError
from slackscope.config.models import SlackConfig
from slackscope.domain.entities.credential import (
    Credential,
    DelegatedCredential,
    Identity,
    ImpersonatedCredential,
    TeamScope,
)
from slackscope.domain.errors import (
    NotFoundError,
    SlackscopeError,
    TeamAmbiguityError,
    UpstreamAuthError,
)
from slackscope.infrastructure.logging import get_logger
from slackscope.infrastructure.rate_gate import RateGate
from slackscope.infrastructure.slack.transport import SlackTransport, build_transport

logger = get_logger(__name__)

# Operations that act on one workspace and cannot infer it from a channel
TEAM_SCOPED_OPERATIONS = frozenset(
    {
        "conversations.create",
        "team.info",
        "usergroups.create",
        "usergroups.list",
    }
)
TEAM_SCOPED_PREFIXES = ("admin.",)


def requires_team_scope(operation: str) -> bool:
    """Return True if an operation must target an explicit team."""
    return operation in TEAM_SCOPED_OPERATIONS or operation.startswith(
        TEAM_SCOPED_PREFIXES
    )


def select_credential(config: SlackConfig) -> Credential:
    """Pick the credential to use from configuration.

    A delegated token always wins. Otherwise both halves of the session
    credential must be present.

    Raises:
        MissingCredentialsError: If no usable combination is configured.
    """
    if config.xoxp_token:
        return DelegatedCredential(token=config.xoxp_token)
    missing = [
        name
        for name, value in (("xoxc_token", config.xoxc_token), ("xoxd_token", config.xoxd_token))
        if not value
    ]
    if missing:
        raise MissingCredentialsError(
            "Slack credentials missing: set xoxp_token, or both xoxc_token and "
            f"xoxd_token (missing: {', '.join(missing)})"
        )
    return ImpersonatedCredential(
        token=config.xoxc_token or "", session_cookie=config.xoxd_token or ""
    )


class AuthRouter:
    """Owns the transport and the team scope of the running identity.

    The transport variant is chosen once at construction. ``connect`` performs
    the identity handshake and learns which teams the identity can reach.
    """

    def __init__(
        self,
        credential: Credential,
        transport: SlackTransport,
        config: SlackConfig,
    ) -> None:
        self._credential = credential
        self._transport = transport
        self._config = config
        self._identity: Identity | None = None
        self._teams: tuple[str, ...] = ()

    @classmethod
    def from_config(
        cls,
        config: SlackConfig,
        rate_gate: RateGate,
        session: aiohttp.ClientSession | None = None,
    ) -> "AuthRouter":
        """Build a router from configuration.

        Raises:
            MissingCredentialsError: If no usable credentials are configured.
        """
        credential = select_credential(config)
        transport = build_transport(credential, config, rate_gate, session)
        logger.info("Transport selected", transport=transport.kind)
        return cls(credential, transport, config)

    @property
    def credential(self) -> Credential:
        """Return the credential in use."""
        return self._credential

    @property
    def transport(self) -> SlackTransport:
        """Return the transport in use."""
        return self._transport

    @property
    def is_impersonated(self) -> bool:
        """Return True if session credentials are in use."""
        return isinstance(self._credential, ImpersonatedCredential)

    @property
    def identity(self) -> Identity:
        """Return the identity learned during the handshake.

        Raises:
            RuntimeError: If connect has not completed.
        """
        if self._identity is None:
            raise RuntimeError("AuthRouter is not connected")
        return self._identity

    @property
    def is_enterprise(self) -> bool:
        """Return True if the identity belongs to an enterprise org."""
        return self._identity is not None and bool(self._identity.enterprise_id)

    @property
    def teams(self) -> tuple[str, ...]:
        """Return the teams the identity can reach."""
        return self._teams

    async def connect(self) -> Identity:
        """Perform the identity handshake.

        The workspace URL from the handshake becomes the routing host. For
        enterprise identities the caller's reachable teams are read from
        their user record; failing to read them leaves only the home team.
        """
        response = await self._transport.execute("auth.test")
        identity = Identity(
            url=response.get("url") or "",
            team=response.get("team") or "",
            user=response.get("user") or "",
            team_id=response.get("team_id") or "",
            user_id=response.get("user_id") or "",
            enterprise_id=response.get("enterprise_id") or None,
            bot_id=response.get("bot_id") or None,
        )
        if identity.url:
            self._transport.set_routing_host(identity.url)

        teams: list[str] = []
        if identity.enterprise_id:
            try:
                info = await self._transport.execute("users.info", {"user": identity.user_id})
            except UpstreamAuthError:
                raise
            except SlackscopeError as e:
                logger.warning(
                    "Failed to read enterprise teams, using home team only",
                    team_id=identity.team_id,
                    error=str(e),
                )
            else:
                enterprise_user = (info.get("user") or {}).get("enterprise_user") or {}
                teams = list(enterprise_user.get("teams") or [])
        if not teams and identity.team_id:
            teams = [identity.team_id]

        self._identity = identity
        self._teams = tuple(teams)
        logger.info(
            "Connected",
            team_id=identity.team_id,
            user_id=identity.user_id,
            enterprise_id=identity.enterprise_id,
            team_count=len(self._teams),
        )
        return identity

    def resolve_scope(self, requested_team: str | None = None) -> TeamScope:
        """Resolve the team a team-scoped call must target.

        Args:
            requested_team: Team pinned by the caller. Falls back to the
                configured team.

        Raises:
            NotFoundError: If the pinned team is not reachable.
            TeamAmbiguityError: If several teams are reachable and none is
                pinned.
        """
        identity = self.identity
        pinned = requested_team or self._config.team_id
        is_multi_team = len(self._teams) > 1

        if pinned:
            if self._teams and pinned not in self._teams:
                raise NotFoundError(pinned, "teams")
            team_id = pinned
        elif is_multi_team:
            raise TeamAmbiguityError("team-scoped operation", list(self._teams))
        else:
            team_id = self._teams[0] if self._teams else identity.team_id

        return TeamScope(
            team_id=team_id,
            is_multi_team=is_multi_team,
            routing_host=self._transport.api_url,
            enterprise_id=identity.enterprise_id,
            teams=self._teams,
        )

    async def execute(
        self,
        operation: str,
        params: dict[str, Any] | None = None,
        team: str | None = None,
    ) -> dict[str, Any]:
        """Call an operation, attaching the team for team-scoped operations.

        Read operations are routed through the channel's own scope and pass
        through unchanged.

        Raises:
            TeamAmbiguityError: If a team-scoped operation cannot pick a team.
        """
        if requires_team_scope(operation):
            try:
                scope = self.resolve_scope(team)
            except TeamAmbiguityError as e:
                raise TeamAmbiguityError(operation, e.teams) from None
            params = {**(params or {}), "team_id": scope.team_id}
        return await self._transport.execute(operation, params)

    async def close(self) -> None:
        """Release the transport."""
        await self._transport.close()
