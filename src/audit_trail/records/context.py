"""Transaction-scoped state and actor/context enrichment."""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from audit_trail.capture.masking import DataMasker
from audit_trail.core.interfaces import ActorResolver, ContextContributor
from audit_trail.core.types import Actor, AuditAction
from audit_trail.dispatch.scheduled import ScheduledAuditManager

logger = logging.getLogger(__name__)

CONTEXT_USER_ID = "_user_id"
CONTEXT_USERNAME = "_username"


class TransactionContext:
    """State owned by one transaction, passed through the call chain.

    Holds the transaction token shared by every record of the commit, the
    buffer of pending deliveries, and the actor resolver.  The token is
    generated lazily and dropped by :meth:`reset`.
    """

    def __init__(
        self,
        buffer: ScheduledAuditManager,
        actor_resolver: ActorResolver | None = None,
    ) -> None:
        self.buffer = buffer
        self.actor_resolver = actor_resolver
        self._token: str | None = None

    @property
    def token(self) -> str:
        if self._token is None:
            self._token = str(uuid.uuid4())
        return self._token

    def reset(self) -> None:
        """Forget the token and drop every buffered record."""
        self._token = None
        self.buffer.clear()


@dataclass(slots=True)
class ResolvedContext:
    """Actor fields and the redacted context map for one record."""

    user_id: str | None = None
    username: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


def _stringify(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    return str(value)


class ContextResolver:
    """Build the actor fields and ``context`` map of a record.

    ``_user_id`` / ``_username`` entries in the caller's context override the
    resolved actor and are removed from the stored map.  Impersonation is
    recorded under ``impersonation``; contributor entries are merged in
    order; the whole map is then redacted.
    """

    def __init__(
        self,
        masker: DataMasker,
        contributors: Iterable[ContextContributor] = (),
        *,
        user_agent_max_length: int = 500,
        track_client_ip: bool = True,
        track_user_agent: bool = True,
    ) -> None:
        self.masker = masker
        self.contributors = list(contributors)
        self.user_agent_max_length = user_agent_max_length
        self.track_client_ip = track_client_ip
        self.track_user_agent = track_user_agent

    def resolve(
        self,
        entity: Any,
        action: AuditAction,
        new_values: Mapping[str, Any],
        extra: Mapping[str, Any],
        actor_resolver: ActorResolver | None,
    ) -> ResolvedContext:
        actor = (actor_resolver.current_actor() if actor_resolver is not None else None) or Actor()
        context = {k: v for k, v in extra.items() if k not in (CONTEXT_USER_ID, CONTEXT_USERNAME)}
        if actor.is_impersonated:
            context["impersonation"] = {
                "impersonator_id": actor.impersonator_id,
                "impersonator_username": actor.impersonator_username,
            }
        for contributor in self.contributors:
            context.update(contributor.contribute(entity, action, new_values))

        user_agent = actor.user_agent if self.track_user_agent else None
        if user_agent is not None:
            user_agent = user_agent[: self.user_agent_max_length]
        return ResolvedContext(
            user_id=_stringify(extra.get(CONTEXT_USER_ID, actor.user_id)),
            username=_stringify(extra.get(CONTEXT_USERNAME, actor.username)),
            client_ip=actor.client_ip if self.track_client_ip else None,
            user_agent=user_agent,
            context=self.masker.redact(context),
        )
