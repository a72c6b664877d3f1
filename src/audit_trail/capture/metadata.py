"""Per-type audit policy: declaration and lookup.

Types opt in to auditing with the :func:`auditable` class decorator (or by
registering an :class:`~audit_trail.core.types.AuditPolicy` explicitly).
A type without a policy is never audited.  Policies are inherited: the
first class in the MRO carrying one wins.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from functools import lru_cache
from typing import Any, TypeVar

from audit_trail.capture.masking import DEFAULT_MASK
from audit_trail.core.types import AccessPolicy, AuditPolicy, type_name

POLICY_ATTRIBUTE = "__audit_policy__"

T = TypeVar("T", bound=type)


def auditable(
    cls: T | None = None,
    *,
    enabled: bool = True,
    ignore: Iterable[str] = (),
    sensitive: Mapping[str, str] | Iterable[str] = (),
    access: AccessPolicy | None = None,
    condition: Callable[..., bool] | None = None,
) -> Any:
    """Class decorator declaring an :class:`AuditPolicy`.

    Usable bare (``@auditable``) or with options::

        @auditable(ignore=["updated_at"], sensitive=["password"])
        class User: ...

    *sensitive* is either a list of field names masked with
    ``"**REDACTED**"`` or a mapping of field name to mask.
    """
    if isinstance(sensitive, Mapping):
        sensitive_fields = dict(sensitive)
    else:
        sensitive_fields = {name: DEFAULT_MASK for name in sensitive}
    policy = AuditPolicy(
        enabled=enabled,
        ignored_properties=frozenset(ignore),
        sensitive_fields=sensitive_fields,
        access=access,
        condition=condition,
    )

    def decorate(target: T) -> T:
        setattr(target, POLICY_ATTRIBUTE, policy)
        return target

    if cls is not None:
        return decorate(cls)
    return decorate


class AuditMetadataRegistry:
    """Resolves and caches the :class:`AuditPolicy` of each type.

    Parameters
    ----------
    ignored_entities:
        Type names (qualified or bare) that are never audited.
    ignored_properties:
        Field names excluded from every type's diffs and snapshots.
    cache_size:
        Bound of the per-type lookup cache.
    """

    def __init__(
        self,
        *,
        ignored_entities: Iterable[str] = (),
        ignored_properties: Iterable[str] = (),
        cache_size: int = 256,
    ) -> None:
        self.ignored_entities = frozenset(ignored_entities)
        self.ignored_properties = frozenset(ignored_properties)
        self._explicit: dict[type, AuditPolicy] = {}
        self._lookup = lru_cache(maxsize=cache_size)(self._resolve)

    def register(self, entity_type: type, policy: AuditPolicy) -> None:
        """Declare *policy* for *entity_type* without decorating it."""
        self._explicit[entity_type] = policy
        self._lookup.cache_clear()

    def _resolve(self, cls: type) -> AuditPolicy | None:
        for klass in cls.__mro__:
            if klass in self._explicit:
                return self._explicit[klass]
            policy = klass.__dict__.get(POLICY_ATTRIBUTE)
            if isinstance(policy, AuditPolicy):
                return policy
        return None

    def policy(self, entity_or_type: Any) -> AuditPolicy | None:
        cls = entity_or_type if isinstance(entity_or_type, type) else type(entity_or_type)
        return self._lookup(cls)

    def is_entity_ignored(self, entity_or_type: Any) -> bool:
        cls = entity_or_type if isinstance(entity_or_type, type) else type(entity_or_type)
        if type_name(cls) in self.ignored_entities or cls.__name__ in self.ignored_entities:
            return True
        policy = self.policy(cls)
        return policy is None or not policy.enabled

    def ignored_fields(self, entity: Any, additional: Iterable[str] = ()) -> frozenset[str]:
        """Global, per-type and *additional* ignored field names combined."""
        ignored = set(self.ignored_properties)
        ignored.update(additional)
        policy = self.policy(entity)
        if policy is not None:
            ignored.update(policy.ignored_properties)
        return frozenset(ignored)

    def sensitive_fields(self, entity: Any) -> Mapping[str, str]:
        policy = self.policy(entity)
        return policy.sensitive_fields if policy is not None else {}

    def access_policy(self, entity: Any) -> AccessPolicy | None:
        policy = self.policy(entity)
        return policy.access if policy is not None else None

    def condition(self, entity: Any) -> Callable[..., bool] | None:
        policy = self.policy(entity)
        return policy.condition if policy is not None else None

    def cache_info(self) -> Any:
        return self._lookup.cache_info()
