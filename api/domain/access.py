# SPDX-License-Identifier: Apache-2.0

"""
Establishment access scoping.

This module contains pure functions computing which establishments a caller
may read or write, and how an explicit establishment filter is narrowed by
that scope.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from models.entities import Activity, UserContext
from models.enums import ELEVATED_READ_ROLES, UserRole

SCOPE_PUBLIC = "public"
SCOPE_MANAGED = "managed"
SCOPE_UNSCOPED = "unscoped"


@dataclass
class AuthorizationResult:
    """Result of an access check."""
    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class AccessScope:
    """Establishments a caller may act upon."""
    kind: str
    etablissement_ids: frozenset = frozenset()

    @property
    def is_public(self) -> bool:
        return self.kind == SCOPE_PUBLIC

    @property
    def is_unscoped(self) -> bool:
        return self.kind == SCOPE_UNSCOPED

    def covers(self, etablissement_id: int) -> bool:
        """Check if the establishment is inside the scope."""
        if self.is_unscoped:
            return True
        if self.is_public:
            return False
        return etablissement_id in self.etablissement_ids


@dataclass
class ScopedFilter:
    """
    Establishment and visibility restriction for a listing.

    ``etablissement_ids`` of None means no restriction; ``is_empty`` means the
    intersection of scope and request is empty and no query is needed.
    """
    etablissement_ids: Optional[List[int]] = None
    public_only: bool = False
    is_empty: bool = False
    message: Optional[str] = None


def resolve_scope(user_context: Optional[UserContext], managed_ids: Iterable[int] = ()) -> AccessScope:
    """
    Compute the access scope of a caller.

    Args:
        user_context: Authenticated caller, or None for anonymous access
        managed_ids: Establishments the caller manages (coordinators only)

    Returns:
        AccessScope for the caller
    """
    if user_context is None:
        return AccessScope(kind=SCOPE_PUBLIC)

    if user_context.role in ELEVATED_READ_ROLES:
        return AccessScope(kind=SCOPE_UNSCOPED)

    if user_context.role == UserRole.COORDINATEUR_ACTIVITES.value:
        return AccessScope(kind=SCOPE_MANAGED, etablissement_ids=frozenset(managed_ids))

    # Citizens and any role unknown to this subsystem
    return AccessScope(kind=SCOPE_PUBLIC)


def needs_managed_establishments(user_context: Optional[UserContext]) -> bool:
    """Check whether the caller's scope depends on their managed establishments."""
    return user_context is not None and user_context.role == UserRole.COORDINATEUR_ACTIVITES.value


def check_write_access(scope: AccessScope, etablissement_id: int) -> AuthorizationResult:
    """
    Check that the caller may write activities for an establishment.

    Args:
        scope: Caller scope
        etablissement_id: Target establishment

    Returns:
        AuthorizationResult
    """
    if scope.is_public:
        return AuthorizationResult(
            allowed=False,
            reason="Accès en lecture seule"
        )

    if not scope.covers(etablissement_id):
        return AuthorizationResult(
            allowed=False,
            reason="Vous ne pouvez gérer que les activités de vos établissements"
        )

    return AuthorizationResult(allowed=True)


def check_read_access(scope: AccessScope, activity: Activity) -> AuthorizationResult:
    """
    Check that the caller may read a single activity.

    Public callers only see validated, published activities; coordinators
    only see their establishments.
    """
    if scope.is_public:
        if activity.is_visible_public and activity.is_valide_par_admin:
            return AuthorizationResult(allowed=True)
        return AuthorizationResult(allowed=False, reason="Activité non publique")

    if not scope.covers(activity.etablissement_id):
        return AuthorizationResult(
            allowed=False,
            reason="Vous n'avez pas accès aux activités de cet établissement"
        )

    return AuthorizationResult(allowed=True)


def build_scoped_filter(scope: AccessScope, requested_id: Optional[int] = None) -> ScopedFilter:
    """
    Intersect an explicit establishment filter with the caller scope.

    Args:
        scope: Caller scope
        requested_id: Establishment requested in the query string

    Returns:
        ScopedFilter; an empty intersection is not an error
    """
    if scope.is_public:
        ids = [requested_id] if requested_id is not None else None
        return ScopedFilter(etablissement_ids=ids, public_only=True)

    if scope.is_unscoped:
        ids = [requested_id] if requested_id is not None else None
        return ScopedFilter(etablissement_ids=ids)

    if not scope.etablissement_ids:
        return ScopedFilter(
            etablissement_ids=[],
            is_empty=True,
            message="Aucun établissement assigné"
        )

    if requested_id is not None:
        if requested_id not in scope.etablissement_ids:
            return ScopedFilter(etablissement_ids=[], is_empty=True)
        return ScopedFilter(etablissement_ids=[requested_id])

    return ScopedFilter(etablissement_ids=sorted(scope.etablissement_ids))
