from __future__ import annotations

from .records import Principal, Role


def principal_for(user) -> Principal:
    """Build the principal the billing services act for from an auth user."""
    roles = getattr(user, 'effective_roles', None)
    if roles is None:
        roles = tuple(getattr(user, 'roles', None) or (Role.USER,))
    return Principal(
        id=user.pk,
        email=user.email,
        name=getattr(user, 'name', '') or '',
        roles=tuple(roles),
    )
