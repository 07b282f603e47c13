"""
auth/policy.py -- Role hierarchy rules layered on top of plain role checks.

The guard only answers "is the caller's role in this set?". The rules below
are the extra business constraints user-administration routes enforce:

  ADMIN      may create, deactivate, reactivate and re-role anyone but itself.
  PROFESSOR  may create any non-ADMIN account and deactivate TÉCNICO and
             VOLUNTÁRIO accounts.
  TÉCNICO    no user administration.
  VOLUNTÁRIO no user administration.

Every function matches on the full Role enum, so adding a role means
touching each table here.
"""

from __future__ import annotations

from auth.models import Role, User

# Roles each actor may assign when creating an account.
_CREATABLE: dict[Role, frozenset[Role]] = {
    Role.ADMIN: frozenset(Role),
    Role.PROFESSOR: frozenset({Role.PROFESSOR, Role.TECNICO, Role.VOLUNTARIO}),
    Role.TECNICO: frozenset(),
    Role.VOLUNTARIO: frozenset(),
}

# Roles each actor may deactivate (soft delete).
_DEACTIVATABLE: dict[Role, frozenset[Role]] = {
    Role.ADMIN: frozenset(Role),
    Role.PROFESSOR: frozenset({Role.TECNICO, Role.VOLUNTARIO}),
    Role.TECNICO: frozenset(),
    Role.VOLUNTARIO: frozenset(),
}

USER_MANAGERS = frozenset({Role.ADMIN, Role.PROFESSOR})
ADMIN_ONLY = frozenset({Role.ADMIN})


def can_create(actor: User, new_role: Role) -> bool:
    return Role(new_role) in _CREATABLE[actor.role]


def can_deactivate(actor: User, target: User) -> bool:
    if actor.id == target.id:
        return False
    return target.role in _DEACTIVATABLE[actor.role]


def can_change_role(actor: User, target: User) -> bool:
    return actor.role is Role.ADMIN and actor.id != target.id


def can_reactivate(actor: User) -> bool:
    return actor.role is Role.ADMIN
