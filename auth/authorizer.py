"""Role- and department-scoped authorization.

`authorize` is the single decision point: it either raises `Forbidden` or
returns a `ScopeFilter` describing which owners' records the caller may touch.
Department scoping always comes from the session, never from the request; a
request naming another department is refused instead of being re-scoped.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional

from sqlalchemy import func

from auth.session import Session
from Models.auth_models import User, UserRole
from Models.complaints_models import Complaint
from utils.errors import Forbidden

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    READ_OWN = "read-own"
    READ_DEPARTMENT = "read-department"
    READ_ALL = "read-all"
    WRITE_STATUS = "write-status"
    WRITE_USER = "write-user"


COMPLAINANT_ROLES = frozenset({UserRole.STUDENT, UserRole.EMPLOYEE})
ADMIN_MANAGED_ROLES = frozenset({UserRole.STUDENT, UserRole.SUB_ADMIN, UserRole.EMPLOYEE})
SUB_ADMIN_MANAGED_ROLES = frozenset({UserRole.EMPLOYEE})


def normalize_department(d: Optional[str]) -> Optional[str]:
    if d is None:
        return None
    d = d.strip()
    return d.casefold() if d else None


@dataclass(frozen=True)
class ResourceScope:
    """What the caller is aiming at.

    For a single record: the owner's id, role and department.
    For a query: optionally the department the client asked for.
    """
    owner_id: Optional[int] = None
    owner_role: Optional[UserRole] = None
    department: Optional[str] = None

    @classmethod
    def of_user(cls, user: User) -> "ResourceScope":
        return cls(owner_id=user.user_id, owner_role=user.role, department=user.department)


@dataclass(frozen=True)
class ScopeFilter:
    """Narrowing applied to every query and checked against every target record.

    None means "unrestricted" for that dimension.
    """
    owner_id: Optional[int] = None
    department: Optional[str] = None  # normalized
    roles: Optional[FrozenSet[UserRole]] = None

    def permits(self, owner_id: Optional[int], owner_role: Optional[UserRole],
                department: Optional[str]) -> bool:
        if self.owner_id is not None and owner_id != self.owner_id:
            return False
        if self.roles is not None and owner_role not in self.roles:
            return False
        if self.department is not None and normalize_department(department) != self.department:
            return False
        return True

    def user_clauses(self, user_cls=User):
        """WHERE clauses over a User (or aliased User) entity."""
        clauses = []
        if self.owner_id is not None:
            clauses.append(user_cls.user_id == self.owner_id)
        if self.roles is not None:
            clauses.append(user_cls.role.in_(sorted(self.roles, key=lambda r: r.value)))
        if self.department is not None:
            clauses.append(func.lower(func.trim(user_cls.department)) == self.department)
        return clauses

    def complaint_clauses(self, owner_cls=User):
        """WHERE clauses for a Complaint query joined to its owner."""
        clauses = self.user_clauses(owner_cls)
        if self.owner_id is not None:
            clauses.append(Complaint.user_id == self.owner_id)
        return clauses


def _deny(session: Session, action: Action, reason: str):
    logger.warning("denied %s for user=%s role=%s: %s", action.value, session.user_id, session.role.value, reason)
    raise Forbidden("Access denied. " + reason)


def _check_target(session: Session, action: Action, flt: ScopeFilter, scope: ResourceScope) -> ScopeFilter:
    if scope.owner_id is not None or scope.owner_role is not None:
        if not flt.permits(scope.owner_id, scope.owner_role, scope.department):
            _deny(session, action, "The record is outside your scope.")
    return flt


def _own_only(session: Session, action: Action, scope: ResourceScope) -> ScopeFilter:
    if action is not Action.READ_OWN:
        _deny(session, action, "Insufficient permissions.")
    flt = ScopeFilter(owner_id=session.user_id)
    if scope.owner_id is not None and scope.owner_id != session.user_id:
        _deny(session, action, "You can only access your own records.")
    return flt


def _admin_policy(session: Session, action: Action, scope: ResourceScope) -> ScopeFilter:
    if action is Action.READ_OWN:
        return _check_target(session, action, ScopeFilter(owner_id=session.user_id), scope)
    if action is Action.WRITE_USER:
        return _check_target(session, action, ScopeFilter(roles=ADMIN_MANAGED_ROLES), scope)
    if action is Action.WRITE_STATUS:
        return _check_target(session, action, ScopeFilter(roles=COMPLAINANT_ROLES), scope)
    # READ_ALL / READ_DEPARTMENT: an admin may narrow to any department it names
    if scope.owner_id is None and scope.owner_role is None:
        return ScopeFilter(department=normalize_department(scope.department))
    return ScopeFilter()


def _sub_admin_policy(session: Session, action: Action, scope: ResourceScope) -> ScopeFilter:
    own_dept = normalize_department(session.department)
    if own_dept is None:
        _deny(session, action, "Sub-admin department not found.")
    if action is Action.READ_OWN:
        return _check_target(session, action, ScopeFilter(owner_id=session.user_id), scope)
    if action is Action.READ_ALL:
        _deny(session, action, "Sub-admins can only access their own department.")
    requested = normalize_department(scope.department)
    if requested is not None and requested != own_dept:
        _deny(session, action, "You can only access your own department.")
    if action is Action.WRITE_USER:
        return _check_target(session, action, ScopeFilter(department=own_dept, roles=SUB_ADMIN_MANAGED_ROLES), scope)
    # READ_DEPARTMENT / WRITE_STATUS
    return _check_target(session, action, ScopeFilter(department=own_dept, roles=COMPLAINANT_ROLES), scope)


_POLICIES: Dict[UserRole, Callable[[Session, Action, ResourceScope], ScopeFilter]] = {
    UserRole.ADMIN: _admin_policy,
    UserRole.SUB_ADMIN: _sub_admin_policy,
    UserRole.EMPLOYEE: _own_only,
    UserRole.STUDENT: _own_only,
}
assert set(_POLICIES) == set(UserRole), "every role needs a policy"


_READ_ACTIONS: Dict[UserRole, Action] = {
    UserRole.ADMIN: Action.READ_ALL,
    UserRole.SUB_ADMIN: Action.READ_DEPARTMENT,
    UserRole.EMPLOYEE: Action.READ_OWN,
    UserRole.STUDENT: Action.READ_OWN,
}
assert set(_READ_ACTIONS) == set(UserRole), "every role needs a read action"


def authorize(session: Session, action: Action, scope: Optional[ResourceScope] = None) -> ScopeFilter:
    return _POLICIES[session.role](session, action, scope or ResourceScope())


def default_read_action(role: UserRole) -> Action:
    """The widest read a role is ever granted."""
    return _READ_ACTIONS[role]
