import pytest

from auth.authorizer import (
    Action, ResourceScope, ScopeFilter, COMPLAINANT_ROLES, authorize, default_read_action, normalize_department,
)
from auth.session import Session
from Models.auth_models import UserRole
from utils.errors import Forbidden


def _session(role, department=None, user_id=1):
    return Session(user_id=user_id, role=role, department=department, force_password_change=False, token_version=0)


ADMIN = _session(UserRole.ADMIN, user_id=1)
CARDIO = _session(UserRole.SUB_ADMIN, "Cardiology", user_id=2)
STUDENT = _session(UserRole.STUDENT, "Cardiology", user_id=3)
EMPLOYEE = _session(UserRole.EMPLOYEE, "Cardiology", user_id=4)


def test_every_role_has_a_read_action():
    assert {default_read_action(r) for r in UserRole} == {Action.READ_ALL, Action.READ_DEPARTMENT, Action.READ_OWN}


def test_department_comparison_is_case_insensitive():
    assert normalize_department("  Cardiology ") == normalize_department("CARDIOLOGY")
    assert normalize_department("   ") is None


def test_admin_reads_everything_or_narrows_by_department():
    assert authorize(ADMIN, Action.READ_ALL) == ScopeFilter()
    assert authorize(ADMIN, Action.READ_ALL, ResourceScope(department="Neurology")) == \
        ScopeFilter(department="neurology")


def test_admin_manages_non_admin_accounts_only():
    authorize(ADMIN, Action.WRITE_USER, ResourceScope(owner_role=UserRole.SUB_ADMIN, department="Neurology"))
    with pytest.raises(Forbidden):
        authorize(ADMIN, Action.WRITE_USER, ResourceScope(owner_role=UserRole.ADMIN))


def test_sub_admin_is_scoped_to_own_department():
    flt = authorize(CARDIO, Action.READ_DEPARTMENT)
    assert flt.department == "cardiology"
    assert flt.roles == COMPLAINANT_ROLES

    # same department in another spelling is fine
    assert authorize(CARDIO, Action.READ_DEPARTMENT, ResourceScope(department="cardiology ")) == flt


def test_sub_admin_naming_another_department_is_refused():
    with pytest.raises(Forbidden):
        authorize(CARDIO, Action.READ_DEPARTMENT, ResourceScope(department="Neurology"))
    with pytest.raises(Forbidden):
        authorize(CARDIO, Action.READ_ALL)


def test_sub_admin_status_writes_follow_the_owner():
    ok = ResourceScope(owner_id=3, owner_role=UserRole.STUDENT, department="Cardiology")
    other = ResourceScope(owner_id=9, owner_role=UserRole.STUDENT, department="Neurology")

    authorize(CARDIO, Action.WRITE_STATUS, ok)
    with pytest.raises(Forbidden):
        authorize(CARDIO, Action.WRITE_STATUS, other)


def test_sub_admin_manages_only_employees_of_own_department():
    authorize(CARDIO, Action.WRITE_USER, ResourceScope(owner_role=UserRole.EMPLOYEE, department="Cardiology"))
    with pytest.raises(Forbidden):
        authorize(CARDIO, Action.WRITE_USER, ResourceScope(owner_role=UserRole.STUDENT, department="Cardiology"))
    with pytest.raises(Forbidden):
        authorize(CARDIO, Action.WRITE_USER, ResourceScope(owner_role=UserRole.EMPLOYEE, department="Neurology"))


def test_sub_admin_without_department_is_refused():
    orphan = _session(UserRole.SUB_ADMIN, None, user_id=5)
    with pytest.raises(Forbidden):
        authorize(orphan, Action.READ_DEPARTMENT)


@pytest.mark.parametrize("session", [STUDENT, EMPLOYEE])
def test_owners_only_read_their_own(session):
    assert authorize(session, Action.READ_OWN) == ScopeFilter(owner_id=session.user_id)
    with pytest.raises(Forbidden):
        authorize(session, Action.READ_OWN, ResourceScope(owner_id=999))
    for action in (Action.READ_DEPARTMENT, Action.READ_ALL, Action.WRITE_STATUS, Action.WRITE_USER):
        with pytest.raises(Forbidden):
            authorize(session, action)


def test_owner_query_ignores_requested_department():
    flt = authorize(STUDENT, Action.READ_OWN, ResourceScope(department="Neurology"))
    assert flt == ScopeFilter(owner_id=STUDENT.user_id)


def test_scope_filter_permits():
    flt = ScopeFilter(department="cardiology", roles=COMPLAINANT_ROLES)
    assert flt.permits(1, UserRole.STUDENT, "Cardiology")
    assert not flt.permits(1, UserRole.SUB_ADMIN, "Cardiology")
    assert not flt.permits(1, UserRole.STUDENT, "Neurology")
    assert not flt.permits(1, UserRole.STUDENT, None)
