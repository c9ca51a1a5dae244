import pytest

from dance_school.core.enums import EnrollmentStatus, Role
from dance_school.core.exceptions import AuthenticationError, NotFoundError, ValidationError


def test_admin_can_sign_in(container):
    container.user_service.create_admin(email="Admin@Example.com", password="secret123")
    user = container.auth_service.authenticate("admin@example.com", "secret123")
    assert user.role == Role.ADMIN
    assert user.display_name == "admin@example.com"


@pytest.mark.parametrize("email, password", [("admin@example.com", "wrong"), ("nobody@example.com", "secret123"), ("", "")])
def test_bad_credentials_rejected(container, email, password):
    container.user_service.create_admin(email="admin@example.com", password="secret123")
    with pytest.raises(AuthenticationError):
        container.auth_service.authenticate(email, password)


def test_provision_student_creates_identity_and_profile(container):
    user, student = container.user_service.provision_student(
        email="ana@example.com", password="dance123", profile={"first_name": "Ana", "last_name": "Lopez"}
    )
    assert student.enrollment_status == EnrollmentStatus.ENROLLED
    assert user.student_id == student.student_id
    assert container.role_store.get_role(user.user_id) == Role.STUDENT

    session_user = container.auth_service.authenticate("ana@example.com", "dance123")
    assert session_user.display_name == "Ana Lopez"
    assert session_user.student_id == student.student_id


def test_provision_rejects_duplicates_and_bad_input(container):
    svc = container.user_service
    svc.provision_student(email="ana@example.com", password="dance123", profile={"first_name": "Ana", "last_name": "L"})
    with pytest.raises(ValidationError):
        svc.provision_student(email="ana@example.com", password="dance123", profile={"first_name": "A", "last_name": "L"})
    with pytest.raises(ValidationError):
        svc.provision_student(email="not-an-email", password="dance123", profile={"first_name": "A", "last_name": "L"})
    with pytest.raises(ValidationError):
        svc.provision_student(email="bo@example.com", password="123", profile={"first_name": "Bo", "last_name": "C"})
    assert len(container.student_directory.list_all()) == 1


def test_sign_up_creates_pending_student(container):
    user = container.auth_service.sign_up(
        email="cy@example.com", password="dance123", first_name="Cy", last_name="Park"
    )
    assert user.role == Role.STUDENT
    student = container.student_directory.get(user.student_id)
    assert student.enrollment_status == EnrollmentStatus.PENDING
    assert container.student_directory.eligible_students() == []


def test_role_store(container):
    admin = container.user_service.create_admin(email="admin@example.com", password="secret123")
    roles = container.role_store
    assert roles.get_role(None) == Role.ANONYMOUS
    assert roles.get_role("unknown") == Role.ANONYMOUS

    roles.set_role(admin.user_id, "student")
    assert roles.get_role(admin.user_id) == Role.STUDENT
    with pytest.raises(ValidationError):
        roles.set_role(admin.user_id, "anonymous")
    with pytest.raises(ValidationError):
        roles.set_role(admin.user_id, "owner")
    with pytest.raises(NotFoundError):
        roles.set_role("unknown", "admin")
