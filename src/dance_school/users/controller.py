from __future__ import annotations

from flask import Flask, session

from ..common.http import admin_required, json_body, login_required, ok
from ..container import Container
from .model import SessionUser


def register(app: Flask, container: Container) -> None:
    def _start_session(user: SessionUser) -> None:
        session.clear()
        session["user_id"] = user.user_id
        session["role"] = user.role.value
        session["student_id"] = user.student_id
        session["name"] = user.display_name

    @app.route("/api/auth/login", methods=["POST"], endpoint="login")
    def login():
        data = json_body()
        user = container.auth_service.authenticate(data.get("email", ""), data.get("password", ""))
        _start_session(user)
        return ok({"user": user.to_dict()})

    @app.route("/api/auth/signup", methods=["POST"], endpoint="signup")
    def signup():
        data = json_body()
        user = container.auth_service.sign_up(
            email=data.get("email", ""),
            password=data.get("password", ""),
            first_name=data.get("first_name", ""),
            last_name=data.get("last_name", ""),
        )
        _start_session(user)
        return ok({"user": user.to_dict()}, 201)

    @app.route("/api/auth/logout", methods=["POST"], endpoint="logout")
    def logout():
        session.clear()
        return ok()

    @app.route("/api/auth/me", methods=["GET"], endpoint="me")
    @login_required
    def me():
        return ok(
            {
                "user": {
                    "user_id": session["user_id"],
                    "role": container.role_store.get_role(session["user_id"]).value,
                    "student_id": session.get("student_id"),
                    "display_name": session.get("name"),
                }
            }
        )

    @app.route("/api/users", methods=["GET"], endpoint="admin_users")
    @admin_required
    def admin_users():
        return ok({"users": container.user_service.list_users()})

    @app.route("/api/users/students", methods=["POST"], endpoint="admin_provision_student")
    @admin_required
    def admin_provision_student():
        data = json_body()
        profile = {k: v for k, v in data.items() if k not in {"email", "password", "enrollment_status"}}
        user, student = container.user_service.provision_student(
            email=data.get("email", ""),
            password=data.get("password", ""),
            profile=profile,
            enrollment_status=data.get("enrollment_status") or "Enrolled",
        )
        return ok({"user_id": user.user_id, "student": student.to_dict()}, 201)

    @app.route("/api/users/<user_id>/role", methods=["PUT"], endpoint="admin_set_role")
    @admin_required
    def admin_set_role(user_id: str):
        container.user_service.set_role(user_id, json_body().get("role", ""))
        return ok({"user_id": user_id})
