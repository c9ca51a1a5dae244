from __future__ import annotations

from flask import Flask, request

from ..common.http import admin_required, json_body, login_required, ok, require_admin_or_student
from ..container import Container


def register(app: Flask, container: Container) -> None:
    directory = container.student_directory

    @app.route("/api/students", methods=["GET"], endpoint="students_list")
    @admin_required
    def students_list():
        status = request.args.get("status")
        students = directory.list_by_status(status) if status else directory.list_all()
        return ok({"students": [s.to_dict() for s in students]})

    @app.route("/api/students", methods=["POST"], endpoint="students_create")
    @admin_required
    def students_create():
        data = json_body()
        status = data.pop("enrollment_status", None) or "Pending"
        student = directory.create(data, enrollment_status=status)
        return ok({"student": student.to_dict()}, 201)

    @app.route("/api/students/<student_id>", methods=["GET"], endpoint="students_get")
    @login_required
    def students_get(student_id: str):
        require_admin_or_student(student_id)
        return ok({"student": directory.get(student_id).to_dict()})

    @app.route("/api/students/<student_id>", methods=["PATCH"], endpoint="students_update")
    @admin_required
    def students_update(student_id: str):
        return ok({"student": directory.update_profile(student_id, json_body()).to_dict()})

    @app.route("/api/students/<student_id>/status", methods=["PUT"], endpoint="students_status")
    @admin_required
    def students_status(student_id: str):
        student = directory.change_enrollment_status(student_id, json_body().get("status", ""))
        return ok({"student": student.to_dict()})

    @app.route("/api/students/<student_id>/holiday-credits", methods=["GET"], endpoint="students_credits")
    @login_required
    def students_credits(student_id: str):
        require_admin_or_student(student_id)
        return ok({"credits": [c.to_dict() for c in directory.get_holiday_credits(student_id)]})
