from __future__ import annotations

from flask import Flask, request

from ..common.http import admin_required, current_user_id, json_body, login_required, ok, require_admin_or_student
from ..container import Container


def register(app: Flask, container: Container) -> None:
    ledger = container.payment_ledger

    @app.route("/api/payments", methods=["POST"], endpoint="payments_create")
    @admin_required
    def payments_create():
        payment = ledger.create(json_body(), admin_id=current_user_id())
        return ok({"payment": payment.to_dict()}, 201)

    @app.route("/api/payments", methods=["GET"], endpoint="payments_list")
    @admin_required
    def payments_list():
        start, end = request.args.get("start"), request.args.get("end")
        return ok({"payments": ledger.list_with_student_names(start or None, end or None)})

    @app.route("/api/payments/<payment_id>", methods=["GET"], endpoint="payments_get")
    @admin_required
    def payments_get(payment_id: str):
        return ok({"payment": ledger.get_by_id(payment_id).to_dict()})

    @app.route("/api/students/<student_id>/payments", methods=["GET"], endpoint="payments_by_student")
    @login_required
    def payments_by_student(student_id: str):
        require_admin_or_student(student_id)
        return ok({"payments": [p.to_dict() for p in ledger.get_by_student(student_id)]})
