from __future__ import annotations

from flask import Flask, jsonify

from ..common.http import admin_required, current_user_id, json_body, ok
from ..container import Container
from ..core.exceptions import ValidationError


def register(app: Flask, container: Container) -> None:
    service = container.attendance_service

    @app.route("/api/attendance/eligible", methods=["GET"], endpoint="attendance_eligible")
    @admin_required
    def attendance_eligible():
        return ok({"students": [s.to_dict() for s in service.eligible_students()]})

    @app.route("/api/attendance/mark", methods=["POST"], endpoint="attendance_mark")
    @admin_required
    def attendance_mark():
        data = json_body()
        result = service.mark(
            data.get("date", ""),
            data.get("student_id", ""),
            data.get("status", ""),
            data.get("attributes") or [],
            admin_id=current_user_id(),
        )
        return ok(result.to_dict())

    @app.route("/api/attendance/bulk", methods=["POST"], endpoint="attendance_bulk")
    @admin_required
    def attendance_bulk():
        data = json_body()
        ids = data.get("student_ids")
        if not isinstance(ids, list):
            raise ValidationError("student_ids must be a list")
        result = service.bulk_mark(data.get("date", ""), ids, data.get("status", ""), admin_id=current_user_id())
        # 207: partial success, body lists both subsets.
        return jsonify(result.to_dict()), 200 if result.success else 207

    @app.route("/api/attendance/<day>", methods=["GET"], endpoint="attendance_summary")
    @admin_required
    def attendance_summary(day: str):
        rows = service.attendance_summary(container.dates.parse_key(day))
        return ok({"date": day, "rows": [r.to_dict() for r in rows]})

    @app.route("/api/attendance/<day>/<student_id>", methods=["DELETE"], endpoint="attendance_remove")
    @admin_required
    def attendance_remove(day: str, student_id: str):
        removed = service.remove_mark(container.dates.parse_key(day), student_id, admin_id=current_user_id())
        return ok({"removed": removed.to_dict()})
