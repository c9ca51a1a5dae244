from __future__ import annotations

import time

from flask import Flask, request

from ..common.http import admin_required, current_user_id, json_body, login_required, ok
from ..container import Container
from ..core.exceptions import ValidationError


def register(app: Flask, container: Container) -> None:
    holidays = container.holiday_service
    engine = container.reconciliation_engine
    dates = container.dates

    @app.route("/api/holidays", methods=["GET"], endpoint="holidays_list")
    @login_required
    def holidays_list():
        start = request.args.get("start")
        end = request.args.get("end")
        if not start or not end:
            rng = dates.fee_year_range()
            start, end = rng.start, rng.end
        return ok({"holidays": [h.to_dict() for h in holidays.list_holidays(start, end)]})

    @app.route("/api/holidays/<day>/impact", methods=["GET"], endpoint="holidays_impact")
    @admin_required
    def holidays_impact(day: str):
        report = engine.analyze_impact(dates.parse_key(day), request.args.get("name") or None)
        return ok({"impact": report.to_dict()})

    @app.route("/api/holidays/<day>/warning", methods=["GET"], endpoint="holidays_warning")
    @admin_required
    def holidays_warning(day: str):
        warning = engine.get_warning(dates.parse_key(day), request.args.get("name") or None)
        return ok({"warning": warning.to_dict()})

    @app.route("/api/holidays", methods=["POST"], endpoint="holidays_apply")
    @admin_required
    def holidays_apply():
        data = json_body()
        deadline = None
        if data.get("timeout_seconds") is not None:
            try:
                deadline = time.monotonic() + float(data["timeout_seconds"])
            except (TypeError, ValueError):
                raise ValidationError("timeout_seconds must be a number")
        result = engine.process_change(
            dates.parse_key(data.get("date", "")),
            data.get("name", ""),
            data.get("confirmed") is True,
            admin_id=current_user_id(),
            deadline=deadline,
        )
        return ok(result.to_dict(), 200 if result.success else 207)

    @app.route("/api/holidays/<day>/revert", methods=["POST"], endpoint="holidays_revert")
    @admin_required
    def holidays_revert(day: str):
        result = engine.revert_holiday(
            dates.parse_key(day), json_body().get("confirmed") is True, admin_id=current_user_id()
        )
        return ok(result.to_dict(), 200 if result.success else 207)
