from __future__ import annotations

from flask import Flask, request

from ..common.http import admin_required, int_arg, login_required, ok, require_admin_or_student
from ..container import Container


def register(app: Flask, container: Container) -> None:
    reports = container.report_service
    dates = container.dates

    @app.route("/api/reports/monthly", methods=["GET"], endpoint="reports_monthly")
    @admin_required
    def reports_monthly():
        today = dates.today()
        month = int_arg("month", today.month)
        year = int_arg("year", today.year)
        return ok({"report": reports.monthly_report(month, year)})

    @app.route("/api/reports/cumulative", methods=["GET"], endpoint="reports_cumulative")
    @admin_required
    def reports_cumulative():
        start = request.args.get("start")
        end = request.args.get("end")
        if not start or not end:
            rng = dates.fee_year_range()
            start, end = rng.start, rng.end
        return ok({"report": reports.cumulative_report(start, end)})

    @app.route("/api/reports/fee-year", methods=["GET"], endpoint="reports_fee_year")
    @admin_required
    def reports_fee_year():
        return ok({"report": reports.fee_year_report(request.args.get("now") or None)})

    @app.route("/api/reports/students/<student_id>/ledger", methods=["GET"], endpoint="reports_ledger")
    @login_required
    def reports_ledger(student_id: str):
        require_admin_or_student(student_id)
        start = request.args.get("start") or None
        end = request.args.get("end") or None
        return ok({"ledger": reports.student_ledger(student_id, start, end)})

    @app.route("/api/reports/holiday-credits", methods=["GET"], endpoint="reports_holiday_credits")
    @admin_required
    def reports_holiday_credits():
        return ok({"report": reports.holiday_credits_report()})
