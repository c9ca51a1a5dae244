from __future__ import annotations

from flask import Flask, request

from ..common.http import admin_required, int_arg, ok
from ..container import Container
from ..core.constants import DEFAULT_PAGE_SIZE


def register(app: Flask, container: Container) -> None:
    audit = container.audit_log

    @app.route("/api/audit", methods=["GET"], endpoint="audit_list")
    @admin_required
    def audit_list():
        page = int_arg("page", 1)
        limit = int_arg("limit", DEFAULT_PAGE_SIZE)
        if request.args.get("entity_id"):
            result = audit.list_by_entity(request.args["entity_id"], page=page, limit=limit)
        elif request.args.get("user_id"):
            result = audit.list_by_user(request.args["user_id"], page=page, limit=limit)
        elif request.args.get("type"):
            result = audit.list_by_type(request.args["type"], page=page, limit=limit)
        else:
            result = audit.list_all(page=page, limit=limit)
        return ok(result.to_dict())
