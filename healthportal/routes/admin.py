from flask import Blueprint, current_app, request

from ..extensions import db

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/init-db", methods=["POST", "GET"])
def init_db():
    if request.method == "GET" and request.args.get("confirm") != "yes":
        return {"message": "Use POST or /admin/init-db?confirm=yes (local only)"}, 200
    if current_app.extensions["storage"].backend != "sql":
        return {"error": "Storage backend is not sql"}, 409
    db.create_all()
    current_app.logger.info("tables created on %s", db.engine.url)
    return {"status": "initialized"}, 201


@admin_bp.get("/routes")
def list_routes():
    routes = []
    for rule in current_app.url_map.iter_rules():
        routes.append({"rule": str(rule), "methods": sorted(list(rule.methods))})
    return {"routes": routes}, 200
