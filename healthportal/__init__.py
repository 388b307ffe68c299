import logging

from dotenv import load_dotenv
from flask import Flask, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import cors, db
from .storage import build_storage


def create_app(config_class: type = Config) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.json.sort_keys = app.config["JSON_SORT_KEYS"]

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db.init_app(app)
    cors.init_app(app)
    build_storage(app)

    @app.before_request
    def _log_req():
        app.logger.info(
            "REQ: %s %s | CT: %s | user-id: %s",
            request.method, request.path,
            request.headers.get("Content-Type"),
            bool(request.headers.get(app.config["USER_ID_HEADER"])),
        )

    @app.errorhandler(HTTPException)
    def _http_error(e):
        if e.code is None or e.code < 400:
            # routing redirects keep their Location header
            return e
        return {"error": e.description}, e.code

    @app.errorhandler(Exception)
    def _internal_error(e):
        app.logger.exception("unhandled error on %s %s", request.method, request.path)
        return {"error": "Internal server error"}, 500

    # register blueprints
    from .routes.admin import admin_bp
    app.register_blueprint(admin_bp)

    from .routes.api import api_bp
    app.register_blueprint(api_bp)

    return app
