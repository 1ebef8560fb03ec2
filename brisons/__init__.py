import logging
import os

from flask import Flask, jsonify
from pymongo import MongoClient
from werkzeug.exceptions import HTTPException

from .config import Config
from .db import ensure_indexes, utc_now
from .errors import BrisonsError
from .storage import ImageStore

__version__ = "0.1.0"


def create_app(config=None, client=None):
    app = Flask(__name__, static_folder="static")
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)
    app.extensions["image_store"] = ImageStore(
        app.config["UPLOAD_FOLDER"],
        app.config["UPLOAD_URL_PREFIX"],
        app.config["ALLOWED_IMAGE_EXTENSIONS"],
    )

    if client is None:
        client = MongoClient(app.config["MONGO_URI"])
    app.mongo_client = client
    app.db = client[app.config["MONGO_DBNAME"]]

    from . import auth, cart, catalog, delivery, orders, prescriptions, seed, users

    app.register_blueprint(auth.bp)
    app.register_blueprint(catalog.bp)
    app.register_blueprint(catalog.admin_bp)
    app.register_blueprint(cart.bp)
    app.register_blueprint(orders.bp)
    app.register_blueprint(delivery.bp)
    app.register_blueprint(prescriptions.bp)
    app.register_blueprint(users.bp)
    seed.init_app(app)

    @app.errorhandler(BrisonsError)
    def handle_brisons_error(e):
        app.logger.warning("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        code = (e.name or "error").lower().replace(" ", "_")
        return jsonify({"ok": False, "code": code, "msg": e.description}), e.code

    @app.route("/health")
    def health():
        try:
            app.db.command("ping")
            return jsonify({
                "status": "healthy",
                "database": "connected",
                "timestamp": utc_now().isoformat(),
            })
        except Exception as e:
            app.logger.error("Health check failed: %s", e)
            return jsonify({
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
                "timestamp": utc_now().isoformat(),
            }), 500

    with app.app_context():
        ensure_indexes(app.db)
        if app.config["CREATE_DEFAULT_ADMIN"]:
            auth.create_default_admin(app.db, app.config)

    return app
