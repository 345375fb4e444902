# app.py
import logging

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from backend.config import Settings
from backend.errors import IntakeError
from backend.sessions import ConversationManager, SessionStore
from backend.store import ProductStore
from gpt_engine import GptEngine

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-ID"

api = Blueprint("api", __name__, url_prefix="/api")


def _manager() -> ConversationManager:
    return current_app.extensions["conversation_manager"]


# ---------------------------
# Routes
# ---------------------------
@api.route("/generate-question", methods=["POST"])
def generate_question():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    # header lookup is case-insensitive
    session_id = request.headers.get(SESSION_HEADER)
    result = _manager().generate_question(
        session_id,
        data.get("userInput"),
        product_id=data.get("productId") or None,
    )
    return jsonify(result), 200


@api.route("/products", methods=["GET"])
def list_products():
    return jsonify(_manager().store.list_all()), 200


@api.route("/products/<product_id>", methods=["GET"])
def get_product(product_id):
    return jsonify(_manager().store.get(product_id)), 200


def handle_intake_error(e: IntakeError):
    if e.status_code >= 500:
        logger.error("%s on %s %s: %s", type(e).__name__, request.method, request.path, e.message)
    return jsonify(e.to_dict()), e.status_code


def handle_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return e
    logger.exception("Unexpected error on %s %s", request.method, request.path)
    return jsonify({
        "status": "error",
        "error": str(e) or "An internal server error occurred",
        "kind": "internal",
    }), 500


# ---------------------------
# Setup
# ---------------------------
def create_app(settings: Settings = None, store=None, engine=None, sessions: SessionStore = None) -> Flask:
    """
    Build the Flask app. Anything not passed in is built from settings, which
    default to the environment (missing required values raise at this point).
    """
    settings = settings or Settings.from_env()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    if store is None:
        store = ProductStore.connect(settings.mongodb_uri, settings.mongodb_db)
    if engine is None:
        engine = GptEngine.from_settings(settings)
    if sessions is None:
        sessions = SessionStore(settings.session_ttl_seconds, settings.session_max_entries)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["conversation_manager"] = ConversationManager(
        store, engine, sessions, max_input_chars=settings.max_input_chars
    )

    CORS(
        app,
        resources={r"/*": {"origins": settings.frontend_origins}},
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", SESSION_HEADER],
    )

    app.register_blueprint(api)
    app.register_error_handler(IntakeError, handle_intake_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    @app.before_request
    def sweep_sessions():
        removed = sessions.sweep_expired()
        if removed:
            logger.info("Swept %d expired sessions", removed)

    @app.route("/")
    def index():
        return "API is running...", 200

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app


# ---------------------------
# Entrypoint
# ---------------------------
def main():
    app = create_app()
    port = app.config["SETTINGS"].port
    logger.info("Server running on port %d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()
