# app.py
from __future__ import annotations
import logging
import os
from functools import partial
from typing import Callable, Optional

from flask import Blueprint, Flask, current_app, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from werkzeug.exceptions import HTTPException, TooManyRequests

from answer_cache import AnswerCache
from config import get_config
from errors import CollaboratorError, ConfigError, ValidationError
from helpers import RuntimeInfo
from llm_client import client_from_config, generate_text
from parsers import extract_resume_text
from pipeline import AnswerPipeline

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."
INTERNAL_ERROR_MESSAGE = "An internal server error occurred"


def _ext(name: str):
    return current_app.extensions[name]


def _is_prod() -> bool:
    return bool(current_app.config.get("IS_PROD"))


# ------------------------------
# Answer generation
# ------------------------------
@api_bp.post("/generate-answer")
def generate_answer():
    data = request.get_json(force=True, silent=True)
    pipeline: AnswerPipeline = _ext("answer_pipeline")
    try:
        return jsonify(pipeline.run(data))
    except ValidationError as e:
        logger.info("Rejected generate-answer request: %s", e)
        return jsonify({"error": str(e)}), 400
    except CollaboratorError as e:
        logger.error("Error in /api/generate-answer: %s", e.detail)
        body = {"error": str(e)}
        if not _is_prod() and not e.is_rate_limited:
            body["message"] = e.detail
        return jsonify(body), e.status_code
    except ConfigError as e:
        logger.error("Configuration error in /api/generate-answer: %s", e)
        body = {"error": "The AI service is not configured"}
        if not _is_prod():
            body["message"] = str(e)
        return jsonify(body), 500


# ------------------------------
# Resume upload (PDF / TXT -> text)
# ------------------------------
@api_bp.post("/extract-resume")
def extract_resume():
    if "file" not in request.files:
        return jsonify({"error": "no file"}), 400
    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "empty filename"}), 400
    try:
        return jsonify(extract_resume_text(f.filename, f.read()))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


# ------------------------------
# Health / status
# ------------------------------
@api_bp.get("/health")
def health():
    runtime: RuntimeInfo = _ext("runtime_info")
    return jsonify({
        "status": "ok",
        "pid": runtime.pid,
        "port": runtime.port,
        "uptime": runtime.uptime(),
    })


@api_bp.get("/status")
def status():
    runtime: RuntimeInfo = _ext("runtime_info")
    return jsonify({
        "running": True,
        "pid": runtime.pid,
        "port": runtime.port,
        "started": runtime.started_iso,
        "uptime": runtime.uptime(),
        "cache": _ext("answer_pipeline").cache.stats(),
    })


# ------------------------------
# Static SPA (production)
# ------------------------------
def _register_static(app: Flask) -> None:
    build_path = app.config["STATIC_DIR"]
    logger.info("Serving static files from: %s", build_path)

    @app.get("/", defaults={"path": ""})
    @app.get("/<path:path>")
    def spa(path: str):
        if path.startswith("api/") or path == "api":
            return jsonify({"error": "Not found"}), 404
        if path and os.path.isfile(os.path.join(build_path, path)):
            return send_from_directory(build_path, path)
        return send_from_directory(build_path, "index.html")


# ------------------------------
# Error handlers
# ------------------------------
def _register_error_handlers(app: Flask, on_fatal: Optional[Callable[[BaseException], None]]) -> None:

    @app.errorhandler(TooManyRequests)
    def _too_many_requests(e):
        logger.warning("Rate limit exceeded for %s on %s", get_remote_address(), request.path)
        return jsonify({"error": RATE_LIMIT_MESSAGE}), 429

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _uncaught(e: Exception):
        # Anything reaching here leaves the process in an unknown state:
        # answer the request, then hand over to the graceful shutdown path.
        logger.exception("Uncaught exception while handling %s %s", request.method, request.path)
        message = INTERNAL_ERROR_MESSAGE if _is_prod() else (str(e) or type(e).__name__)
        if on_fatal is not None:
            on_fatal(e)
        return jsonify({"error": message}), 500


# ------------------------------
# App factory
# ------------------------------
def build_pipeline(config, cache: Optional[AnswerCache] = None) -> AnswerPipeline:
    """AnswerPipeline wired to the OpenAI client described by `config`."""
    generate = partial(
        generate_text,
        model=config.OPENAI_MODEL,
        temperature=config.ANSWER_TEMPERATURE,
        max_tokens=config.ANSWER_MAX_TOKENS,
        client=client_from_config(config),
    )
    return AnswerPipeline(cache or AnswerCache.from_config(config), generate)


def create_app(
    config=None,
    pipeline: Optional[AnswerPipeline] = None,
    runtime: Optional[RuntimeInfo] = None,
    on_fatal: Optional[Callable[[BaseException], None]] = None,
) -> Flask:
    """Build the Flask app.

    `pipeline` defaults to an AnswerPipeline over a fresh AnswerCache and the
    OpenAI client; tests pass their own. `on_fatal` is invoked with any
    exception no handler recognised.
    """
    config = config or get_config()

    app = Flask(__name__, static_folder=None)
    app.config.from_object(config)
    app.json.sort_keys = False
    app.url_map.strict_slashes = False

    CORS(
        app,
        resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST"],
    )

    # Security headers / CSP
    Talisman(
        app,
        force_https=app.config["FORCE_HTTPS"],
        content_security_policy={
            "default-src": ["'self'"],
            "img-src": ["'self'", "data:"],
            "style-src": ["'self'", "'unsafe-inline'"],
            "script-src": ["'self'"],
            "connect-src": ["'self'"],
            "frame-ancestors": ["'none'"],
        },
        session_cookie_secure=app.config["FORCE_HTTPS"],
        frame_options="DENY",
        referrer_policy="strict-origin-when-cross-origin",
    )

    # Per-IP limit on /api, only enforced when RATELIMIT_ENABLED (production)
    limiter = Limiter(key_func=get_remote_address, app=app, default_limits=[])
    limiter.limit(lambda: current_app.config["API_RATE_LIMIT"])(api_bp)

    app.extensions["answer_pipeline"] = pipeline or build_pipeline(config)
    app.extensions["runtime_info"] = runtime or RuntimeInfo(port=app.config["PORT"])

    app.register_blueprint(api_bp)
    if app.config.get("IS_PROD"):
        _register_static(app)
    _register_error_handlers(app, on_fatal)
    return app
