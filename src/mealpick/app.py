"""Flask app for subscribe/confirm/unsubscribe plus the internal picks endpoints."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

from flask import Blueprint, Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from mealpick import pages, tokens
from mealpick.config import Config
from mealpick.models import Picks, is_valid_email, normalize_email
from mealpick.notify import Dispatcher, build_dispatcher
from mealpick.store import SubscriberStore, build_backend

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

FORM_MIMETYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

bp = Blueprint("mealpick", __name__)


@dataclass
class Services:
    config: Config
    store: SubscriberStore
    dispatcher: Dispatcher


def _services() -> Services:
    return current_app.extensions["mealpick"]


def create_app(
    config: Config | None = None,
    store: SubscriberStore | None = None,
    dispatcher: Dispatcher | None = None,
) -> Flask:
    """Build the app. Collaborators not passed in are built from ``config``."""
    if config is None:
        config = Config.from_env()
    if store is None:
        store = SubscriberStore(build_backend(config), page_size=config.kv_list_limit)
    if dispatcher is None:
        dispatcher = build_dispatcher(config)

    app = Flask(__name__)
    app.extensions["mealpick"] = Services(config=config, store=store, dispatcher=dispatcher)
    app.register_blueprint(bp)

    @app.before_request
    def preflight():
        # Answered for every path, before routing.
        if request.method == "OPTIONS":
            return "", 204

    @app.after_request
    def add_cors_headers(response):
        response.headers.update(CORS_HEADERS)
        return response

    @app.errorhandler(404)
    @app.errorhandler(405)
    def not_found(_e):
        return "Not Found", 404, {"Content-Type": "text/plain; charset=utf-8"}

    @app.errorhandler(Exception)
    def unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return pages.result_page("error", "Error", "Something went wrong. Please try again.", 500)

    return app


def _authorized() -> bool:
    """Exact match of the Authorization header against the shared secret."""
    presented = request.headers.get("Authorization", "")
    expected = f"Bearer {_services().config.hmac_secret}"
    return hmac.compare_digest(presented.encode(), expected.encode())


def _unauthorized():
    logger.warning("Rejected unauthorized request to %s", request.path)
    return jsonify({"error": "Unauthorized"}), 401


def _link_params() -> tuple[str, str]:
    email = normalize_email(request.args.get("email"))
    token = request.args.get("token", "")
    return email, token


def _base_url() -> str:
    return _services().config.base_url or request.host_url.rstrip("/")


# ---------------------------------------------------------------------------
# Public pages
# ---------------------------------------------------------------------------

@bp.route("/", methods=["GET"])
def subscribe_form():
    picks = None
    try:
        picks = _services().store.get_latest_picks()
    except Exception:
        logger.exception("Failed to load picks")
    return pages.subscribe_page(picks)


@bp.route("/api/subscribe", methods=["POST"])
def subscribe():
    services = _services()

    email = ""
    if request.mimetype in FORM_MIMETYPES:
        email = normalize_email(request.form.get("email"))
    elif request.mimetype == "application/json":
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            email = normalize_email(body.get("email"))

    if not is_valid_email(email):
        return pages.result_page("error", "Invalid Email", "Please enter a valid email address.", 400)

    if services.store.is_subscribed(email):
        return pages.result_page("info", "Already Subscribed", "This email is already receiving daily dining picks!")

    # No record is written until the link is confirmed.
    token = tokens.sign(services.config.hmac_secret, email)
    confirm_url = tokens.confirm_url(_base_url(), email, token)

    if not services.dispatcher.send_verification(email, confirm_url):
        return pages.result_page(
            "error",
            "Something Went Wrong",
            "Failed to send verification email. Please try again later.",
            500,
        )

    return pages.result_page("email", "Check Your Inbox", pages.check_inbox_message(email))


@bp.route("/api/confirm", methods=["GET"])
def confirm():
    services = _services()
    email, token = _link_params()

    if not email or not token:
        return pages.result_page("error", "Invalid Link", "This confirmation link is invalid.", 400)

    if not tokens.verify(services.config.hmac_secret, email, token):
        return pages.result_page(
            "error", "Invalid Token", "This confirmation link is invalid or has been tampered with.", 403
        )

    if services.store.is_subscribed(email):
        return pages.result_page("info", "Already Subscribed", "You're already subscribed! Daily picks are on their way.")

    services.store.add_subscriber(email)
    return pages.result_page(
        "success",
        "You're Subscribed!",
        "You'll start receiving daily West Campus dining recommendations. Welcome aboard!",
    )


@bp.route("/api/unsubscribe", methods=["GET"])
def unsubscribe():
    services = _services()
    email, token = _link_params()

    if not email or not token:
        return pages.result_page("error", "Invalid Link", "This unsubscribe link is invalid.", 400)

    if not tokens.verify(services.config.hmac_secret, email, token):
        return pages.result_page(
            "error", "Invalid Token", "This unsubscribe link is invalid or has been tampered with.", 403
        )

    services.store.remove_subscriber(email)
    return pages.result_page(
        "success",
        "Unsubscribed",
        "You've been removed from the daily dining picks. You can re-subscribe anytime!",
    )


# ---------------------------------------------------------------------------
# Internal endpoints (bearer shared secret)
# ---------------------------------------------------------------------------

@bp.route("/api/subscribers", methods=["GET"])
def list_subscribers():
    if not _authorized():
        return _unauthorized()
    try:
        subscribers = _services().store.list_subscribers()
    except Exception:
        logger.exception("Failed to list subscribers")
        return jsonify({"error": "Failed to list subscribers"}), 500
    return jsonify({"subscribers": subscribers})


@bp.route("/api/store_picks", methods=["POST"])
def store_picks():
    if not _authorized():
        return _unauthorized()

    payload = request.get_json(force=True, silent=True)
    if Picks.from_payload(payload) is None:
        return jsonify({"error": "Invalid payload structure"}), 400

    try:
        _services().store.put_latest_picks(payload)
    except Exception:
        logger.exception("Failed to store picks")
        return jsonify({"error": "Failed to store picks"}), 500

    logger.info("Stored picks for %s", payload["date_str"])
    return jsonify({"success": True, "stored_date": payload["date_str"]})
