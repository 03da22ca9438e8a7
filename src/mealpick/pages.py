"""HTML responses rendered from the Jinja templates in ``templates/``."""

from __future__ import annotations

from pathlib import Path

from flask import render_template
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from mealpick.models import Picks

KINDS = ("email", "success", "error", "info")
ACCENT = "#B31B1B"

# Mail bodies are rendered outside any Flask app context.
_mail_env = Environment(
    loader=FileSystemLoader(Path(__file__).parent / "templates"),
    autoescape=select_autoescape(["html"]),
)


def result_page(kind: str, title: str, message, status: int = 200):
    """Render the single-message page. ``message`` is escaped unless it is Markup."""
    if kind not in KINDS:
        kind = "info"
    html = render_template("result.html", kind=kind, title=title, message=message)
    return html, status, {"Content-Type": "text/html; charset=utf-8"}


def subscribe_page(picks_payload: dict | None):
    """Render the landing page, with the picks preview when a record is available."""
    picks = Picks.from_payload(picks_payload) if picks_payload else None
    sections = picks.slots() if picks else []
    html = render_template(
        "subscribe.html",
        date_str=(picks.date_str if picks else None) or "Recently",
        sections=sections,
    )
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}


def check_inbox_message(email: str) -> Markup:
    return Markup(
        "We've sent a confirmation email to <strong>{}</strong>. "
        "Click the link inside to activate your subscription. "
        "(It may take up to a minute to arrive.)"
    ).format(email)


def verification_email(email: str, confirm_url: str) -> str:
    return _mail_env.get_template("verification_email.html").render(
        email=email, confirm_url=confirm_url, accent=ACCENT
    )
