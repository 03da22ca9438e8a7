"""Hand off verification emails to an external sender.

The service never composes the digest; it only signals that an address needs a
confirmation link. Each dispatcher returns True on success and False on any
failure. There are no retries.
"""

from __future__ import annotations

import logging

import requests
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from mealpick import pages
from mealpick.config import Config

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
USER_AGENT = "campus-meal-pick-worker"
VERIFICATION_EVENT = "send_verification"
SUBJECT = "Confirm your Campus Meal Pick subscription"


class Dispatcher:
    """Capability interface: ``send_verification(email, confirm_url) -> bool``."""

    def send_verification(self, email: str, confirm_url: str) -> bool:
        raise NotImplementedError


class GitHubDispatcher(Dispatcher):
    """Trigger a repository_dispatch event; a workflow in the repo sends the mail."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        session: requests.Session | None = None,
        timeout: float = 10,
    ):
        self.token = token
        self.url = f"{GITHUB_API}/repos/{owner}/{repo}/dispatches"
        self.session = session or requests.Session()
        self.timeout = timeout

    def send_verification(self, email, confirm_url):
        payload = {
            "event_type": VERIFICATION_EVENT,
            "client_payload": {"email": email, "confirm_url": confirm_url},
        }
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }
        try:
            resp = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException:
            logger.exception("GitHub dispatch request failed for %s", email)
            return False

        if not resp.ok:
            logger.error("GitHub dispatch failed: %d %s", resp.status_code, resp.text)
            return False

        logger.info("Verification dispatched for %s — status %d", email, resp.status_code)
        return True


class SendGridDispatcher(Dispatcher):
    """Send the double opt-in email directly via SendGrid."""

    def __init__(self, api_key: str, from_email: str):
        self.api_key = api_key
        self.from_email = from_email

    def send_verification(self, email, confirm_url):
        message = Mail(
            from_email=self.from_email,
            to_emails=email,
            subject=SUBJECT,
            html_content=pages.verification_email(email, confirm_url),
        )

        try:
            response = SendGridAPIClient(self.api_key).send(message)
        except Exception:
            logger.exception("SendGrid rejected verification mail for %s", email)
            return False
        if response.status_code not in (200, 201, 202):
            logger.error("SendGrid returned %d for %s", response.status_code, email)
            return False
        return True


class LogDispatcher(Dispatcher):
    """Log the confirmation link instead of sending it (local development)."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    def send_verification(self, email, confirm_url):
        logger.info("[VERIFICATION] Email: %s Link: %s", email, confirm_url)
        self.sent.append((email, confirm_url))
        return True


def build_dispatcher(config: Config) -> Dispatcher:
    """Return the dispatcher selected by ``config.dispatcher``."""
    if config.dispatcher == "github":
        config.require("gh_token", "gh_owner", "gh_repo")
        return GitHubDispatcher(config.gh_token, config.gh_owner, config.gh_repo)
    if config.dispatcher == "sendgrid":
        config.require("sendgrid_api_key", "email_from")
        return SendGridDispatcher(config.sendgrid_api_key, config.email_from)
    return LogDispatcher()
