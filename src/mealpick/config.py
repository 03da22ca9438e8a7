"""Service configuration, read once from the environment and passed explicitly."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

KV_BACKENDS = ("memory", "cloudflare", "supabase")
DISPATCHERS = ("github", "sendgrid", "log")


class ConfigError(RuntimeError):
    """A required setting is missing or has an unsupported value."""


@dataclass(frozen=True)
class Config:
    hmac_secret: str
    base_url: str = ""

    kv_backend: str = "memory"
    kv_list_limit: int = 1000
    cf_account_id: str = ""
    cf_namespace_id: str = ""
    cf_api_token: str = ""
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_kv_table: str = "kv"

    dispatcher: str = "github"
    gh_token: str = ""
    gh_owner: str = ""
    gh_repo: str = ""
    sendgrid_api_key: str = ""
    email_from: str = ""

    @classmethod
    def from_env(cls, environ: dict | None = None, use_dotenv: bool = True) -> Config:
        """Build a Config from environment variables.

        A ``.env`` file in the working directory is loaded first for local
        development; variables already set in the process environment win.
        """
        if environ is None:
            if use_dotenv:
                load_dotenv()
            environ = dict(os.environ)

        secret = environ.get("HMAC_SECRET", "")
        if not secret:
            raise ConfigError("HMAC_SECRET must be set")

        kv_backend = environ.get("KV_BACKEND", "memory").strip().lower()
        if kv_backend not in KV_BACKENDS:
            raise ConfigError(f"KV_BACKEND must be one of {', '.join(KV_BACKENDS)}, got {kv_backend!r}")

        dispatcher = environ.get("DISPATCHER", "github").strip().lower()
        if dispatcher not in DISPATCHERS:
            raise ConfigError(f"DISPATCHER must be one of {', '.join(DISPATCHERS)}, got {dispatcher!r}")

        try:
            limit = int(environ.get("KV_LIST_LIMIT", "1000"))
        except ValueError:
            raise ConfigError("KV_LIST_LIMIT must be an integer") from None
        if limit <= 0:
            raise ConfigError("KV_LIST_LIMIT must be positive")

        return cls(
            hmac_secret=secret,
            base_url=environ.get("APP_BASE_URL", "").rstrip("/"),
            kv_backend=kv_backend,
            kv_list_limit=limit,
            cf_account_id=environ.get("CF_ACCOUNT_ID", ""),
            cf_namespace_id=environ.get("CF_NAMESPACE_ID", ""),
            cf_api_token=environ.get("CF_API_TOKEN", ""),
            supabase_url=environ.get("SUPABASE_URL", ""),
            supabase_key=environ.get("SUPABASE_KEY", ""),
            supabase_kv_table=environ.get("SUPABASE_KV_TABLE", "kv"),
            dispatcher=dispatcher,
            gh_token=environ.get("GH_PAT_TOKEN", ""),
            gh_owner=environ.get("GH_OWNER", ""),
            gh_repo=environ.get("GH_REPO", ""),
            sendgrid_api_key=environ.get("SENDGRID_API_KEY", ""),
            email_from=environ.get("EMAIL_FROM", ""),
        )

    def require(self, *names: str) -> None:
        """Raise ConfigError if any of the named fields is empty."""
        missing = [n for n in names if not getattr(self, n)]
        if missing:
            raise ConfigError(f"Missing configuration: {', '.join(missing)}")
