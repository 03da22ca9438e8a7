"""CLI entry point: run the server locally and operate on the stored data."""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from mealpick import tokens
from mealpick.config import Config, ConfigError
from mealpick.models import Picks, is_valid_email, normalize_email
from mealpick.store import SubscriberStore, build_backend

load_dotenv()  # reads .env file from project root


def _store(config: Config) -> SubscriberStore:
    return SubscriberStore(build_backend(config), page_size=config.kv_list_limit)


def cmd_serve(config: Config, args) -> int:
    from mealpick.app import create_app

    create_app(config).run(host=args.host, port=args.port, debug=args.debug)
    return 0


def cmd_links(config: Config, args) -> int:
    log = logging.getLogger(__name__)
    email = normalize_email(args.email)
    if not is_valid_email(email):
        log.error("Not a valid email address: %s", args.email)
        return 1

    base_url = (args.base_url or config.base_url).rstrip("/")
    if not base_url:
        log.error("No base URL: pass --base-url or set APP_BASE_URL")
        return 1

    token = tokens.sign(config.hmac_secret, email)
    print(json.dumps({
        "email": email,
        "token": token,
        "confirm_url": tokens.confirm_url(base_url, email, token),
        "unsubscribe_url": tokens.unsubscribe_url(base_url, email, token),
    }, indent=2))
    return 0


def cmd_subscribers(config: Config, args) -> int:
    subscribers = _store(config).list_subscribers()
    print(json.dumps({"subscribers": subscribers}, indent=2))
    return 0


def cmd_store_picks(config: Config, args) -> int:
    log = logging.getLogger(__name__)
    try:
        with open(args.file, encoding="utf-8") as f:
            payload = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        log.error("Could not read %s: %s", args.file, e)
        return 1

    if Picks.from_payload(payload) is None:
        log.error("Invalid payload structure: date_str and meals are required")
        return 1

    _store(config).put_latest_picks(payload)
    log.info("Stored picks for %s", payload["date_str"])
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Campus Meal Pick subscription service")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run the development server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8787)
    p.add_argument("--debug", action="store_true")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("links", help="Print the confirm and unsubscribe links for an address")
    p.add_argument("email")
    p.add_argument("--base-url", default="", help="Public origin of the service (defaults to APP_BASE_URL)")
    p.set_defaults(func=cmd_links)

    p = sub.add_parser("subscribers", help="Print confirmed subscribers as JSON")
    p.set_defaults(func=cmd_subscribers)

    p = sub.add_parser("store-picks", help="Overwrite the latest picks from a JSON file")
    p.add_argument("file")
    p.set_defaults(func=cmd_store_picks)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = Config.from_env(use_dotenv=False)
    except ConfigError as e:
        logging.getLogger(__name__).error("%s", e)
        return 2

    return args.func(config, args)


if __name__ == "__main__":
    sys.exit(main())
