"""
Administrative command line for the broker's MongoDB state.

Usage:
    python -m captcha_broker.provision init
    python -m captcha_broker.provision create-key --name "Alice" --days 30
    python -m captcha_broker.provision settings --maintenance on --app-version 1.2.0
"""

import argparse
import sys
from datetime import timedelta

from .access import ensure_setup
from .database import DatabaseUnavailable, get_stores
from .helper import utcnow
from .key_binding import generate_api_key
from .utils.logger import get_logger

log = get_logger("provision")


def _on_off(value):
    value = value.lower()
    if value in ("on", "true", "1", "yes"):
        return True
    if value in ("off", "false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError("expected on/off")


def cmd_init(stores, args):
    result = ensure_setup(stores)
    log.success(result["message"])
    if result["admin"]:
        log.info(f"Admin: {result['admin'].get('email')}", indent=1)
    return 0


def cmd_create_key(stores, args):
    key = args.key or generate_api_key()
    if stores.api_keys.find_by_key(key):
        log.error(f"Key already exists: {key}")
        return 1
    expires_at = utcnow() + timedelta(days=args.days) if args.days else None
    stores.api_keys.create(key, name=args.name, expires_at=expires_at)
    log.success(f"Created key for {args.name}")
    log.info(f"key: {key}", indent=1)
    if expires_at:
        log.info(f"expires: {expires_at.isoformat()}", indent=1)
    return 0


def cmd_settings(stores, args):
    fields = {}
    if args.maintenance is not None:
        fields["maintenance_mode"] = args.maintenance
    if args.free_trial is not None:
        fields["free_trial_allowed"] = args.free_trial
    if args.app_version is not None:
        fields["app_version"] = args.app_version
    if args.upstream_key is not None:
        fields["upstream_key"] = args.upstream_key

    settings = stores.settings.update(fields) if fields else stores.settings.ensure_defaults()
    log.section("Settings")
    for name in ("maintenance_mode", "free_trial_allowed", "app_version"):
        log.info(f"{name}: {settings.get(name)!r}")
    log.info(f"upstream_key: {'set' if settings.get('upstream_key') else 'not set'}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="captcha-broker-provision", description=__doc__.splitlines()[1])
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init", help="create indexes and the settings singleton")
    p_init.set_defaults(func=cmd_init)

    p_key = sub.add_parser("create-key", help="provision an unclaimed API key")
    p_key.add_argument("--name", required=True, help="display name copied to the user on binding")
    p_key.add_argument("--days", type=int, default=0, help="expire after N days (0 = never)")
    p_key.add_argument("--key", help="use this key value instead of generating one")
    p_key.set_defaults(func=cmd_create_key)

    p_settings = sub.add_parser("settings", help="show or update the settings singleton")
    p_settings.add_argument("--maintenance", type=_on_off)
    p_settings.add_argument("--free-trial", type=_on_off)
    p_settings.add_argument("--app-version")
    p_settings.add_argument("--upstream-key")
    p_settings.set_defaults(func=cmd_settings)

    return parser


def main(argv=None, stores=None):
    args = build_parser().parse_args(argv)
    try:
        return args.func(stores if stores is not None else get_stores(), args)
    except DatabaseUnavailable as e:
        log.error(f"Database unavailable: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
