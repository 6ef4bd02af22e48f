"""acmeflow command-line entry point.

Usage::

    acmeflow -c /etc/acmeflow/config.yaml --validate-only
    acmeflow -c config.yaml proof --type http-01 --token T --domain example.com \
        --account-key account.pem
    python -m acmeflow -c config.yaml --validate-only
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

log = logging.getLogger(__name__)

_CHALLENGE_TYPE_CHOICES = ("http-01", "dns-01", "tls-sni-02")


def _get_version() -> str:
    from acmeflow import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acmeflow",
        description="acmeflow: ACME order, authorization and challenge client core",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # proof
    proof_parser = subparsers.add_parser(
        "proof",
        help="Print the proof material for a challenge",
    )
    proof_parser.add_argument(
        "--type",
        dest="challenge_type",
        choices=_CHALLENGE_TYPE_CHOICES,
        required=True,
        help="Challenge type",
    )
    proof_parser.add_argument("--token", required=True, help="Challenge token")
    proof_parser.add_argument("--domain", required=True, help="Domain being authorized")
    proof_parser.add_argument(
        "--account-key",
        required=True,
        metavar="PATH",
        help="PEM file holding the account private key",
    )

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"acmeflow: error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    from acmeflow.config import AcmeflowConfig, ConfigValidationError

    try:
        config = AcmeflowConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)

    # -- replace bootstrap logging with the configured formatter ---
    from acmeflow.logging import configure_logging

    configure_logging(config.settings.logging)

    if args.validate_only or args.command is None:
        _print_settings_summary(config)
        sys.exit(0)

    if args.command == "proof":
        from acmeflow.cli.commands.proof import run_proof

        try:
            run_proof(config, args)
        except Exception as exc:
            if args.debug:
                raise
            _print_error(str(exc))
            sys.exit(1)


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    lines = [
        f"Configuration OK: {config!r}",
        f"  polling:    every {s.polling.interval_seconds}s, "
        f"timeout {s.polling.timeout_seconds}s",
        f"  order:      parallel={s.order.parallel_authorizations} "
        f"max_workers={s.order.max_workers} "
        f"finalize timeout {s.order.finalize_timeout_seconds}s",
        f"  challenges: enabled={', '.join(s.challenges.enabled)} "
        f"preferred={s.challenges.preferred_type} publisher={s.challenges.publisher}",
        f"  logging:    level={s.logging.level} format={s.logging.format}",
    ]
    print("\n".join(lines))  # noqa: T201
