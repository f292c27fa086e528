"""ACMEPIPE command-line entry point.

Usage::

    acmepipe -c config.yaml run --domain www.example.com --target-server web01 --site Default
    acmepipe -c config.yaml run --domain a.example.com --domain b.example.com \\
        --target-server web01 --site Default --environment staging
    acmepipe -c config.yaml validate-config
    python -m acmepipe -c config.yaml run ...

Exit status is 0 only when every requested domain was issued, deployed
and verified; 1 otherwise.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def _get_version() -> str:
    from acmepipe import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acmepipe",
        description="ACMEPIPE: issue ACME certificates over DNS-01 and deploy them",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        default=None,
        help="Path to the configuration file (YAML or JSON). Defaults apply when omitted.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # run
    run_parser = subparsers.add_parser("run", help="Issue, deploy and verify certificates")
    run_parser.add_argument(
        "--domain",
        action="append",
        required=True,
        dest="domains",
        help="Domain to issue for; repeat to run several domains concurrently.",
    )
    run_parser.add_argument("--target-server", required=True, help="Target web server name")
    run_parser.add_argument("--site", required=True, help="Site on the target server")
    run_parser.add_argument("--port", type=int, default=None, help="Binding port")
    run_parser.add_argument("--protocol", default=None, help="Binding protocol")
    run_parser.add_argument("--host-name", default=None, help="Binding host name (SNI)")
    run_parser.add_argument("--store-location", default=None, help="Certificate store")
    run_parser.add_argument("--secret-store", default=None, help="Secret store name")
    run_parser.add_argument("--directory-url", default=None, help="ACME directory URL")
    run_parser.add_argument(
        "--environment",
        choices=["production", "staging"],
        default=None,
        help="Let's Encrypt environment (ignored when --directory-url is given)",
    )
    run_parser.add_argument(
        "--contact",
        action="append",
        default=None,
        help="Account contact e-mail; repeatable",
    )
    run_parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Concurrent domains (default: pipeline.max_workers)",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        dest="as_json",
        help="Print results as JSON",
    )

    # validate-config
    subparsers.add_parser("validate-config", help="Validate the configuration file and exit")

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"acmepipe: error: {message}", file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, runs the pipeline."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help(sys.stderr)
        sys.exit(EXIT_FAILURE)

    # -- resolve config path ---
    config_path = Path(args.config) if args.config else None
    if config_path is not None and not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(EXIT_FAILURE)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        from acmepipe.config import ConfigValidationError, PipelineConfig

        config = PipelineConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(EXIT_FAILURE)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(EXIT_FAILURE)

    # -- replace bootstrap logging with the configured handlers ---
    from acmepipe.logging import configure_logging

    configure_logging(config.settings.logging)

    if args.command == "validate-config":
        _print_settings_summary(config)
        sys.exit(EXIT_OK)

    sys.exit(_run(config, args))


def _run(config, args) -> int:
    from acmepipe.hooks import HookRegistry
    from acmepipe.models import DeploymentTarget
    from acmepipe.pipeline import Orchestrator, PipelineRequest

    settings = config.settings
    deploy = settings.deploy
    target = DeploymentTarget(
        server=args.target_server,
        site=args.site,
        port=args.port or deploy.port,
        protocol=args.protocol or deploy.protocol,
        store_location=args.store_location or deploy.store_location,
        host_name=args.host_name,
    )
    requests = [
        PipelineRequest(
            domain=domain,
            target=target,
            secret_store_name=args.secret_store,
            directory_url=args.directory_url,
            environment=args.environment,
            contact=tuple(args.contact or ()),
        )
        for domain in dict.fromkeys(d.strip().lower() for d in args.domains)
    ]

    cancel_event = threading.Event()
    _register_signals(cancel_event)

    hooks = HookRegistry(settings.hooks)
    try:
        try:
            orchestrator = Orchestrator.from_settings(settings, hooks=hooks)
        except Exception as exc:
            if args.debug:
                raise
            _print_error(f"pipeline initialisation failed: {exc}")
            return EXIT_FAILURE
        results = orchestrator.run_batch(requests, args.max_workers, cancel_event)
    finally:
        hooks.shutdown(wait=True)

    if args.as_json:
        print(json.dumps([r.as_dict() for r in results], indent=2))
    else:
        for result in results:
            print(result.summary())
    return EXIT_OK if results and all(r.succeeded for r in results) else EXIT_FAILURE


def _register_signals(cancel_event: threading.Event) -> None:
    """Turn SIGTERM/SIGINT into a cooperative cancellation."""

    def _handler(signum: int, frame) -> None:
        log.warning("Received %s, cancelling in-flight pipelines", signal.Signals(signum).name)
        cancel_event.set()

    try:
        signal.signal(signal.SIGTERM, _handler)
        signal.signal(signal.SIGINT, _handler)
    except (ValueError, OSError):
        log.debug("Could not register signal handlers (not main thread)")


def _print_settings_summary(config) -> None:
    """Print a short summary of the loaded configuration."""
    s = config.settings
    source = config.data.get("_source", "<defaults>")
    lines = [
        f"Configuration OK: {source}",
        f"  acme.directory     {s.acme.resolve_directory_url()}",
        f"  dns.provider       {s.dns.provider}",
        f"  secrets.backend    {s.secrets.backend} (store {s.secrets.store_name})",
        f"  deploy.backend     {s.deploy.backend}",
        f"  verify.tls         {'on' if s.verify.tls_handshake else 'off'}",
        f"  hooks.registered   {len(s.hooks.registered)}",
    ]
    print("\n".join(lines))
