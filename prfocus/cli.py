"""CLI entrypoint for serving PR Focus and running its parsers offline."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import yaml

from prfocus.config import PrFocusConfig, load_effective_config
from prfocus.diff_parser import parse_patch
from prfocus.logging_utils import LOG_LEVELS, configure_logging
from prfocus.reconciler import AnalysisValidationError, reconcile
from prfocus.signature import compute_signature

logger = logging.getLogger(__name__)

EXIT_VALIDATION_FAILED = 2


def _load_yaml_dict(path: str | None) -> dict | None:
    if not path:
        return None
    data = yaml.safe_load(Path(path).read_text())
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"YAML at {path} must decode to a mapping")
    return data


def _load_config(args: argparse.Namespace) -> PrFocusConfig:
    return load_effective_config(
        repo_path=args.repo_path,
        org_defaults=_load_yaml_dict(args.org_config),
        system_defaults=_load_yaml_dict(args.system_config),
        runtime_override=_load_yaml_dict(args.runtime_override),
    )


def _add_common_config_flags(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--repo-path", default=".", help="Repository root path")
    cmd.add_argument("--org-config", help="Optional org defaults YAML")
    cmd.add_argument("--system-config", help="Optional system defaults YAML")
    cmd.add_argument("--runtime-override", help="Optional runtime override YAML")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PR Focus webhook and pull request analysis service")
    parser.add_argument("--log-level", default="INFO", type=str.upper, choices=LOG_LEVELS, help="Logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind host")
    serve.add_argument("--port", type=int, default=8000, help="Bind port")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    _add_common_config_flags(serve)

    parse_diff = sub.add_parser("parse-diff", help="Parse a unified diff file into hunks (JSON)")
    parse_diff.add_argument("--input", required=True, help="Path to a unified diff / patch file")

    reconcile_cmd = sub.add_parser("reconcile", help="Validate saved model output into an analysis result (JSON)")
    reconcile_cmd.add_argument("--input", required=True, help="Path to raw model output text")

    sign = sub.add_parser("sign", help="Compute the X-Hub-Signature-256 header for a payload file")
    sign.add_argument("--input", required=True, help="Path to the raw webhook body")
    sign.add_argument("--secret-env", default="GITHUB_WEBHOOK_SECRET", help="Env var holding the webhook secret")

    return parser


def _run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    config = _load_config(args)
    logger.info("Starting PR Focus on http://%s:%s", args.host, args.port)
    if args.reload:
        os.environ["PRFOCUS_REPO_PATH"] = str(args.repo_path)
        uvicorn.run(
            "prfocus.webapp:create_app_from_env",
            host=args.host,
            port=args.port,
            reload=True,
            factory=True,
            log_level=args.log_level.lower(),
        )
    else:
        from prfocus.webapp import create_app

        app = create_app(config)
        uvicorn.run(app, host=args.host, port=args.port, reload=False, log_level=args.log_level.lower())
    return 0


def _run_parse_diff(args: argparse.Namespace) -> int:
    hunks = parse_patch(Path(args.input).read_text())
    print(json.dumps([hunk.model_dump(mode="json") for hunk in hunks], indent=2))
    return 0


def _run_reconcile(args: argparse.Namespace) -> int:
    raw = Path(args.input).read_text()
    try:
        result = reconcile(raw)
    except AnalysisValidationError as exc:
        logger.warning("Reconcile failed: %s", exc)
        print(exc.raw_text, file=sys.stderr)
        return EXIT_VALIDATION_FAILED
    print(result.model_dump_json(indent=2))
    return 0


def _run_sign(args: argparse.Namespace) -> int:
    secret = os.environ.get(args.secret_env, "")
    if not secret:
        logger.error("Environment variable %s is not set", args.secret_env)
        return 1
    print(compute_signature(Path(args.input).read_bytes(), secret))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        return _run_serve(args)
    if args.command == "parse-diff":
        return _run_parse_diff(args)
    if args.command == "reconcile":
        return _run_reconcile(args)
    if args.command == "sign":
        return _run_sign(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
