from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid

from fastapi import FastAPI
import uvicorn

from app.api.http_app import build_app
from app.domain.errors import DomainValidationError
from app.logging_setup import configure_logging
from app.roles import SUPPORTED_ROLES, RuntimeRole, validate_role
from app.services.bootstrap import RuntimeContainer, build_runtime_container

DEFAULT_PORTS = {
    "api": 8000,
    "worker-deliver": 8100,
}
logger = logging.getLogger("runtime")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Newsletter publishing runtime")
    parser.add_argument("--role", required=True, help=f"Runtime role, one of: {', '.join(SUPPORTED_ROLES)}")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument(
        "--dry-run-startup",
        action="store_true",
        help="Validate role and configuration, then exit",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable code reload (dev mode)",
    )
    return parser.parse_args(argv)


def _build_role_app(role: RuntimeRole, container: RuntimeContainer, run_id: str) -> FastAPI:
    return build_app(
        role=role.name,
        run_id=run_id,
        worker=container.worker,
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )


def create_runtime_app() -> FastAPI:
    """uvicorn factory used by `--reload`; the role comes from APP_ROLE."""
    role = validate_role(os.getenv("APP_ROLE", "api"))
    configure_logging()
    return _build_role_app(role, build_runtime_container(role), str(uuid.uuid4()))


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        role = validate_role(args.role)
    except ValueError as exc:
        supported = ", ".join(SUPPORTED_ROLES)
        sys.stderr.write(f"ERROR: {exc}\n")
        sys.stderr.write(f"Try one of: {supported}\n")
        return 2

    configure_logging()
    run_id = str(uuid.uuid4())
    log_extra = {"role": role.name, "service": role.name, "run_id": run_id}

    try:
        container = build_runtime_container(role)
    except DomainValidationError as exc:
        sys.stderr.write(f"ERROR: invalid configuration: {exc}\n")
        return 2

    logger.info("runtime initialized", extra=log_extra)

    if args.dry_run_startup:
        logger.info("dry-run startup complete", extra=log_extra)
        return 0

    port = args.port if args.port is not None else DEFAULT_PORTS[role.name]
    if args.reload:
        os.environ["APP_ROLE"] = role.name
        uvicorn.run(
            "app.main:create_runtime_app",
            host=args.host,
            port=port,
            log_level="warning",
            reload=True,
            factory=True,
        )
        return 0

    uvicorn.run(_build_role_app(role, container, run_id), host=args.host, port=port, log_level="warning")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
