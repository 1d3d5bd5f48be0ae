"""Command-line entry point."""

import argparse
import asyncio
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Dict, List, Optional

from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from kubeauto.errors import SetupError
from kubeauto.logs import configure_logging
from kubeauto.operator import run
from kubeauto.settings import KubeautoSettings

logger = logging.getLogger("kubeauto")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubeauto",
        description="Print resource status, tail logs and port-forward pods matching a label selector.",
    )
    parser.add_argument("-n", "--namespace", help="namespace to filter resources, defaults to the current namespace")
    parser.add_argument("-l", "--labels", help="label selector, e.g. app=nginx, defaults to all resources")
    parser.add_argument("-g", "--group", help="the API group to watch, defaults to core resources")
    parser.add_argument("-c", "--container", help="container to tail and forward, defaults to the pod's default container")
    parser.add_argument("-a", "--all-containers", action="store_true", default=None, help="tail and forward every container")
    parser.add_argument("-p", "--host-port-offset", type=int, help="added to each container port to get the local port")
    parser.add_argument("--json-logs", action="store_true", default=None, help="log diagnostics as JSON")
    parser.add_argument("--verbose", action="store_true", default=None, help="debug logging")
    parser.add_argument("--no-color", dest="color", action="store_false", default=None, help="print without colors")
    parser.add_argument("-v", "--version", action="store_true", help="print version")
    return parser


def package_version() -> str:
    try:
        return version("kubeauto")
    except PackageNotFoundError:
        return "unknown"


def settings_from_args(args: argparse.Namespace) -> KubeautoSettings:
    overrides: Dict[str, Any] = {
        key: value
        for key, value in vars(args).items()
        if key != "version" and value is not None
    }
    return KubeautoSettings(**overrides)


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    if args.version:
        print(package_version())
        return

    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings)
    try:
        asyncio.run(run(settings))
    except (SetupError, ApiException) as e:
        logger.error(f"Cannot start: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass
