"""Logging setup: rich on stderr, or kopf's JSON format for machines."""

import logging

import kopf
from rich.console import Console
from rich.logging import RichHandler

from kubeauto.settings import KubeautoSettings


def configure_logging(settings: KubeautoSettings) -> None:
    level = logging.DEBUG if settings.verbose else getattr(logging, settings.log_level)

    if settings.json_logs:
        kopf.configure(verbose=settings.verbose, log_format=kopf.LogFormat.JSON)
        logging.getLogger().setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, markup=False)],
        force=True,
    )
    if not settings.verbose:
        # kopf is chatty about every watch (re)connection
        logging.getLogger("kopf").setLevel(logging.WARNING)
