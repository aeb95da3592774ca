"""Process entry point.

    python main.py                         # binds API_HOST:API_PORT
    uvicorn main:create_app --factory      # same app under an external uvicorn
"""
from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from pdbmgr import api
from pdbmgr.errors import FatalConfigError
from pdbmgr.kube import KubePolicyStore, load_kube_client
from pdbmgr.logs import configure_logging
from pdbmgr.reconciler import BudgetReconciler
from pdbmgr.runtime import RuntimeState
from pdbmgr.settings import Settings

log = logging.getLogger("pdbmgr")

_UVICORN_LEVELS = {"warn": "warning", "fatal": "critical"}


def build(settings: Settings) -> FastAPI:
    """Check the PDB exists and wire reconciler and API.

    Raises FatalConfigError when the loop must not start.
    """
    store = KubePolicyStore(load_kube_client())
    reconciler = BudgetReconciler(settings, store, RuntimeState())
    reconciler.verify()
    return api.create_app(reconciler)


def create_app() -> FastAPI:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return build(settings)


def main() -> int:
    try:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        app = build(settings)
    except FatalConfigError as e:
        configure_logging()
        log.error("Error: %s", e)
        return 1

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=_UVICORN_LEVELS.get(settings.log_level, settings.log_level),
    )
    log.info("Shutting down.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
