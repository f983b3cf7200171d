"""
bootstrap.py -- Strictly ordered startup shared by the CLI and the API.

Order matters and every step blocks:
  1. Connectivity guard -- wait_for_ready() until the database answers.
  2. Schema initializer -- ensure_schema() creates/migrates the grants table.
  3. Directory client    -- token exchange with Azure AD (degrades, never fails).
  4. Store, resolver, credential store wired together for the server context.

Steps 1 and 2 raise (ConnectivityError, SchemaError); callers treat that as
fatal. Nothing that answers authorization questions is built before the
store is reachable and migrated.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from access.credentials import CredentialStore
from access.resolver import AuthorizationResolver, Directory
from access.store import AccessStore
from core.config import Settings
from db.client import DatabaseClient
from db.readiness import wait_for_ready
from db.schema import ensure_schema
from directory.graph import GraphDirectoryClient

logger = logging.getLogger("radiusauthz.bootstrap")


@dataclass
class Services:
    """Everything a request handler needs, built once per process."""

    settings: Settings
    db: DatabaseClient
    directory: Directory
    store: AccessStore
    resolver: AuthorizationResolver
    credentials: CredentialStore

    def close(self) -> None:
        close_directory = getattr(self.directory, "close", None)
        if close_directory is not None:
            close_directory()
        self.db.close()


def start(
    settings: Settings,
    *,
    directory: Optional[Directory] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Services:
    """Run the startup sequence and return wired services.

    Args:
        settings:  Process settings (server context, DB, directory credentials).
        directory: Injected directory; defaults to GraphDirectoryClient built
                   from settings. Tests pass a fake here.
        sleep:     Passed to the connectivity guard.

    Raises:
        ConnectivityError: database unreachable within DB_WAIT_TIMEOUT_MS.
        SchemaError: table creation or migration failed.
    """
    logger.info(
        "Starting RADIUS access gate for server %s (directory credentials %s)",
        settings.radius_server_id,
        "configured" if settings.directory_configured else "not configured, local-only mode",
    )
    db = DatabaseClient(settings.sqlalchemy_url, pool_size=settings.db_pool_size)
    try:
        wait_for_ready(db, settings.db_wait_timeout_ms, settings.db_wait_interval_ms, sleep=sleep)
        ensure_schema(db)
    except Exception:
        db.close()
        raise

    if directory is None:
        directory = GraphDirectoryClient.from_settings(settings)
    store = AccessStore(db, settings.radius_server_id)
    services = Services(
        settings=settings,
        db=db,
        directory=directory,
        store=store,
        resolver=AuthorizationResolver(store, directory),
        credentials=CredentialStore(store),
    )
    logger.info("Access gate ready (server_id=%s)", settings.radius_server_id)
    return services
