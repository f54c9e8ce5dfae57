"""
Services package for the vidlib backend.
Contains business logic for identity, quota, migration and session cleanup.

Services are wired together once per app in a Services container and kept on
app.extensions["vidlib"]. Tests build the container with in-memory stores.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from vidlib.services.identity_service import IdentityResolver
from vidlib.services.migration_service import MigrationService
from vidlib.services.quota_service import QuotaService
from vidlib.services.resource_store import ResourceStore
from vidlib.services.session_store import SessionStore
from vidlib.services.session_sweeper import SessionSweeper


@dataclass
class Services:
    sessions: object
    resources: object
    identity: IdentityResolver
    quota: QuotaService
    migration: MigrationService
    sweeper: SessionSweeper


def build_services(
    sessions,
    resources,
    logger: Optional[logging.Logger] = None,
    **overrides,
) -> Services:
    """
    Wire the services around a session store and a resource store.

    When logger is given, each component logs to a child of it
    (logger.identity, logger.quota, ...). overrides may carry limit,
    inactive_days, batch_size or clock.
    """
    def child(name: str) -> Optional[logging.Logger]:
        return logger.getChild(name) if logger is not None else None

    clock_kwargs = {"clock": overrides["clock"]} if "clock" in overrides else {}

    return Services(
        sessions=sessions,
        resources=resources,
        identity=IdentityResolver(sessions, logger=child("identity"), **clock_kwargs),
        quota=QuotaService(sessions, resources, limit=overrides.get("limit"), logger=child("quota")),
        migration=MigrationService(sessions, resources, logger=child("migration"), **clock_kwargs),
        sweeper=SessionSweeper(
            sessions,
            resources,
            inactive_days=overrides.get("inactive_days"),
            batch_size=overrides.get("batch_size"),
            logger=child("sweeper"),
            **clock_kwargs,
        ),
    )


def build_default_services(logger: Optional[logging.Logger] = None) -> Services:
    """Services backed by PostgreSQL."""
    return build_services(SessionStore(), ResourceStore(), logger=logger)


__all__ = [
    "Services",
    "build_services",
    "build_default_services",
]
