from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from servicebroker.store import InstanceStore
from servicebroker.services.errors import StoreError

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    DELETED = "deleted"
    STORE_FAILURE = "store_failure"


def _log_store_failure(request_context: Optional[dict[str, Any]], exc: Exception) -> None:
    logger.error(
        "Failed to handle request: %s",
        exc,
        exc_info=exc,
        extra={"request": request_context or {}, "error": str(exc)},
    )


def provision_instance(
    store: InstanceStore,
    instance_id: str,
    *,
    org_id: Optional[str],
    space_id: Optional[str],
    request_context: Optional[dict[str, Any]] = None,
) -> Outcome:
    """Find the instance matching the full (id, org, space) key or create it.

    The find-or-create is a single store call; a differing scope for an existing
    id comes back as a unique violation and is reported as ``CONFLICT``.
    """
    try:
        _, created = store.find_or_create(instance_id, org_id=org_id, space_id=space_id)
    except StoreError as exc:
        if exc.is_unique_violation:
            logger.info("Provision conflict for service instance id=%s: %s", instance_id, exc)
            return Outcome.CONFLICT
        _log_store_failure(request_context, exc)
        return Outcome.STORE_FAILURE
    except Exception as exc:
        _log_store_failure(request_context, exc)
        return Outcome.STORE_FAILURE
    if created:
        return Outcome.CREATED
    logger.debug("Service instance id=%s already provisioned", instance_id)
    return Outcome.ALREADY_EXISTS


def deprovision_instance(
    store: InstanceStore,
    instance_id: str,
    *,
    request_context: Optional[dict[str, Any]] = None,
) -> Outcome:
    """Remove the instance with the given id, or report ``NOT_FOUND`` if there is none.

    The delete completes before an outcome is returned, so a failing delete is a
    ``STORE_FAILURE`` rather than a success.
    """
    try:
        if store.find_by_id(instance_id) is None:
            logger.info("Deprovision requested for unknown service instance id=%s", instance_id)
            return Outcome.NOT_FOUND
        store.delete_where(instance_id)
    except Exception as exc:
        _log_store_failure(request_context, exc)
        return Outcome.STORE_FAILURE
    return Outcome.DELETED
