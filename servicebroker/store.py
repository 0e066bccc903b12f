from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from servicebroker.models import ServiceInstanceORM, ServiceInstanceRead, utcnow
from servicebroker.services.errors import StoreError, StoreErrorKind

logger = logging.getLogger(__name__)


class InstanceStore(Protocol):
    """Persistence for service instance records.

    Implementations serialize operations on the same instance id themselves;
    callers never lock. Failures are raised as :class:`StoreError`, with
    ``StoreErrorKind.UNIQUE_VIOLATION`` reserved for an instance id that is
    already bound to a different org/space.
    """

    def find_or_create(
        self, instance_id: str, *, org_id: Optional[str], space_id: Optional[str]
    ) -> tuple[ServiceInstanceRead, bool]:
        ...

    def find_by_id(self, instance_id: str) -> Optional[ServiceInstanceRead]:
        ...

    def delete_where(self, instance_id: str) -> int:
        ...

    def list_all(self) -> list[ServiceInstanceRead]:
        ...


def _scope_conflict(instance_id: str) -> StoreError:
    return StoreError(
        f"Service instance {instance_id} already exists in a different org/space",
        kind=StoreErrorKind.UNIQUE_VIOLATION,
    )


class SqlInstanceStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _find_exact(
        self, session: Session, instance_id: str, org_id: Optional[str], space_id: Optional[str]
    ) -> Optional[ServiceInstanceORM]:
        return session.exec(
            select(ServiceInstanceORM).where(
                ServiceInstanceORM.service_instance_id == instance_id,
                ServiceInstanceORM.org_id == org_id,
                ServiceInstanceORM.space_id == space_id,
            )
        ).one_or_none()

    def find_or_create(
        self, instance_id: str, *, org_id: Optional[str], space_id: Optional[str]
    ) -> tuple[ServiceInstanceRead, bool]:
        try:
            with Session(self.engine) as session:
                if existing := self._find_exact(session, instance_id, org_id, space_id):
                    return ServiceInstanceRead.model_validate(existing), False

                instance = ServiceInstanceORM(service_instance_id=instance_id, org_id=org_id, space_id=space_id)
                session.add(instance)
                try:
                    session.commit()
                except IntegrityError:
                    # Lost the insert race, or the id belongs to another scope.
                    session.rollback()
                    if existing := self._find_exact(session, instance_id, org_id, space_id):
                        return ServiceInstanceRead.model_validate(existing), False
                    raise _scope_conflict(instance_id)
                session.refresh(instance)
                logger.info("Created service instance id=%s org_id=%s space_id=%s", instance_id, org_id, space_id)
                return ServiceInstanceRead.model_validate(instance), True
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to find or create service instance {instance_id}: {exc}") from exc

    def find_by_id(self, instance_id: str) -> Optional[ServiceInstanceRead]:
        try:
            with Session(self.engine) as session:
                instance = session.get(ServiceInstanceORM, instance_id)
                return ServiceInstanceRead.model_validate(instance) if instance else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to look up service instance {instance_id}: {exc}") from exc

    def delete_where(self, instance_id: str) -> int:
        try:
            with Session(self.engine) as session:
                result = session.execute(
                    delete(ServiceInstanceORM).where(ServiceInstanceORM.service_instance_id == instance_id)
                )
                session.commit()
                logger.info("Deleted service instance id=%s rows=%s", instance_id, result.rowcount)
                return result.rowcount
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete service instance {instance_id}: {exc}") from exc

    def list_all(self) -> list[ServiceInstanceRead]:
        try:
            with Session(self.engine) as session:
                instances = session.exec(
                    select(ServiceInstanceORM).order_by(ServiceInstanceORM.created_at,
                                                        ServiceInstanceORM.service_instance_id)
                ).all()
                return [ServiceInstanceRead.model_validate(i) for i in instances]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list service instances: {exc}") from exc


class MemoryInstanceStore:
    """Dict-backed store with the same semantics as :class:`SqlInstanceStore`.

    ``fail_next`` arms a one-shot failure that the next call raises as a
    ``StoreErrorKind.FAILURE``.
    """

    def __init__(self) -> None:
        self._instances: dict[str, ServiceInstanceRead] = {}
        self._lock = threading.Lock()
        self._pending_failure: Optional[str] = None

    def fail_next(self, message: str = "store unavailable") -> None:
        with self._lock:
            self._pending_failure = message

    def _raise_pending_failure(self) -> None:
        if self._pending_failure is not None:
            message, self._pending_failure = self._pending_failure, None
            raise StoreError(message)

    def find_or_create(
        self, instance_id: str, *, org_id: Optional[str], space_id: Optional[str]
    ) -> tuple[ServiceInstanceRead, bool]:
        with self._lock:
            self._raise_pending_failure()
            if existing := self._instances.get(instance_id):
                if existing.same_scope(org_id=org_id, space_id=space_id):
                    return existing, False
                raise _scope_conflict(instance_id)
            instance = ServiceInstanceRead(
                service_instance_id=instance_id,
                org_id=org_id,
                space_id=space_id,
                created_at=utcnow(),
            )
            self._instances[instance_id] = instance
            return instance, True

    def find_by_id(self, instance_id: str) -> Optional[ServiceInstanceRead]:
        with self._lock:
            self._raise_pending_failure()
            return self._instances.get(instance_id)

    def delete_where(self, instance_id: str) -> int:
        with self._lock:
            self._raise_pending_failure()
            return 1 if self._instances.pop(instance_id, None) is not None else 0

    def list_all(self) -> list[ServiceInstanceRead]:
        with self._lock:
            self._raise_pending_failure()
            return sorted(self._instances.values(), key=lambda i: (i.created_at, i.service_instance_id))
