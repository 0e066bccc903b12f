from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from starlette.responses import Response

from servicebroker.api.utils import outcome_response, request_context
from servicebroker.models import ServiceInstanceProvision, ProvisionResponse
from servicebroker.services import instances as instance_service
from servicebroker.services.errors import BrokerException
from servicebroker.store import InstanceStore

router = APIRouter(prefix="/v2/service_instances", tags=["service_instances"])


def get_store(request: Request) -> InstanceStore:
    if (store := request.app.state.store) is None:
        raise BrokerException("Service instance store is not configured")
    return store


@router.put("/{instance_id}", status_code=201, response_model=ProvisionResponse)
def provision(
    instance_id: str,
    request: Request,
    payload: Optional[ServiceInstanceProvision] = Body(default=None),
    store: InstanceStore = Depends(get_store),
) -> Response:
    payload = payload or ServiceInstanceProvision()
    outcome = instance_service.provision_instance(
        store,
        instance_id,
        org_id=payload.organization_guid,
        space_id=payload.space_guid,
        request_context=request_context(request, payload.model_dump()),
    )
    return outcome_response(outcome, ProvisionResponse().model_dump())


@router.delete("/{instance_id}", status_code=200)
def deprovision(
    instance_id: str,
    request: Request,
    store: InstanceStore = Depends(get_store),
) -> Response:
    outcome = instance_service.deprovision_instance(
        store, instance_id, request_context=request_context(request)
    )
    return outcome_response(outcome, {})
