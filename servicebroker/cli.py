from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
import uvicorn
import yaml
from fastapi.encoders import jsonable_encoder

from servicebroker.db import create_db_engine, init_db
from servicebroker.logging_config import configure_logging
from servicebroker.services import instances as instance_service
from servicebroker.services.errors import BrokerException
from servicebroker.services.instances import Outcome
from servicebroker.store import SqlInstanceStore

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="Service broker CLI", pretty_exceptions_show_locals=False)

_FAILED_OUTCOMES = {
    Outcome.CONFLICT: "Service instance already exists in a different org/space",
    Outcome.NOT_FOUND: "Service instance not found",
    Outcome.STORE_FAILURE: "Store failure, see log for details",
}


@contextmanager
def store_scope() -> Iterator[SqlInstanceStore]:
    engine = create_db_engine()
    init_db(engine)
    try:
        yield SqlInstanceStore(engine)
    finally:
        engine.dispose()


def _exit_with_error(message: str) -> None:
    logger.warning("CLI command failed: %s", message)
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


def _check_outcome(instance_id: str, outcome: Outcome) -> None:
    if outcome in _FAILED_OUTCOMES:
        _exit_with_error(f"{_FAILED_OUTCOMES[outcome]}: {instance_id}")


@app.command("init-db")
def init_database() -> None:
    engine = create_db_engine()
    try:
        init_db(engine)
    finally:
        engine.dispose()
    typer.echo(f"Initialized database {engine.url.render_as_string(hide_password=True)}")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8080, "--port"),
) -> None:
    uvicorn.run("servicebroker.main:app", host=host, port=port, log_level="info")


@app.command("provision")
def provision(
    instance_id: str,
    org_id: Optional[str] = typer.Option(None, "--org-id", help="Owning organization guid."),
    space_id: Optional[str] = typer.Option(None, "--space-id", help="Owning space guid."),
) -> None:
    with store_scope() as store:
        outcome = instance_service.provision_instance(
            store,
            instance_id,
            org_id=org_id,
            space_id=space_id,
            request_context={"command": "provision", "instance_id": instance_id,
                             "org_id": org_id, "space_id": space_id},
        )
        _check_outcome(instance_id, outcome)
        _echo_yaml_entity({"outcome": outcome.value, "instance": store.find_by_id(instance_id)})


@app.command("deprovision")
def deprovision(instance_id: str) -> None:
    with store_scope() as store:
        outcome = instance_service.deprovision_instance(
            store,
            instance_id,
            request_context={"command": "deprovision", "instance_id": instance_id},
        )
        _check_outcome(instance_id, outcome)
        _echo_yaml_entity({"outcome": outcome.value, "service_instance_id": instance_id})


@app.command("list-instances")
def list_instances() -> None:
    with store_scope() as store:
        try:
            instances = store.list_all()
        except BrokerException as e:
            _exit_with_error(str(e))
        _echo_yaml_entity(instances)


@app.command("get-instance")
def get_instance(instance_id: str) -> None:
    with store_scope() as store:
        try:
            instance = store.find_by_id(instance_id)
        except BrokerException as e:
            _exit_with_error(str(e))
        if instance is None:
            _exit_with_error(f"Service instance not found: {instance_id}")
        _echo_yaml_entity(instance)


if __name__ == "__main__":
    app()
