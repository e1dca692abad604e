"""API routes: manage datastore services and optimize dataset metadata."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.auth import require_bearer_token
from dataset import optimize_dataset_metadata
from datastores.exceptions import ConversionError, DatastoreError, MetadataError
from datastores.services import Service
from metastore.db import get_session
from metastore.models import Dataset

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["datastores"], dependencies=[Depends(require_bearer_token)])


class ServiceIn(BaseModel):
    url: str
    port: str
    username: str
    password: str
    name: str
    group: str
    staging_directory: str


class ServiceOut(BaseModel):
    id: int
    url: str
    port: str
    username: str
    name: str
    group: str
    staging_directory: str


class OptimizeRequest(BaseModel):
    service_id: int
    user_id: int


class OptimizeResponse(BaseModel):
    dataset_id: int
    dimension_columns: list[str]
    converted_date_columns: list[str]
    default_date_field: str | None = None


def _service_out(service: Service) -> ServiceOut:
    return ServiceOut(
        id=service.id,
        url=service.url,
        port=service.port,
        username=service.username,
        name=service.name,
        group=service.group,
        staging_directory=service.staging_directory,
    )


def _get_service(session: Session, service_id: int) -> Service:
    try:
        return Service.get(session, service_id)
    except MetadataError as e:
        raise HTTPException(status_code=404, detail={"detail": "Service not found", "service_id": service_id}) from e


def _apply(service: Service, payload: ServiceIn) -> Service:
    for key, value in payload.model_dump().items():
        setattr(service, key, value.strip())
    try:
        service.validate()
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"detail": str(e)}) from e
    return service


@router.get("/services")
def list_services(session: Session = Depends(get_session)):
    """List registered datastore services (passwords are never returned)."""
    try:
        services = Service.get_all(session)
    except MetadataError as e:
        raise HTTPException(status_code=500, detail={"detail": "Metadata store error"}) from e
    return {"services": [_service_out(s) for s in services]}


@router.post("/services", status_code=201, response_model=ServiceOut)
def create_service(payload: ServiceIn, session: Session = Depends(get_session)):
    service = _apply(Service(), payload)
    try:
        service.create(session)
    except MetadataError as e:
        raise HTTPException(status_code=500, detail={"detail": "Metadata store error"}) from e
    return _service_out(service)


@router.get("/services/{service_id}", response_model=ServiceOut)
def get_service(service_id: int, session: Session = Depends(get_session)):
    return _service_out(_get_service(session, service_id))


@router.put("/services/{service_id}", response_model=ServiceOut)
def update_service(service_id: int, payload: ServiceIn, session: Session = Depends(get_session)):
    service = _apply(_get_service(session, service_id), payload)
    try:
        service.update(session)
    except MetadataError as e:
        raise HTTPException(status_code=500, detail={"detail": "Metadata store error"}) from e
    return _service_out(service)


@router.delete("/services/{service_id}", status_code=204)
def delete_service(service_id: int, session: Session = Depends(get_session)):
    service = _get_service(session, service_id)
    try:
        service.delete(session)
    except MetadataError as e:
        raise HTTPException(status_code=500, detail={"detail": "Metadata store error"}) from e
    return Response(status_code=204)


@router.post("/datasets/{dataset_id}/optimize", response_model=OptimizeResponse)
def optimize_dataset(dataset_id: int, payload: OptimizeRequest, session: Session = Depends(get_session)):
    """Identify the dimension columns and convert the date columns of a dataset."""
    service = _get_service(session, payload.service_id)
    try:
        Dataset.get(session, dataset_id, payload.user_id)
    except MetadataError as e:
        raise HTTPException(status_code=404, detail={"detail": "Dataset not found", "dataset_id": dataset_id}) from e

    try:
        store = service.datastore()
    except (DatastoreError, ValueError) as e:
        logger.error(f"opening datastore service {service.id} for dataset {dataset_id} failed: {e}")
        raise HTTPException(status_code=502, detail={"detail": str(e), "dataset_id": dataset_id}) from e

    try:
        with store:
            result = optimize_dataset_metadata(session, dataset_id, payload.user_id, store)
    except ConversionError as e:
        raise HTTPException(status_code=422, detail={"detail": str(e), "dataset_id": dataset_id}) from e
    except DatastoreError as e:
        logger.error(f"optimizing dataset {dataset_id} failed: {e}")
        raise HTTPException(status_code=502, detail={"detail": str(e), "dataset_id": dataset_id}) from e
    return OptimizeResponse(
        dataset_id=result.dataset_id,
        dimension_columns=result.dimension_columns,
        converted_date_columns=result.converted_date_columns,
        default_date_field=result.default_date_field,
    )
