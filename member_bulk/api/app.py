from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse, Response

from .. import __version__
from ..config.loader import load_config, load_lookup_catalog
from ..db.connection import db_cursor
from ..db.gateway import GatewayError, MemberGateway, PostgresGateway
from ..errors import BulkCommitError, BulkInputError, UploadTooLargeError
from ..excel.writer import render_template, template_filename
from ..logging.init import setup_logging
from ..models.config_models import AppConfig
from ..models.lookup_catalog import LookupCatalog
from ..services import members as member_service
from ..services.reconciler import run_bulk
from .schemas import BulkResponse, LookupsResponse, MemberPayload, MemberResponse

"""HTTP surface of the member directory.

Endpoints (prefix /api/users):
    POST   /bulk?dryRun=false       - reconcile an uploaded workbook
    GET    /lookups                 - closed vocabularies
    GET    /excel-template          - blank or pre-populated workbook
    GET    /                        - list members
    GET    /{member_id}             - one member
    POST   /                        - create one member
    PUT    /{member_id}             - partial update
    DELETE /{member_id}             - delete (profile cascades)

Run with: uvicorn member_bulk.api.app:app
"""

logger = logging.getLogger(__name__)

CONFIG_ENV = "MEMBER_BULK_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/app.yml")
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@lru_cache(maxsize=1)
def get_settings() -> AppConfig:
    load_dotenv(override=False)
    path = Path(os.getenv(CONFIG_ENV, str(DEFAULT_CONFIG_PATH)))
    if not path.exists():
        logger.warning("config file not found: %s (using defaults)", path)
        return AppConfig()
    return load_config(path)


@lru_cache(maxsize=1)
def get_catalog() -> LookupCatalog:
    return load_lookup_catalog(get_settings().lookup_catalog)


def get_gateway(settings: Annotated[AppConfig, Depends(get_settings)]) -> Iterator[MemberGateway]:
    with db_cursor(settings.database) as cur:
        yield PostgresGateway(cur, page_size=settings.bulk.page_size)


SettingsDep = Annotated[AppConfig, Depends(get_settings)]
CatalogDep = Annotated[LookupCatalog, Depends(get_catalog)]
GatewayDep = Annotated[MemberGateway, Depends(get_gateway)]

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("/bulk", response_model=BulkResponse)
def bulk_upload(
    settings: SettingsDep,
    catalog: CatalogDep,
    gateway: GatewayDep,
    file: Annotated[UploadFile | None, File(description="Users workbook (.xlsx)")] = None,
    dry_run: bool = Query(False, alias="dryRun"),
) -> Any:
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    limit = settings.bulk.max_upload_bytes
    # 上限 +1 バイトまでしか読まない
    data = file.file.read(limit + 1)
    file_name = file.filename or "upload.xlsx"
    try:
        result = run_bulk(
            data, file_name, catalog, gateway, dry_run=dry_run, bulk_config=settings.bulk
        )
    except UploadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e)) from e
    except BulkInputError as e:
        logger.info("bulk upload rejected file=%s: %s", file_name, e)
        raise HTTPException(status_code=400, detail=str(e)) from e
    except BulkCommitError as e:
        body = e.result.to_response()
        return JSONResponse(
            status_code=500,
            content={
                "message": str(e),
                "errorCount": body["errorCount"],
                "errorDetails": body["errorDetails"],
                "errorFileBase64": body["errorFileBase64"],
            },
        )
    except GatewayError as e:
        logger.error("bulk upload failed file=%s: %s", file_name, e)
        raise HTTPException(status_code=500, detail=f"member store unavailable: {e}") from e
    return result.to_response()


@router.get("/lookups", response_model=LookupsResponse)
def lookups(catalog: CatalogDep) -> Any:
    return catalog.to_dict()


@router.get("/excel-template")
def excel_template(
    settings: SettingsDep,
    catalog: CatalogDep,
    gateway: GatewayDep,
    mode: Literal["blank", "data"] = Query("blank"),
    downloaded_by: str = Query("", alias="downloadedBy"),
) -> Response:
    members = gateway.list_members() if mode == "data" else []
    content = render_template(
        catalog,
        members,
        mode=mode,
        downloaded_by=downloaded_by,
        sheet_name=settings.bulk.data_sheet_name,
    )
    filename = template_filename(mode)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _service_error(e: member_service.MemberServiceError) -> HTTPException:
    if isinstance(e, member_service.MemberNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, member_service.MemberConflictError):
        return HTTPException(status_code=409, detail={"reasons": e.reasons})
    if isinstance(e, member_service.MemberValidationError):
        return HTTPException(status_code=400, detail={"reasons": e.reasons})
    return HTTPException(status_code=500, detail=str(e))


@router.get("", response_model=list[MemberResponse])
def list_members(gateway: GatewayDep) -> Any:
    return member_service.list_members(gateway)


@router.get("/{member_id}", response_model=MemberResponse)
def get_member(member_id: str, gateway: GatewayDep) -> Any:
    try:
        return member_service.get_member(gateway, member_id)
    except member_service.MemberServiceError as e:
        raise _service_error(e) from e


@router.post("", response_model=MemberResponse, status_code=201)
def create_member(payload: MemberPayload, settings: SettingsDep, catalog: CatalogDep, gateway: GatewayDep) -> Any:
    try:
        return member_service.create_member(
            gateway, catalog, payload.to_fields(), bulk_config=settings.bulk
        )
    except member_service.MemberServiceError as e:
        raise _service_error(e) from e


@router.put("/{member_id}", response_model=MemberResponse)
def update_member(
    member_id: str, payload: MemberPayload, settings: SettingsDep, catalog: CatalogDep, gateway: GatewayDep
) -> Any:
    try:
        return member_service.update_member(
            gateway, catalog, member_id, payload.to_fields(), bulk_config=settings.bulk
        )
    except member_service.MemberServiceError as e:
        raise _service_error(e) from e


@router.delete("/{member_id}", status_code=204)
def delete_member(member_id: str, gateway: GatewayDep) -> Response:
    try:
        member_service.delete_member(gateway, member_id)
    except member_service.MemberServiceError as e:
        raise _service_error(e) from e
    return Response(status_code=204)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Member Directory API", version=__version__)

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(router)
    return app


app = create_app()
