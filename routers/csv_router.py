# routers/csv_router.py
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, UploadFile, File, Form

from config import settings
from models_pydantic import (
    ApiResponse, CsvPreviewResponsePydantic, ImportResultPydantic, PlatformPydantic,
    UserPydantic, success_response
)
import csv_parser
import import_service
import platforms
from auth.dependencies import get_current_supabase_user

log = logging.getLogger('csv_router')
if not log.handlers and not (hasattr(log.parent, 'handlers') and log.parent.handlers):
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(module)s:%(funcName)s:%(lineno)d] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)
    log.propagate = False

router = APIRouter(
    prefix="/api/csv",
    tags=["CSV Import"],
    dependencies=[Depends(get_current_supabase_user)],
    responses={404: {"description": "Not found"}},
)


async def read_upload(user_id: str, file: Optional[UploadFile]) -> bytes:
    """Checks name, extension and size of an upload and returns its bytes."""
    if file is None or not file.filename:
        log.warning(f"User {user_id}: Upload attempt with no file.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="No file provided. Please upload a CSV or XLSX file.")
    if not csv_parser.allowed_file(file.filename, settings.ALLOWED_EXTENSIONS):
        log.warning(f"User {user_id}: File type not allowed for '{file.filename}'. Allowed: {settings.ALLOWED_EXTENSIONS}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Only CSV and XLSX files are allowed")

    try:
        contents = await file.read()
    finally:
        await file.close()
    if len(contents) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        log.warning(f"User {user_id}: '{file.filename}' is {len(contents)} bytes, over the {settings.MAX_UPLOAD_MB}MB limit.")
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_MB}MB.")
    return contents


@router.get("/platforms", response_model=ApiResponse[List[PlatformPydantic]],
            summary="List supported platforms and their expected columns")
async def get_platforms():
    return success_response(platforms.list_platforms())


@router.post("/preview", response_model=ApiResponse[CsvPreviewResponsePydantic],
             summary="Preview an uploaded file and suggest a column mapping")
async def preview_csv(
        current_user: UserPydantic = Depends(get_current_supabase_user),
        file: Optional[UploadFile] = File(None, description="The CSV or XLSX file to preview."),
):
    user_id = current_user.id
    contents = await read_upload(user_id, file)
    file_type = csv_parser.detect_file_type(file.filename)
    log.info(f"User {user_id}: Preview request for '{file.filename}' ({file_type}, {len(contents)} bytes).")

    result = import_service.preview_file(contents, file_type)
    return success_response(result)


@router.post("/import", response_model=ApiResponse[ImportResultPydantic],
             summary="Import an uploaded file with a column mapping")
async def import_csv(
        current_user: UserPydantic = Depends(get_current_supabase_user),
        file: Optional[UploadFile] = File(None, description="The CSV or XLSX file to import."),
        source_name: Optional[str] = Form(None, description="Income source the records belong to."),
        mapping: Optional[str] = Form(None, description="JSON-encoded column mapping."),
):
    user_id = current_user.id
    contents = await read_upload(user_id, file)
    file_type = csv_parser.detect_file_type(file.filename)
    log.info(f"User {user_id}: Import request for '{file.filename}' ({file_type}), source '{source_name}'.")

    result = import_service.import_file(user_id, contents, file_type, source_name, mapping)
    return success_response(result, f"Successfully imported {result['imported']} records")
