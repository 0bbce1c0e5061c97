# import_service.py
import json
import logging
from typing import Any, Dict, List, Optional, Union

import pydantic

import csv_parser
import database_supabase as db_supabase
import llm_service
import platforms
from config import settings
from csv_parser import CandidateIncomeRecord, DEFAULT_CATEGORY
from errors import ValidationError
from models_pydantic import ColumnMapping

log = logging.getLogger('import_service')
log.setLevel(logging.DEBUG if settings.DEBUG_MODE else logging.INFO)
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(name)s:%(module)s:%(funcName)s:%(lineno)d] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)


def preview_file(content: bytes, file_type: str, preview_rows: Optional[int] = None) -> Dict[str, Any]:
    """Parses a file and suggests a mapping. Never persists anything."""
    n = settings.PREVIEW_ROWS if preview_rows is None else preview_rows
    preview = csv_parser.parse_preview(content, n, file_type)
    detected_platform = platforms.detect_platform(preview["headers"])
    suggested_mapping = platforms.get_suggested_mapping(detected_platform)
    log.info(f"Preview: {preview['totalRows']} rows, detected platform: {detected_platform or 'unknown'}.")
    return {
        "preview": preview,
        "detectedPlatform": detected_platform,
        "suggestedMapping": suggested_mapping.model_dump(exclude_none=True) if suggested_mapping else None,
        "fileType": file_type,
    }


def resolve_mapping(mapping: Union[ColumnMapping, Dict[str, Any], str, None]) -> ColumnMapping:
    """Accepts a ColumnMapping, a dict or the JSON string sent in multipart forms."""
    if isinstance(mapping, ColumnMapping):
        return mapping
    if mapping is None or mapping == '':
        raise ValidationError("mapping: Required")
    if isinstance(mapping, str):
        try:
            mapping = json.loads(mapping)
        except json.JSONDecodeError as e:
            raise ValidationError(f"mapping: Invalid JSON ({e.msg})") from e
    if not isinstance(mapping, dict):
        raise ValidationError("mapping: Expected an object")
    try:
        return ColumnMapping.model_validate(mapping)
    except pydantic.ValidationError as e:
        messages = [
            f"mapping.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ValidationError(", ".join(messages)) from e


def apply_smart_categories(records: List[CandidateIncomeRecord], source_name: str) -> int:
    """
    Best-effort categorization of records without a meaningful category.

    Every such record starts at the default category; a model suggestion replaces
    it only above the confidence threshold. Returns how many records were relabelled.
    Never raises.
    """
    pending = [r for r in records if not r.category or r.category == DEFAULT_CATEGORY]
    for record in pending:
        record.category = DEFAULT_CATEGORY
    if not pending or not llm_service.is_configured():
        return 0

    batch = [
        {"description": r.description or '', "amount": float(r.amount), "source": source_name}
        for r in pending
    ]
    try:
        suggestions = llm_service.categorize_transactions(batch)
    except Exception as e:
        log.warning(f"Smart categorization failed, using defaults: {e}")
        return 0

    threshold = settings.CATEGORIZATION_CONFIDENCE_THRESHOLD
    relabelled = 0
    for record, suggestion in zip(pending, suggestions):
        category = suggestion.get('category')
        if category and category != DEFAULT_CATEGORY and (suggestion.get('confidence') or 0) > threshold:
            record.category = category
            relabelled += 1
    log.info(f"Smart categorization relabelled {relabelled} of {len(pending)} records.")
    return relabelled


def import_file(user_id: str, content: bytes, file_type: str, source_name: Optional[str],
                mapping: Union[ColumnMapping, Dict[str, Any], str, None]) -> Dict[str, Any]:
    """
    Builds candidate records from a file and hands them to storage for dedup-insert.

    Raises ValidationError for bad input or when no record could be built,
    ParseError for malformed files and StorageError when the store fails.
    """
    source_name = (source_name or '').strip()
    if not source_name:
        raise ValidationError("source_name: Required")
    column_mapping = resolve_mapping(mapping)

    log.info(f"User {user_id}: Import START. Source:'{source_name}', Type:'{file_type}', "
             f"Mapping:{column_mapping.model_dump(exclude_none=True)}")
    rows = csv_parser.parse_rows(content, file_type)
    records = csv_parser.build_records(rows, column_mapping)
    if not records:
        log.warning(f"User {user_id}: No valid records in {len(rows)} rows for source '{source_name}'.")
        raise ValidationError("No valid records found in the file")

    source = db_supabase.find_or_create_source(user_id, source_name)

    ai_categorized = apply_smart_categories(records, source_name)

    for record in records:
        record.source_id = source.id
        record.user_id = user_id
    inserted = db_supabase.bulk_insert_ignoring_duplicates(user_id, records)

    total = len(records)
    result = {
        "source": source.source_name,
        "imported": inserted,
        "duplicatesSkipped": total - inserted,
        "totalInFile": total,
        "aiCategorized": ai_categorized,
    }
    log.info(f"User {user_id}: Import DONE. {result}")
    return result
