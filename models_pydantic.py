# models_pydantic.py
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List, Dict, Any, Generic, TypeVar
import datetime as dt

T = TypeVar('T')


# --- Response Envelope ---
class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by every endpoint: {success, data?, message?, error?}."""
    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[str] = None


def success_response(data: Any, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def error_response(error: str) -> Dict[str, Any]:
    return {"success": False, "error": error}


# --- User Models ---
class UserPydantic(BaseModel):
    id: str
    email: Optional[EmailStr] = None

    model_config = ConfigDict(from_attributes=True)


# --- CSV Import Models ---
class ColumnMapping(BaseModel):
    """Which file header feeds each canonical income-record field."""
    amount: str = Field(..., min_length=1, description="Header holding the amount.")
    date: str = Field(..., min_length=1, description="Header holding the transaction date.")
    description: Optional[str] = None
    category: Optional[str] = None
    customer: Optional[str] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None


class CsvPreviewPydantic(BaseModel):
    headers: List[str]
    rows: List[Dict[str, Any]]
    totalRows: int


class CsvPreviewResponsePydantic(BaseModel):
    preview: CsvPreviewPydantic
    detectedPlatform: Optional[str] = None
    suggestedMapping: Optional[ColumnMapping] = None
    fileType: str


class ImportResultPydantic(BaseModel):
    source: str
    imported: int
    duplicatesSkipped: int
    totalInFile: int
    aiCategorized: int = 0


class PlatformPydantic(BaseModel):
    name: str
    displayName: str
    expectedColumns: List[str]


# --- Income Models ---
class IncomeSourcePydantic(BaseModel):
    id: str
    user_id: str
    source_name: str
    source_type: str = 'custom'
    created_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IncomeRecordPydantic(BaseModel):
    id: Optional[str] = None
    user_id: str
    source_id: Optional[str] = None
    source_name: Optional[str] = None
    amount: str
    currency: str = 'USD'
    transaction_date: dt.date
    description: Optional[str] = None
    category: Optional[str] = None
    customer_name: Optional[str] = None
    external_transaction_id: Optional[str] = None
    raw_data: Optional[Dict[str, Any]] = None
    created_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IncomeRecordListPydantic(BaseModel):
    records: List[IncomeRecordPydantic]
    total: int


class IncomeSummaryPydantic(BaseModel):
    totalAmount: str
    recordCount: int
    bySource: Dict[str, str]
    byMonth: Dict[str, str]


# --- Insights Models ---
class IncomeInsightPydantic(BaseModel):
    summary: str
    highlights: List[str]
    recommendations: List[str]
    topSource: Optional[str] = None
    trend: str = 'stable'
    trendPercentage: float = 0
    period: str
    aiGenerated: bool = False
