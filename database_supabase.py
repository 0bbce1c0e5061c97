# database_supabase.py
import logging
import psycopg2
from psycopg2.extras import RealDictCursor, Json, execute_values
from decimal import Decimal
import datetime as dt
from typing import List, Optional, Tuple, Dict, Any
import os
from collections import defaultdict

from config import settings
from errors import StorageError
from csv_parser import CandidateIncomeRecord

log = logging.getLogger('database_supabase')
log.setLevel(logging.INFO if not settings.DEBUG_MODE else logging.DEBUG)
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(name)s:%(module)s:%(funcName)s:%(lineno)d] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)

# Columns written per record, in INSERT order
RECORD_COLUMNS = (
    'user_id', 'source_id', 'amount', 'currency', 'transaction_date', 'description',
    'category', 'customer_name', 'external_transaction_id', 'raw_data',
)


class IncomeSource:
    def __init__(self, id: str, user_id: str, source_name: str, source_type: str = 'custom',
                 created_at: Optional[dt.datetime] = None):
        self.id = id
        self.user_id = user_id
        self.source_name = source_name
        self.source_type = source_type
        self.created_at = created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id, "user_id": self.user_id, "source_name": self.source_name,
            "source_type": self.source_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_db_row(cls, row: Dict) -> 'IncomeSource':
        return cls(id=str(row.get('id')), user_id=str(row.get('user_id')), source_name=row.get('source_name'),
                   source_type=row.get('source_type') or 'custom', created_at=row.get('created_at'))


def _record_from_db_row(row: Dict) -> Dict[str, Any]:
    amount = row.get('amount')
    return {
        "id": str(row['id']) if row.get('id') is not None else None,
        "user_id": str(row.get('user_id')),
        "source_id": str(row['source_id']) if row.get('source_id') is not None else None,
        "source_name": row.get('source_name'),
        "amount": str(amount) if amount is not None else '0',
        "currency": row.get('currency') or settings.DEFAULT_CURRENCY,
        "transaction_date": row.get('transaction_date'),
        "description": row.get('description'),
        "category": row.get('category'),
        "customer_name": row.get('customer_name'),
        "external_transaction_id": row.get('external_transaction_id'),
        "raw_data": row.get('raw_data'),
        "created_at": row.get('created_at'),
    }


def get_db_connection() -> psycopg2.extensions.connection:
    db_connection_string = settings.SUPABASE_DB_CONN_STRING or os.environ.get('SUPABASE_DB_CONN_STRING')
    if not db_connection_string:
        log.error("SUPABASE_DB_CONN_STRING is not set.")
        raise StorageError("Database is not configured.")
    try:
        conn = psycopg2.connect(db_connection_string)
        log.debug("Database connection successful.")
        return conn
    except psycopg2.Error as e:
        log.error(f"Error connecting to Supabase PostgreSQL: {e}", exc_info=True)
        raise StorageError("Could not connect to the database.") from e


def close_db_connection(conn: Optional[psycopg2.extensions.connection], context: str = "general_operation"):
    if conn:
        try:
            conn.close()
            log.debug(f"Database connection closed for {context}.")
        except psycopg2.Error as e:
            log.error(f"Error closing PostgreSQL connection for {context}: {e}", exc_info=True)


def initialize_database():
    log.info("Initializing income schema for PostgreSQL...")
    conn = get_db_connection()
    try:
        with conn.cursor() as cursor:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS public.income_sources (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
                    source_name VARCHAR(255) NOT NULL,
                    source_type VARCHAR(20) NOT NULL DEFAULT 'custom',
                    icon_url TEXT,
                    created_at TIMESTAMPTZ DEFAULT NOW() NOT NULL,
                    UNIQUE (user_id, source_name)
                );
            ''')
            log.debug("Checked/Created income_sources table.")

            # NULLS NOT DISTINCT so rows without an external id still dedup (PostgreSQL 15+)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS public.income_records (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
                    source_id UUID REFERENCES public.income_sources(id) ON DELETE SET NULL,
                    amount DECIMAL(19, 4) NOT NULL,
                    currency VARCHAR(10) NOT NULL DEFAULT 'USD',
                    transaction_date DATE NOT NULL,
                    description TEXT,
                    category VARCHAR(100) DEFAULT 'Other',
                    customer_name VARCHAR(255),
                    external_transaction_id VARCHAR(255),
                    raw_data JSONB,
                    created_at TIMESTAMPTZ DEFAULT NOW() NOT NULL,
                    CONSTRAINT income_records_dedup_key UNIQUE NULLS NOT DISTINCT
                        (user_id, source_id, external_transaction_id, transaction_date, amount)
                );
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_income_records_user_date
                    ON public.income_records (user_id, transaction_date DESC);
            ''')
            log.debug("Checked/Created income_records table.")
            conn.commit()
    except psycopg2.Error as e:
        log.error(f"Error during database initialization: {e}", exc_info=True)
        conn.rollback()
        raise StorageError("Failed to initialize database schema.") from e
    finally:
        close_db_connection(conn, "initialize_database")


# --- Income Sources ---
def find_or_create_source(user_id: str, source_name: str) -> IncomeSource:
    """Same user + same name always resolves to the same source row."""
    conn = get_db_connection()
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(
                """
                INSERT INTO public.income_sources (user_id, source_name, source_type)
                VALUES (%s, %s, 'custom')
                ON CONFLICT (user_id, source_name) DO NOTHING
                RETURNING id, user_id, source_name, source_type, created_at;
                """,
                (user_id, source_name)
            )
            row = cursor.fetchone()
            if row is None:
                cursor.execute(
                    "SELECT id, user_id, source_name, source_type, created_at FROM public.income_sources "
                    "WHERE user_id = %s AND source_name = %s",
                    (user_id, source_name)
                )
                row = cursor.fetchone()
            conn.commit()
        if row is None:
            raise StorageError(f"Failed to resolve income source '{source_name}'.")
        log.info(f"User {user_id}: Resolved income source '{source_name}' -> {row['id']}.")
        return IncomeSource.from_db_row(row)
    except psycopg2.Error as e:
        log.error(f"User {user_id}: DB error resolving source '{source_name}': {e}", exc_info=True)
        conn.rollback()
        raise StorageError(f"Failed to create income source: {e.pgerror or e}") from e
    finally:
        close_db_connection(conn, f"find_or_create_source for {user_id}")


def get_sources(user_id: str) -> List[IncomeSource]:
    conn = get_db_connection()
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(
                "SELECT id, user_id, source_name, source_type, created_at FROM public.income_sources "
                "WHERE user_id = %s ORDER BY source_name",
                (user_id,)
            )
            return [IncomeSource.from_db_row(r) for r in cursor.fetchall()]
    except psycopg2.Error as e:
        log.error(f"User {user_id}: DB error fetching sources: {e}", exc_info=True)
        raise StorageError("Failed to fetch income sources.") from e
    finally:
        close_db_connection(conn, f"get_sources for {user_id}")


# --- Income Records ---
def bulk_insert_ignoring_duplicates(user_id: str, records: List[CandidateIncomeRecord]) -> int:
    """
    Inserts all records in one statement and one transaction.
    Rows colliding on (user, source, external id, date, amount) are skipped.
    Returns the number of rows actually inserted.
    """
    if not records:
        return 0
    values = [
        (user_id, r.source_id, r.amount, r.currency, r.transaction_date, r.description,
         r.category, r.customer_name, r.external_transaction_id,
         Json(r.raw_data) if r.raw_data is not None else None)
        for r in records
    ]
    conn = get_db_connection()
    try:
        with conn.cursor() as cursor:
            inserted_rows = execute_values(
                cursor,
                f"""
                INSERT INTO public.income_records ({', '.join(RECORD_COLUMNS)})
                VALUES %s
                ON CONFLICT ON CONSTRAINT income_records_dedup_key DO NOTHING
                RETURNING id
                """,
                values,
                page_size=len(values),
                fetch=True,
            )
            conn.commit()
        inserted = len(inserted_rows)
        log.info(f"User {user_id}: Inserted {inserted} of {len(records)} income records.")
        return inserted
    except psycopg2.Error as e:
        log.error(f"User {user_id}: DB error inserting income records: {e}", exc_info=True)
        conn.rollback()
        raise StorageError(f"Failed to create income records: {e.pgerror or e}") from e
    finally:
        close_db_connection(conn, f"bulk_insert_ignoring_duplicates for {user_id}")


def _record_filters(user_id: str, start_date: Optional[dt.date], end_date: Optional[dt.date],
                    source_id: Optional[str] = None, category: Optional[str] = None) -> Tuple[str, List[Any]]:
    clauses = ["r.user_id = %s"]
    params: List[Any] = [user_id]
    if start_date:
        clauses.append("r.transaction_date >= %s")
        params.append(start_date)
    if end_date:
        clauses.append("r.transaction_date <= %s")
        params.append(end_date)
    if source_id:
        clauses.append("r.source_id = %s")
        params.append(source_id)
    if category:
        clauses.append("r.category = %s")
        params.append(category)
    return " AND ".join(clauses), params


def query_records(user_id: str, start_date: Optional[dt.date] = None, end_date: Optional[dt.date] = None,
                  source_id: Optional[str] = None, category: Optional[str] = None,
                  limit: int = 50, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
    where, params = _record_filters(user_id, start_date, end_date, source_id, category)
    conn = get_db_connection()
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM public.income_records r WHERE {where}", params)
            total = cursor.fetchone()['total']
            cursor.execute(
                f"""
                SELECT r.*, s.source_name
                FROM public.income_records r
                LEFT JOIN public.income_sources s ON s.id = r.source_id
                WHERE {where}
                ORDER BY r.transaction_date DESC, r.created_at DESC
                LIMIT %s OFFSET %s
                """,
                params + [limit, offset]
            )
            records = [_record_from_db_row(r) for r in cursor.fetchall()]
        log.info(f"User {user_id}: Fetched {len(records)} of {total} income records.")
        return records, total
    except psycopg2.Error as e:
        log.error(f"User {user_id}: DB error querying income records: {e}", exc_info=True)
        raise StorageError("Failed to fetch income records.") from e
    finally:
        close_db_connection(conn, f"query_records for {user_id}")


def get_summary(user_id: str, start_date: Optional[dt.date] = None,
                end_date: Optional[dt.date] = None) -> Dict[str, Any]:
    where, params = _record_filters(user_id, start_date, end_date)
    conn = get_db_connection()
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(
                f"""
                SELECT COALESCE(s.source_name, 'Unknown') AS source_name,
                       to_char(r.transaction_date, 'YYYY-MM') AS month,
                       SUM(r.amount) AS total, COUNT(*) AS n
                FROM public.income_records r
                LEFT JOIN public.income_sources s ON s.id = r.source_id
                WHERE {where}
                GROUP BY 1, 2
                """,
                params
            )
            rows = cursor.fetchall()
    except psycopg2.Error as e:
        log.error(f"User {user_id}: DB error computing income summary: {e}", exc_info=True)
        raise StorageError("Failed to fetch summary.") from e
    finally:
        close_db_connection(conn, f"get_summary for {user_id}")

    by_source: Dict[str, Decimal] = defaultdict(Decimal)
    by_month: Dict[str, Decimal] = defaultdict(Decimal)
    count_by_source: Dict[str, int] = defaultdict(int)
    total_amount = Decimal('0')
    record_count = 0
    for row in rows:
        amount = Decimal(str(row['total'] or 0))
        by_source[row['source_name']] += amount
        by_month[row['month']] += amount
        count_by_source[row['source_name']] += int(row['n'])
        total_amount += amount
        record_count += int(row['n'])
    return {
        "totalAmount": total_amount,
        "recordCount": record_count,
        "bySource": dict(by_source),
        "byMonth": dict(sorted(by_month.items())),
        "countBySource": dict(count_by_source),
    }


if __name__ == "__main__":
    log.info("database_supabase.py executed directly.")
    initialize_database()
    log.info("Finished direct execution of database_supabase.py.")
