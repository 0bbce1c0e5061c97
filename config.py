# config.py
import os
import logging
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional, Set

log = logging.getLogger('config')

# Load environment variables from .env file
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    # override=True so .env values take precedence over stale shell exports
    load_dotenv(dotenv_path, override=True)
else:
    log.debug(f".env file not found at {dotenv_path}; relying on process environment.")


class Settings(BaseSettings):
    """Application configuration settings."""

    # --- FastAPI Specific Settings ---
    FASTAPI_HOST: str = '127.0.0.1'
    FASTAPI_PORT: int = 8001

    # --- Supabase Configuration ---
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None  # ANON public key, used for token verification
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_DB_CONN_STRING: Optional[str] = None

    # --- General App Settings ---
    APP_NAME: str = "Income Tracker API"
    DEBUG_MODE: bool = os.environ.get('DEBUG_MODE', 'False').lower() in ('true', '1', 't')
    CORS_ORIGINS: List[str] = [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # --- Upload / Import Settings ---
    ALLOWED_EXTENSIONS: Set[str] = {'csv', 'xlsx'}
    MAX_UPLOAD_MB: int = 10
    PREVIEW_ROWS: int = 5
    DEFAULT_CURRENCY: str = 'USD'
    CATEGORIZATION_CONFIDENCE_THRESHOLD: float = 0.5

    # --- LLM Settings ---
    GOOGLE_API_KEY: Optional[str] = None
    LLM_MODEL_NAME: str = 'gemini-1.5-flash'

    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')


settings = Settings()


if __name__ == "__main__":
    print("\n--- Configuration Settings Loaded ---")
    print(f"  FastAPI Host: {settings.FASTAPI_HOST}")
    print(f"  FastAPI Port: {settings.FASTAPI_PORT}")
    print(f"  Debug Mode: {settings.DEBUG_MODE}")
    print(f"  Supabase URL: {'Set' if settings.SUPABASE_URL else 'Not Set'}")
    print(f"  Supabase Key: {'Set' if settings.SUPABASE_KEY else 'Not Set'}")
    print(f"  Supabase DB Connection String: {'Set' if settings.SUPABASE_DB_CONN_STRING else 'Not Set'}")
    print(f"  Google API Key: {'Set' if settings.GOOGLE_API_KEY else 'Not Set'}")
    print(f"  Allowed Extensions: {sorted(settings.ALLOWED_EXTENSIONS)}")
    print("--- End Configuration ---")
