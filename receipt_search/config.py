"""
Configuration module for the receipt search backend.

Loads environment variables and validates required settings.
"""
import os
from typing import List
from dotenv import load_dotenv

# Load .env file
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Supabase Configuration
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_PUBLISHABLE_KEY: str = os.getenv("SUPABASE_PUBLISHABLE_KEY", "")
    # Secret (service_role) key. Only used by the worker-facing and
    # search paths, which enforce ownership themselves through SearchScope.
    SUPABASE_SECRET_KEY: str = os.getenv("SUPABASE_SECRET_KEY", "")

    # JWT Verification - Using JWT Signing Keys (ES256 with JWKS)
    # Format: https://<project-id>.supabase.co/auth/v1/.well-known/jwks.json
    @property
    def SUPABASE_JWKS_URL(self) -> str:
        """Get the JWKS URL for JWT verification."""
        if not self.SUPABASE_URL:
            return ""
        return f"{self.SUPABASE_URL}/auth/v1/.well-known/jwks.json"

    # Google Gen AI (embedding generation)
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "gemini-embedding-001")
    EMBEDDING_DIMENSIONS: int = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))

    # Embedding queue
    QUEUE_MAX_RETRIES: int = int(os.getenv("QUEUE_MAX_RETRIES", "3"))
    QUEUE_LEASE_SECONDS: int = int(os.getenv("QUEUE_LEASE_SECONDS", "600"))
    QUEUE_CLEANUP_HOURS: int = int(os.getenv("QUEUE_CLEANUP_HOURS", "24"))
    WORKER_BATCH_SIZE: int = int(os.getenv("WORKER_BATCH_SIZE", "5"))
    WORKER_ID: str = os.getenv("WORKER_ID", "")

    # Shared secrets for machine-to-machine endpoints
    WORKER_TOKEN: str = os.getenv("WORKER_TOKEN", "")
    WEBHOOK_SECRET: str = os.getenv("WEBHOOK_SECRET", "")

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS Settings
    CORS_ORIGINS: List[str] = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:8080"
    ).split(",")

    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required settings are configured.

        Raises:
            ValueError: If any required setting is missing.
        """
        required_settings = {
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_SECRET_KEY": cls.SUPABASE_SECRET_KEY,
            "WORKER_TOKEN": cls.WORKER_TOKEN,
            "WEBHOOK_SECRET": cls.WEBHOOK_SECRET,
        }

        missing = [key for key, value in required_settings.items() if not value]

        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Please check your .env file."
            )

        if cls.QUEUE_MAX_RETRIES < 1:
            raise ValueError("QUEUE_MAX_RETRIES must be at least 1")

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def is_development(cls) -> bool:
        return cls.ENVIRONMENT.lower() == "development"


settings = Settings()

# VALIDATE_CONFIG=false skips the check (tests, worker dry runs)
if os.getenv("VALIDATE_CONFIG", "true").lower() == "true":
    try:
        settings.validate()
    except ValueError as e:
        if not settings.is_development():
            raise
        print(f"⚠️  Warning: {e}")
        print("   Search and the embedding worker will fail until the .env file is complete.")
