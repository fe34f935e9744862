"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables (or a .env file)
with sensible defaults. One Settings object covers both the Sheets
proxy service and the training log client.

Mock modes enable local development without Google services.
"""

from functools import lru_cache
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    For lists (api_keys, cors_origins), use comma-separated values.
    """

    # API Configuration
    api_title: str = "Training Log Sheets API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="",
        description="Comma-separated API keys. When empty the proxy endpoints are open."
    )

    # Google Sheets Configuration
    google_sheets_id: str = Field(
        default="",
        description="Spreadsheet the proxy reads and writes."
    )
    google_service_account_file: Optional[str] = Field(
        default=None,
        description="Path to a service-account key file. Alternative to the individual GOOGLE_* fields."
    )
    google_project_id: str = Field(default="", description="Service account project id")
    google_private_key_id: str = Field(default="", description="Service account private key id")
    google_private_key: str = Field(
        default="",
        description="Service account private key. May arrive flattened; it is re-wrapped into PEM lines."
    )
    google_client_email: str = Field(default="", description="Service account client email")
    google_client_id: str = Field(default="", description="Service account client id")
    google_cert_url: str = Field(default="", description="Service account x509 certificate URL")
    sheets_mock_mode: bool = Field(
        default=False,
        description="Use an in-memory spreadsheet instead of the Sheets API."
    )

    # Firestore Configuration
    firestore_project_id: str = Field(
        default="",
        description="Firebase/GCP project holding the training log collections"
    )
    firestore_credentials_file: Optional[str] = Field(
        default=None,
        description="Service-account key for Firestore. Application default credentials when unset."
    )
    firestore_credentials_json: Optional[str] = Field(
        default=None,
        description="Service-account key JSON for Firestore, for hosts that only offer env vars. Wins over the file."
    )
    firestore_mock_mode: bool = Field(
        default=False,
        description="Use the in-memory document store instead of Firestore."
    )

    # Training log client
    local_storage_path: Optional[str] = Field(
        default=None,
        description="JSON file for remembered login, drafts and cached memos. In-memory when unset."
    )
    debounce_ms: int = Field(
        default=300,
        description="Delay before a coach filter change reloads records."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @property
    def has_inline_google_credentials(self) -> bool:
        return bool(self.google_private_key and self.google_client_email)

    def google_service_account_info(self) -> Optional[dict[str, Any]]:
        """
        Service-account key assembled from the GOOGLE_* fields.

        Returns None when the inline fields are not set, so a key file
        can be used instead.
        """
        if not self.has_inline_google_credentials:
            return None
        from ..infrastructure.sheets.client import build_service_account_info
        return build_service_account_info(
            project_id=self.google_project_id,
            private_key_id=self.google_private_key_id,
            private_key=self.google_private_key,
            client_email=self.google_client_email,
            client_id=self.google_client_id,
            cert_url=self.google_cert_url,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields. Separate from Pydantic
        validation because requirements depend on the mock modes.
        """
        missing = []

        if not self.sheets_mock_mode:
            if not self.google_sheets_id:
                missing.append("GOOGLE_SHEETS_ID")
            if not self.google_service_account_file and not self.has_inline_google_credentials:
                missing.append("GOOGLE_SERVICE_ACCOUNT_FILE or GOOGLE_PRIVATE_KEY + GOOGLE_CLIENT_EMAIL")

        if not self.firestore_mock_mode and not self.firestore_project_id:
            missing.append("FIRESTORE_PROJECT_ID")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process. Tests call
    get_settings.cache_clear() to reload with a different environment.
    """
    return Settings()
