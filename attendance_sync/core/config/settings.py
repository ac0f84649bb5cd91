"""Process-wide settings loaded from the environment.

Per-run knobs (date range, batch size, retry, ...) live on
``SyncConfiguration``; this module only holds deployment concerns such as
endpoints, credentials and storage locations.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from attendance_sync.core.config.enums import Environment


class Settings(BaseSettings):
    """Deployment settings.

    Attributes:
        ENVIRONMENT: Deployment environment (controls log formatting).
        LOCAL_DEVELOPMENT: Force human-readable logs regardless of environment.
        LOG_LEVEL: Root log level for the ``attendance_sync`` logger tree.
        AERIES_BASE_URL: Base URL of the Aeries SIS API.
        AERIES_API_KEY: Bearer key for the Aeries API.
        AERIES_DISTRICT_CODE: District code sent with every Aeries request.
        WAREHOUSE_REST_URL: PostgREST endpoint of the warehouse.
        WAREHOUSE_SERVICE_KEY: Service key for the warehouse endpoint.
        WAREHOUSE_ATTENDANCE_TABLE: Table receiving attendance upserts.
        CHECKPOINT_STORAGE_PATH: Directory for filesystem checkpoints.
        METRICS_NAMESPACE: Prefix for Prometheus metric names.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: Environment = Environment.LOCAL
    LOCAL_DEVELOPMENT: bool = False
    LOG_LEVEL: str = "INFO"

    AERIES_BASE_URL: str = "https://aeries.example.org/api"
    AERIES_API_KEY: Optional[str] = None
    AERIES_DISTRICT_CODE: Optional[str] = None

    WAREHOUSE_REST_URL: str = "http://localhost:54321/rest/v1"
    WAREHOUSE_SERVICE_KEY: Optional[str] = None
    WAREHOUSE_ATTENDANCE_TABLE: str = "attendance_records"

    CHECKPOINT_STORAGE_PATH: str = Field(default="local_storage/checkpoints")
    METRICS_NAMESPACE: str = "attendance_sync"

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Accept lowercase level names from the environment."""
        return value.upper()

    @property
    def use_json_logs(self) -> bool:
        """Whether log records should be emitted as JSON lines."""
        return not self.LOCAL_DEVELOPMENT and self.ENVIRONMENT != Environment.LOCAL
