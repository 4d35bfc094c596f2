from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Temporal
    temporal_address: str = "localhost:7233"
    temporal_namespace: str = "default"
    temporal_api_key: str | None = None
    temporal_task_queue: str = "shopping-list-tasks"

    # Object storage (S3)
    aws_region: str = "eu-north-1"
    s3_bucket_name: str = "shopping-list-images"
    s3_endpoint_url: str | None = None
    upload_ticket_expiry_seconds: int = Field(default=10, ge=1, le=10)

    # Identity provider (Cognito user pool)
    cognito_region: str = "eu-north-1"
    cognito_user_pool_id: str = ""
    cognito_client_id: str = ""
    token_signing_key: str = ""  # PEM or shared secret; empty = fetch pool JWKS
    token_algorithms: list[str] = ["RS256"]
    token_audience: str | None = None

    # Recognition (Textract)
    recognition_max_attempts: int = Field(default=3, ge=1)
    recognition_initial_backoff_seconds: float = 1.0
    recognition_timeout_seconds: float = 15.0

    # Line resolution / cart API
    line_confidence_threshold: float = 80.0
    cart_api_url: str = "http://localhost:9000/api/cart/search-and-add"
    cart_api_key: str = ""
    cart_timeout_seconds: float = 10.0
    max_concurrent_dispatches: int = Field(default=5, ge=1)

    # Capture device
    api_base_url: str = "http://localhost:8000"
    credentials_file: str = "credentials.json"
    capture_debounce_seconds: float = 3.0
    capture_command: list[str] = ["libcamera-still", "-n", "-t", "1", "-e", "jpg", "-o", "-"]
    capture_timeout_seconds: float = 10.0
    session_refresh_skew_seconds: int = 60
    session_refresh_max_attempts: int = Field(default=3, ge=1)
    session_refresh_backoff_seconds: float = 1.0
    ticket_timeout_seconds: float = 5.0
    upload_timeout_seconds: float = 15.0

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""
    use_temporal: bool = False

    @property
    def token_issuer(self) -> str:
        return f"https://cognito-idp.{self.cognito_region}.amazonaws.com/{self.cognito_user_pool_id}"


settings = Settings()
