from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = Field(default="sqlite:///./donchat.db", description="Database connection string for the document store")
    SQL_ECHO: bool = Field(default=False, description="Set to True for SQL query debugging")

    AUTH_PROVIDER: Literal["jwt", "firebase"] = Field(default="jwt", description="Which identity collaborator verifies bearer tokens")
    SECRET_KEY: str = Field(default="your-secret-key-change-this-in-production", description="JWT secret key")
    ALGORITHM: str = Field(default="HS256", description="Algorithm for JWT (e.g., HS256)")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, description="How long (in minutes) an access token is valid")

    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_PRIVATE_KEY_ID: Optional[str] = None
    FIREBASE_PRIVATE_KEY: Optional[str] = None
    FIREBASE_CLIENT_EMAIL: Optional[str] = None
    FIREBASE_CLIENT_ID: Optional[str] = None
    FIREBASE_AUTH_URI: Optional[str] = None
    FIREBASE_TOKEN_URI: Optional[str] = None
    FIREBASE_AUTH_PROVIDER_X509_CERT_URL: Optional[str] = None
    FIREBASE_CLIENT_X509_CERT_URL: Optional[str] = None

    CORS_ORIGINS: str = Field(
        default="http://localhost:3000,http://localhost:5173,capacitor://localhost,ionic://localhost",
        description="Comma-separated origins allowed for HTTP and the socket hub",
    )

    DEFAULT_MESSAGE_LIMIT: int = Field(default=50, ge=1, description="Page size when the client does not send ?limit")
    MAX_MESSAGE_LIMIT: int = Field(default=100, ge=1, description="Upper bound accepted for ?limit")
    SSE_KEEPALIVE_SECONDS: float = Field(default=15.0, gt=0, description="Idle seconds before a keep-alive comment is written to a subscription stream")

    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def firebase_service_account(self) -> dict:
        private_key = self.FIREBASE_PRIVATE_KEY
        if private_key:
            private_key = private_key.replace("\\n", "\n")

        firebase_config = {
            "type": "service_account",
            "project_id": self.FIREBASE_PROJECT_ID,
            "private_key_id": self.FIREBASE_PRIVATE_KEY_ID,
            "private_key": private_key,
            "client_email": self.FIREBASE_CLIENT_EMAIL,
            "client_id": self.FIREBASE_CLIENT_ID,
            "auth_uri": self.FIREBASE_AUTH_URI,
            "token_uri": self.FIREBASE_TOKEN_URI,
            "auth_provider_x509_cert_url": self.FIREBASE_AUTH_PROVIDER_X509_CERT_URL,
            "client_x509_cert_url": self.FIREBASE_CLIENT_X509_CERT_URL,
        }
        # Remove None values
        return {k: v for k, v in firebase_config.items() if v is not None}


@lru_cache
def get_settings() -> Settings:
    return Settings()
