from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # Backend hébergé (obligatoires : le démarrage échoue sans eux)
    BACKEND_URL: str = Field(..., env="BACKEND_URL")
    BACKEND_ANON_KEY: str = Field(..., env="BACKEND_ANON_KEY")
    DATABASE_URL: str = Field(..., env="DATABASE_URL")
    JWT_SECRET: str = Field(..., env="JWT_SECRET")
    ALGORITHM: str = Field(default="HS256", env="ALGORITHM")
    JWT_AUDIENCE: str = Field(default="authenticated", env="JWT_AUDIENCE")

    # Règles métier
    MONTANT_REQUIS: int = Field(default=4000, env="MONTANT_REQUIS")
    DEFAULT_CLASS_CAPACITY: int = Field(default=10, env="DEFAULT_CLASS_CAPACITY")

    # Cache de données
    POLL_INTERVAL_SECONDS: float = Field(default=180, env="POLL_INTERVAL_SECONDS")
    LOAD_TIMEOUT_SECONDS: float = Field(default=15, env="LOAD_TIMEOUT_SECONDS")
    SESSION_CHECK_TIMEOUT_SECONDS: float = Field(default=8, env="SESSION_CHECK_TIMEOUT_SECONDS")

    # Stockage des photos
    UPLOAD_DIR: str = Field(default="static/upload", env="UPLOAD_DIR")
    PHOTO_BUCKET: str = Field(default="photos-participants", env="PHOTO_BUCKET")
    PUBLIC_BASE_URL: str = Field(default="", env="PUBLIC_BASE_URL")
    MAX_PHOTO_SIZE: int = Field(default=5 * 1024 * 1024, env="MAX_PHOTO_SIZE")

    SQL_ECHO: bool = Field(default=False, env="SQL_ECHO")
    LOG_LEVEL: str = Field(default="INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"


settings = Settings()
