from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    APP_NAME: str = "UniClinic"
    VERSION: str = "1.0.0"
    SECRET_KEY: str = "change-me-in-production-use-strong-random-key"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    DATABASE_URL: str = "sqlite:///./uniclinic.db"

    LOG_LEVEL: str = "INFO"

    # Registration
    # Students and academic staff must register with one of these domains
    UNIVERSITY_EMAIL_DOMAINS: List[str] = ["university.edu", "uni.edu", "student.edu"]
    PASSWORD_MIN_LENGTH: int = 8

    # Demo accounts created on startup (idempotent)
    SEED_DEMO_DATA: bool = True

    class Config:
        env_file = ".env"


settings = Settings()
