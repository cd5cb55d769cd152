from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str

    # If DEV and you hit SSL cert issues on the pooler, set DB_SSL_VERIFY=false in .env
    DB_SSL_VERIFY: bool = True

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    ENV: str = "dev"  # "dev" or "prod"

    # --- LEAVE QR CREDENTIALS ---
    # Falls back to SECRET_KEY when not set
    LEAVE_QR_SECRET: str | None = None
    LEAVE_QR_ALGORITHM: str = "HS256"
    LEAVE_QR_WINDOW_HOURS: int = 24
    # Outer 'exp' ceiling sits this far past validUntil
    LEAVE_QR_EXPIRY_GRACE_HOURS: int = 24

    LEAVE_REASON_MAX_LENGTH: int = 500
    ADMIN_COMMENTS_MAX_LENGTH: int = 300
    LEAVE_DEFAULT_BALANCE: int = 30

    # --- EMAIL SETTINGS ---
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 2525  # Default to Mailtrap port
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    EMAILS_FROM_EMAIL: str = "no-reply@hostelmate.local"
    EMAILS_FROM_NAME: str = "HostelMate"
    FRONTEND_URL: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def leave_qr_secret(self) -> str:
        return self.LEAVE_QR_SECRET or self.SECRET_KEY

settings = Settings()
