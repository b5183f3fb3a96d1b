import os
import tempfile
from dotenv import load_dotenv

load_dotenv()

class Settings:
    # Remote system
    API_BASE_URL: str = os.getenv("API_BASE_URL", "").rstrip("/")
    API_TOKEN: str = os.getenv("API_TOKEN", "")
    REQUEST_TIMEOUT_SEC: float = float(os.getenv("REQUEST_TIMEOUT_SEC", "15"))

    # Endpoint paths (product specific; override per deployment)
    JOB_SUBMIT_PATH: str = os.getenv("JOB_SUBMIT_PATH", "/econtract/generate")
    JOB_STATUS_PATH: str = os.getenv("JOB_STATUS_PATH", "/econtract/queue-status")
    ECONTRACT_OTP_REQUEST_PATH: str = os.getenv("ECONTRACT_OTP_REQUEST_PATH", "/econtract/request-otp")
    ECONTRACT_OTP_RESEND_PATH: str = os.getenv("ECONTRACT_OTP_RESEND_PATH", "/econtract/resend-otp")
    ECONTRACT_SIGN_PATH: str = os.getenv("ECONTRACT_SIGN_PATH", "/econtract/sign")
    TRANSFER_INITIATE_PATH: str = os.getenv("TRANSFER_INITIATE_PATH", "/bank/transfer/initiate")
    TRANSFER_VERIFY_PATH: str = os.getenv("TRANSFER_VERIFY_PATH", "/bank/transfer/verify")
    TRANSFER_RESEND_PATH: str = os.getenv("TRANSFER_RESEND_PATH", "/bank/transfer/resend-otp")

    # Snapshot store
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    SESSION_STORE_ENABLED: bool = os.getenv("SESSION_STORE_ENABLED", "true").lower() == "true"
    SESSION_TTL_SEC: int = int(os.getenv("SESSION_TTL_SEC", "3600"))

    # Job polling. The two caps are safety nets (0 disables).
    POLL_INTERVAL_SEC: float = float(os.getenv("POLL_INTERVAL_SEC", "5"))
    POLL_MAX_ATTEMPTS: int = int(os.getenv("POLL_MAX_ATTEMPTS", "120"))
    POLL_TIMEOUT_SEC: float = float(os.getenv("POLL_TIMEOUT_SEC", "600"))

    # OTP
    OTP_CODE_LENGTH: int = int(os.getenv("OTP_CODE_LENGTH", "6"))
    OTP_DEFAULT_EXPIRE_SEC: int = int(os.getenv("OTP_DEFAULT_EXPIRE_SEC", "300"))
    OTP_RESEND_COOLDOWN_SEC: int = int(os.getenv("OTP_RESEND_COOLDOWN_SEC", "30"))

    # Artifact downloads
    DOWNLOAD_DIR: str = os.getenv("DOWNLOAD_DIR", os.path.join(tempfile.gettempdir(), "txflow"))
    DOWNLOAD_CHUNK_BYTES: int = int(os.getenv("DOWNLOAD_CHUNK_BYTES", "65536"))
    DOWNLOAD_PROGRESS_STEP_PCT: int = int(os.getenv("DOWNLOAD_PROGRESS_STEP_PCT", "10"))
    DOWNLOAD_PROGRESS_STEP_BYTES: int = int(os.getenv("DOWNLOAD_PROGRESS_STEP_BYTES", "524288"))
    DOWNLOAD_CACHE_BUST: bool = os.getenv("DOWNLOAD_CACHE_BUST", "true").lower() == "true"

    # Account type selector (USER / STORE)
    DEFAULT_ACCOUNT_TYPE: str = os.getenv("DEFAULT_ACCOUNT_TYPE", "USER").upper()
    ACCOUNT_TYPE_KEY: str = os.getenv("ACCOUNT_TYPE_KEY", "account:type")

    # Security & Privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

settings = Settings()
