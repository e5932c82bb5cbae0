"""
Configuration settings for the Notify application.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-key-change-in-production")
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    DEBUG = _env_bool("FLASK_DEBUG", "True")

    # Entity store backend: 'postgres' or 'memory'
    STORE_BACKEND = os.getenv("STORE_BACKEND", "postgres")

    # Database Configuration
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = int(os.getenv("DB_PORT", 5432))
    DB_NAME = os.getenv("DB_NAME", "notify")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "postgres")
    DB_MIN_CONNECTIONS = int(os.getenv("DB_MIN_CONNECTIONS", 2))
    DB_MAX_CONNECTIONS = int(os.getenv("DB_MAX_CONNECTIONS", 20))

    # Application Settings
    APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT = int(os.getenv("APP_PORT", 5000))
    BASE_URL = os.getenv("BASE_URL", "http://localhost:5000")

    MAX_CONTENT_LENGTH = 25 * 1024 * 1024  # 25MB evidence uploads
    JSONIFY_PRETTYPRINT_REGULAR = True

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "development")  # 'json' for production, 'development' for dev
    LOG_FILE = os.getenv("LOG_FILE", "logs/notify.log")
    LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))
    LOG_ENABLE_CONSOLE = _env_bool("LOG_ENABLE_CONSOLE", "true")

    # Payment gateway (Asaas)
    ASAAS_API_KEY = os.getenv("ASAAS_API_KEY", "")
    ASAAS_BASE_URL = os.getenv("ASAAS_BASE_URL", "https://www.asaas.com/api/v3")
    ASAAS_WEBHOOK_TOKEN = os.getenv("ASAAS_WEBHOOK_TOKEN", "")

    # Email provider (SendGrid)
    SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
    SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "notificacao@notify.ia.br")
    SENDGRID_BASE_URL = os.getenv("SENDGRID_BASE_URL", "https://api.sendgrid.com/v3")

    # Messaging provider (Z-API / WhatsApp)
    ZAPI_INSTANCE_ID = os.getenv("ZAPI_INSTANCE_ID", "")
    ZAPI_INSTANCE_TOKEN = os.getenv("ZAPI_INSTANCE_TOKEN", "")
    ZAPI_CLIENT_TOKEN = os.getenv("ZAPI_CLIENT_TOKEN", "")
    ZAPI_BASE_URL = os.getenv("ZAPI_BASE_URL", "https://api.z-api.io")

    # Text generation (Gemini)
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")

    # Blob storage
    BLOB_STORAGE_ROOT = os.getenv("BLOB_STORAGE_ROOT", "storage")
    BLOB_PUBLIC_BASE_URL = os.getenv("BLOB_PUBLIC_BASE_URL", "http://localhost:5000/files")

    # Business rules
    NOTIFICATION_PRICE = float(os.getenv("NOTIFICATION_PRICE", "57.92"))
    REFUND_WINDOW_HOURS = int(os.getenv("REFUND_WINDOW_HOURS", "24"))
    PAYMENT_DUE_DAYS = int(os.getenv("PAYMENT_DUE_DAYS", "3"))
    MEETING_LINK_BASE_URL = os.getenv("MEETING_LINK_BASE_URL", "https://meet.jit.si")

    # Timing
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))
    DISPATCH_TIMEOUT_SECONDS = float(os.getenv("DISPATCH_TIMEOUT_SECONDS", "30"))
    DISPATCH_IN_BACKGROUND = _env_bool("DISPATCH_IN_BACKGROUND", "true")
    MEETING_SWEEP_ENABLED = _env_bool("MEETING_SWEEP_ENABLED", "true")
    MEETING_SWEEP_INTERVAL_SECONDS = int(os.getenv("MEETING_SWEEP_INTERVAL_SECONDS", "60"))
    MEETING_TIMEZONE = os.getenv("MEETING_TIMEZONE", "America/Sao_Paulo")

    @classmethod
    def get_database_config(cls):
        """Get database configuration as dictionary"""
        return {
            "host": cls.DB_HOST,
            "port": cls.DB_PORT,
            "database": cls.DB_NAME,
            "user": cls.DB_USER,
            "password": cls.DB_PASSWORD,
            "min_connections": cls.DB_MIN_CONNECTIONS,
            "max_connections": cls.DB_MAX_CONNECTIONS,
        }

    @classmethod
    def validate_config(cls):
        """Validate required configuration"""
        if cls.STORE_BACKEND not in ("postgres", "memory"):
            raise ValueError(f"Unknown STORE_BACKEND: {cls.STORE_BACKEND}")

        if cls.STORE_BACKEND == "postgres":
            required_vars = ["DB_HOST", "DB_NAME", "DB_USER", "DB_PASSWORD"]
            missing_vars = [var for var in required_vars if not getattr(cls, var)]

            if missing_vars:
                raise ValueError(f"Missing required configuration variables: {', '.join(missing_vars)}")

        if cls.REFUND_WINDOW_HOURS <= 0:
            raise ValueError("REFUND_WINDOW_HOURS must be positive")

        return True


class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    FLASK_ENV = "development"


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    FLASK_ENV = "production"

    SECRET_KEY = os.getenv("SECRET_KEY") or "MUST_BE_SET_IN_PRODUCTION"

    # Production logging defaults
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")
    LOG_ENABLE_CONSOLE = _env_bool("LOG_ENABLE_CONSOLE", "false")

    @classmethod
    def validate_config(cls):
        """Additional validation for production"""
        super().validate_config()

        secret_key = getattr(cls, "SECRET_KEY", "")
        if not secret_key or secret_key in ("dev-key-change-in-production", "MUST_BE_SET_IN_PRODUCTION"):
            raise ValueError("SECRET_KEY must be set to a secure value in production")

        if not cls.ASAAS_WEBHOOK_TOKEN:
            raise ValueError("ASAAS_WEBHOOK_TOKEN must be set in production")


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    DEBUG = True
    STORE_BACKEND = "memory"
    DB_NAME = os.getenv("TEST_DB_NAME", "notify_test")

    LOG_ENABLE_CONSOLE = False
    LOG_FILE = os.getenv("TEST_LOG_FILE", "logs/notify-test.log")

    ASAAS_WEBHOOK_TOKEN = "test-webhook-token"
    DISPATCH_IN_BACKGROUND = False
    MEETING_SWEEP_ENABLED = False


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
