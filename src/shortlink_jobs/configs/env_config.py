import os
from dotenv import load_dotenv

load_dotenv()

class Env:
    # Storage
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "mongo")
    MONGO_URI = os.getenv("MONGO_URI")
    MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "shortlink")

    # Scheduler
    JOB_SCHEDULER_ENABLED = os.getenv("JOB_SCHEDULER_ENABLED", "true")
    URL_EXPIRATION_JOB_INTERVAL = os.getenv("URL_EXPIRATION_JOB_INTERVAL", "60")
    PASSWORD_RESET_CLEANUP_JOB_INTERVAL = os.getenv("PASSWORD_RESET_CLEANUP_JOB_INTERVAL", "60")
    URL_EXPIRATION_BATCH_SIZE = os.getenv("URL_EXPIRATION_BATCH_SIZE", "1000")
    JOB_HEALTH_CHECK_INTERVAL = os.getenv("JOB_HEALTH_CHECK_INTERVAL", "30")
    JOB_RETRY_DELAY_MINUTES = os.getenv("JOB_RETRY_DELAY_MINUTES", "15")

    # Logging / alerting
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    JOB_ALERT_WEBHOOK = os.getenv("JOB_ALERT_WEBHOOK")

    @classmethod
    def validate(cls):
        required_vars = {}
        if cls.STORAGE_BACKEND == "mongo":
            required_vars["MONGO_URI"] = cls.MONGO_URI

        missing_vars = [var for var, value in required_vars.items() if not value]
        if missing_vars:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )
