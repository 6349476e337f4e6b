from pydantic_settings import BaseSettings
from typing import Optional
import os

class Settings(BaseSettings):
    # Application settings
    app_name: str = "Conversion Worker"
    environment: str = os.getenv("PYTHON_ENV", "development")
    debug: bool = environment == "development"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    port: int = int(os.getenv("PORT", "8080"))

    # AWS settings (endpoint override points at LocalStack during development)
    aws_region: str = os.getenv("AWS_REGION", "us-east-1")
    aws_endpoint_url: Optional[str] = os.getenv("AWS_ENDPOINT_URL")
    aws_access_key_id: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")

    # Storage settings
    storage_backend: str = os.getenv("STORAGE_BACKEND", "s3")  # s3, local
    storage_bucket: str = os.getenv("S3_BUCKET_NAME", "cloud-tools-local-bucket")
    local_storage_dir: str = os.getenv("LOCAL_STORAGE_DIR", "/tmp/conversion-storage")
    public_base_url: Optional[str] = os.getenv("PUBLIC_BASE_URL")
    presigned_url_expiry: int = int(os.getenv("PRESIGNED_URL_EXPIRY", "0"))  # 0 disables presigning

    # Queue settings
    queue_backend: str = os.getenv("QUEUE_BACKEND", "sqs")  # sqs, memory
    queue_url: Optional[str] = os.getenv("SQS_QUEUE_URL")
    queue_name: str = os.getenv("SQS_QUEUE_NAME", "cloud-tools-jobs-queue")
    queue_wait_time_seconds: int = int(os.getenv("QUEUE_WAIT_TIME_SECONDS", "20"))
    queue_visibility_timeout: Optional[int] = None

    # Job record settings
    job_store_backend: str = os.getenv("JOB_STORE_BACKEND", "datastore")  # datastore, memory
    google_cloud_project: str = os.getenv("GOOGLE_CLOUD_PROJECT", "PROJECT_ID")
    datastore_namespace: str = os.getenv("DATASTORE_NAMESPACE", "conversion-worker")
    job_record_kind: str = os.getenv("JOB_RECORD_KIND", "CloudToolsJobs")

    # Status reporting settings
    status_updater: str = os.getenv("STATUS_UPDATER", "store")  # store, api
    status_api_base_url: str = os.getenv("STATUS_API_BASE_URL", "http://localhost:3000")
    status_api_timeout: float = float(os.getenv("STATUS_API_TIMEOUT", "30"))

    # Worker settings
    poll_interval_seconds: float = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
    delete_failed_messages: bool = os.getenv("DELETE_FAILED_MESSAGES", "true").lower() == "true"

    # Processing settings
    temp_dir: str = os.getenv("TEMP_DIR", "/tmp/processing")
    ffmpeg_path: Optional[str] = os.getenv("FFMPEG_PATH")
    ffmpeg_timeout: int = int(os.getenv("FFMPEG_TIMEOUT", "1800"))
    calibre_path: str = os.getenv("CALIBRE_PATH", "ebook-convert")
    calibre_timeout: int = int(os.getenv("CALIBRE_TIMEOUT", "300"))

    class Config:
        env_file = ".env"
        case_sensitive = False
