import os

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")  # development | staging | production
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

APP_NAME = "tcrs-approval-api"
APP_VERSION = "0.3.0"

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Azure Blob Storage (invoice PDFs + GL-coding Excel files)
AZURE_STORAGE_CONNECTION_STRING = os.getenv("AZURE_STORAGE_CONNECTION_STRING", "")
AZURE_STORAGE_CONTAINER_NAME = os.getenv("AZURE_STORAGE_CONTAINER_NAME", "invoices-pdf")
SAS_TTL_MIN = int(os.getenv("SAS_TTL_MIN", "10"))

PDF_MAX_SIZE = 10 * 1024 * 1024
PDF_MIME_TYPE = "application/pdf"
EXCEL_MAX_SIZE = 10 * 1024 * 1024
EXCEL_EXTENSIONS = (".xlsx", ".xls")
XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Mirror workflow history to JSONL files (see utils/audit_sink.py)
AUDIT_MIRROR_ENABLED = os.getenv("AUDIT_MIRROR_ENABLED", "1") == "1"


def is_production() -> bool:
    return ENVIRONMENT.lower() == "production"
