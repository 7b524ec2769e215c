from fastapi import Request


def get_blob_storage(request: Request):
    """Configured BlobStorage, or None when no connection string is set."""
    return getattr(request.app.state, "blob_storage", None)
