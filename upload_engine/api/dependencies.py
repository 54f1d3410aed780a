from upload_engine.core.config import settings
from upload_engine.services.upload_service import UploadService

# Dependency to get the UploadService instance
def get_upload_service() -> UploadService:
    """
    Dependency to get an UploadService storing under the configured directories.
    """
    return UploadService(settings.UPLOAD_DIR, settings.TEMP_DIR)
