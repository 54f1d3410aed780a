import uvicorn
from fastapi import FastAPI
from upload_engine.api.routers import uploads
from upload_engine.core.config import settings
from upload_engine.core.logging import setup_logging

# Create FastAPI application
app = FastAPI(title=settings.PROJECT_NAME)

# Include routers
app.include_router(uploads.router, prefix=settings.API_PREFIX)

if __name__ == "__main__":
    setup_logging()
    uvicorn.run("main:app", host="0.0.0.0", port=8005, reload=True)
