"""FastAPI update service main application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from selfupdate_engine import __version__
from .config import config
from .api.endpoints import router


logger = logging.getLogger('selfupdate_service')


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown handler."""
    logger.info("Update service starting...")
    logger.info(f"Installation configuration: {config.UPDATER_CONFIG}")
    yield
    logger.info("Update service shutting down...")


# Create FastAPI app
app = FastAPI(
    title="py-self-updater Service",
    description="Web service for checking and applying application updates",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(router)


@app.get("/")
async def read_root():
    """Service banner."""
    return {"message": "py-self-updater Service", "version": __version__}


def main():
    """Run the service with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    uvicorn.run(
        "selfupdate_service.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    main()
