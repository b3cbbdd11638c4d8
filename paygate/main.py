import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from paygate.config import get_settings
from paygate.database import Base, engine
from paygate.routes import router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to serve anything with a half-configured provider.
    settings = app.dependency_overrides.get(get_settings, get_settings)()
    logger.info("PayDunya mode=%s api=%s", settings.paydunya_mode, settings.api_base)
    yield


app = FastAPI(title="PayDunya Payment Reconciliation Service", lifespan=lifespan)

app.include_router(router)

Base.metadata.create_all(bind=engine)
