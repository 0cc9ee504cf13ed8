# ispy/main.py
# Start the backend using uvicorn ispy.main:app --reload --host 0.0.0.0
import json
import logging
import logging.config
import pathlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute, APIWebSocketRoute

from ispy.core.config import settings
from ispy.core.exceptions import GameNotFoundError, TooManyGamesError
from ispy.api import games as games_router
from ispy.api import websockets as websocket_router
from ispy.services import session_service


def configure_logging_from_file():
    """Loads logging configuration from the JSON file shipped next to this module."""
    config_file = pathlib.Path(__file__).parent / "logging_config.json"
    try:
        with open(config_file) as f_in:
            config = json.load(f_in)
        logging.config.dictConfig(config)
    except FileNotFoundError:
        print(f"ERROR: Logging configuration file not found at {config_file}. Falling back to basic stdout logging.")
        logging.basicConfig(level=logging.INFO, format='%(levelname)-8s [%(name)s] %(message)s')
        logging.getLogger("ispy.main.logging_setup_fallback").error("Logging configuration file missing.", exc_info=True)
    except json.JSONDecodeError as e:
        print(f"ERROR: Failed to parse logging configuration file {config_file}: {e}. Falling back to basic stdout logging.")
        logging.basicConfig(level=logging.INFO, format='%(levelname)-8s [%(name)s] %(message)s')
        logging.getLogger("ispy.main.logging_setup_fallback").error("Logging configuration JSON error.", exc_info=True)
    except Exception as e:
        print(f"ERROR: Failed to configure logging from file: {e}. Falling back to basic stdout logging.")
        logging.basicConfig(level=logging.INFO, format='%(levelname)-8s [%(name)s] %(message)s')
        logging.getLogger("ispy.main.logging_setup_fallback").error("General logging configuration failed.", exc_info=True)


configure_logging_from_file()
logger = logging.getLogger("ispy.main")  # Logger for this module


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup sequence initiated...")
    if not settings.gemini_configured:
        logger.warning("Starting without a Gemini API key; every AI request will fail.")
    yield
    logger.info(f"Application shutdown sequence initiated. Closing {len(session_service.active_games)} games...")
    await session_service.close_all_games()
    logger.info("All games closed.")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(GameNotFoundError)
async def game_not_found_handler(request: Request, exc: GameNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(TooManyGamesError)
async def too_many_games_handler(request: Request, exc: TooManyGamesError):
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


# Include Routers
app.include_router(games_router.router, prefix=settings.API_V1_STR + "/games", tags=["Games"])
app.include_router(websocket_router.router, tags=["Game Sockets"])  # WebSockets don't have the API prefix

logger.debug("--- FastAPI Registered Routes ---")
for route in app.routes:
    if isinstance(route, APIRoute):
        logger.debug(f"Path: {route.path}, Methods: {route.methods}, Name: {route.name}")
    elif isinstance(route, APIWebSocketRoute):
        logger.debug(f"WebSocket Path: {route.path}, Name: {route.name}")


@app.get(settings.API_V1_STR + "/health", tags=["Health Check"])
async def health_check():
    return {"status": "healthy", "project": settings.PROJECT_NAME, "gemini_configured": settings.gemini_configured}
