import argparse
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mydeviceai import __version__
from mydeviceai.config import get_config, save_config
from mydeviceai.exceptions import AppBaseError
from mydeviceai.logger import get_logger
from mydeviceai.routers import app_config_api as config_router
from mydeviceai.routers import models_api as models_router
from mydeviceai.routers import runtime_api as runtime_router
from mydeviceai.routers import server_api as server_router
from mydeviceai.routers import web_sockets_api as peers_router
from mydeviceai.services.context import RuntimeContext

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the service graph on startup and stop the supervised server on shutdown."""
    config = get_config()
    config.paths.data_dir.mkdir(parents=True, exist_ok=True)
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = RuntimeContext.from_config(config)
    yield
    await app.state.runtime.aclose()


app = FastAPI(title="MyDeviceAI", version=__version__, lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppBaseError)
async def app_error_handler(request: Request, exc: AppBaseError) -> JSONResponse:
    logger.error(f"Request failed: {exc}", path=request.url.path, key=exc.message_key)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": str(exc), "key": exc.message_key, "retriable": exc.retriable},
    )


@app.get("/api/hello")
async def hello_get() -> dict[str, str]:
    """Return a simple hello message with version info."""
    return {"message": "Hello from MyDeviceAI!", "version": __version__}


# Register routers
app.include_router(config_router.router)
app.include_router(runtime_router.router)
app.include_router(server_router.router)
app.include_router(models_router.router)
app.include_router(peers_router.router)


def run_server(port: int | None = None) -> None:
    """Run the MyDeviceAI control service.

    Args:
        port: Optional port number to override config. If provided, will be saved to config.
    """
    config = get_config()

    if port is not None and port != config.server.port:
        logger.info("Port override detected, updating config", old_port=config.server.port, new_port=port)
        config.server.port = port
        save_config(config)

    uvicorn.run(app, host=config.server.host, port=config.server.port)


def main() -> None:
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="MyDeviceAI - local llama.cpp host for peer inference",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mydeviceai                   # Start with default/saved port
  mydeviceai --port 9000       # Start on port 9000 and save it
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number to run the control service on (will be saved to config)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"MyDeviceAI {__version__}",
    )

    args = parser.parse_args()

    run_server(port=args.port)


if __name__ == "__main__":
    main()
