from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from labsync.config import get_settings
from labsync.container import build_container
from labsync.logging_config import get_logger, setup_logging
from labsync.api.webhook import router as webhook_router
from labsync.api.records import router as records_router
from labsync.api.agents import router as agents_router

logger = get_logger("main")

app = FastAPI(
    title="LabSync API",
    description="Telegram meeting notes to project budgets and allocations",
    version="0.1.0"
)


# Lifecycle events
@app.on_event("startup")
async def startup_event():
    """Build the container and start background processing."""
    settings = get_settings()
    setup_logging(settings.log_level)

    if getattr(app.state, "container", None) is None:
        logger.info("Building service container...")
        app.state.container = await build_container(settings)

    app.state.container.start()
    logger.info("Pipeline ready")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the processor and the stage queue."""
    container = getattr(app.state, "container", None)
    if container is not None:
        logger.info("Stopping pipeline...")
        await container.stop()
        logger.info("Pipeline stopped")


# CORS for the dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "ok",
        "environment": settings.environment,
        "version": "0.1.0"
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "LabSync API",
        "docs": "/docs"
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Dashboard event stream. Incoming frames are ignored."""
    connections = app.state.container.connections
    await connections.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        connections.disconnect(websocket)


# Include routers
app.include_router(webhook_router)
app.include_router(records_router)
app.include_router(agents_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
