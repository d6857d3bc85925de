"""
Chat Entity Kernel API — FastAPI endpoints.

Exposes the orchestrator via a REST API for:
- Chat message processing (single and batch)
- Metrics and health
- Runtime configuration
- Conversation inspection
- Maintenance
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from chat_kernel.context.store import ContextNotFoundError
from chat_kernel.models.api import BatchItem, ChatEntityRequest
from chat_kernel.orchestrator.master import ChatEntityOrchestrator, ConfigError
from chat_kernel.settings import Settings

logger = logging.getLogger(__name__)


# --- Request/Response Models ---

class BatchRequest(BaseModel):
    items: List[BatchItem]


class ConfigUpdateRequest(BaseModel):
    updates: dict


# --- Application Factory ---

def create_app(
    orchestrator: Optional[ChatEntityOrchestrator] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings()
    kernel = orchestrator or ChatEntityOrchestrator(config=settings.to_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Logging is configured on startup, never at import
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        stop_event = asyncio.Event()
        sweeper = asyncio.create_task(kernel.contexts.run_async(stop_event))
        logger.info("Context sweeper started")
        try:
            yield
        finally:
            stop_event.set()
            await sweeper
            kernel.shutdown()
            logger.info("Chat entity kernel stopped")

    app = FastAPI(
        title="Chat Entity Kernel API",
        description="Natural-language command interpretation and dispatch",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store components on app state for access in endpoints
    app.state.orchestrator = kernel
    app.state.settings = settings

    # === CHAT ===

    @app.post("/chat/messages")
    def process_message(req: ChatEntityRequest):
        """Interpret and execute one chat message."""
        return kernel.process_message(req).model_dump(mode="json")

    @app.post("/chat/batch")
    def process_batch(req: BatchRequest):
        """Process several independent messages concurrently."""
        return kernel.process_batch(req.items).model_dump(mode="json")

    # === METRICS & HEALTH ===

    @app.get("/metrics")
    def get_metrics():
        return kernel.get_metrics().model_dump(mode="json")

    @app.post("/metrics/reset")
    def reset_metrics():
        kernel.reset_metrics()
        return {"status": "reset"}

    @app.get("/health")
    def get_health():
        return kernel.get_health_status().model_dump(mode="json")

    @app.get("/errors/analytics")
    def get_error_analytics():
        """Error totals by type, by code and by user."""
        return kernel.get_error_analytics().model_dump(mode="json")

    # === CONFIGURATION ===

    @app.get("/config")
    def get_config():
        return kernel.config.model_dump(mode="json")

    @app.put("/config")
    def update_config(req: ConfigUpdateRequest):
        """Apply a partial configuration update."""
        try:
            config = kernel.update_config(req.updates)
        except ConfigError as e:
            raise HTTPException(400, str(e))
        return config.model_dump(mode="json")

    # === CONVERSATIONS ===

    @app.get("/contexts/{user_id}")
    def get_context(user_id: str, session_id: Optional[str] = None):
        try:
            return kernel.get_context_summary(user_id, session_id)
        except ContextNotFoundError:
            raise HTTPException(404, "Context not found")

    @app.get("/contexts/{user_id}/suggestions")
    def get_suggestions(user_id: str, session_id: Optional[str] = None):
        try:
            suggestions = kernel.get_contextual_suggestions(user_id, session_id)
        except ContextNotFoundError:
            raise HTTPException(404, "Context not found")
        return [s.model_dump(mode="json") for s in suggestions]

    @app.get("/contexts/{user_id}/prediction")
    def predict_intent(user_id: str, session_id: Optional[str] = None):
        """Likely next operation for this conversation."""
        try:
            return kernel.predict_intent(user_id, session_id).model_dump(mode="json")
        except ContextNotFoundError:
            raise HTTPException(404, "Context not found")

    # === MAINTENANCE ===

    @app.post("/maintenance/cleanup")
    def cleanup():
        """Drop cached adapter handles and evict idle contexts."""
        return kernel.cleanup()

    @app.get("/degraded")
    def list_degraded():
        """Writes accepted locally under the degrade strategy."""
        return [
            d.model_dump(mode="json") for d in kernel.dispatcher.degraded_operations()
        ]

    return app


# Default application instance
app = create_app()
