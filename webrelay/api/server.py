"""FastAPI server exposing the webrelay coordinator."""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from webrelay.browser.service import BrowserHost
from webrelay.channel.service import LocalChannel
from webrelay.config import AppConfig, load_config
from webrelay.dispatcher.client import TaskServerClient
from webrelay.dispatcher.service import Dispatcher
from webrelay.dispatcher.views import CycleReport
from webrelay.errors import ReceiverMissingError, WebRelayError
from webrelay.shared_views import ConnectionRecord, Message, NodeProfile, Reply
from webrelay.storage.service import IdentityStore

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

tags_dict: Dict[str, Optional[List[Union[str, Enum]]]] = {
    "dispatch": ["Dispatch"],
    "queue": ["Queue"],
    "targets": ["Targets"],
    "profile": ["Profile"],
}
# Global service instances
config: AppConfig | None = None
channel: LocalChannel | None = None
dispatcher: Dispatcher | None = None
browser_host: BrowserHost | None = None
periodic_task: asyncio.Task | None = None
stop_event: asyncio.Event | None = None


# ==================== REQUEST/RESPONSE MODELS ====================


class EnqueueRequest(BaseModel):
    """Request to queue instruction payloads for a target."""

    instructions: list[Any] = Field(description="Raw instruction payloads, stored as received")


class SweepRequest(BaseModel):
    """Request to drop queued instructions older than a maximum age."""

    max_age_ms: int | None = Field(default=None, ge=0, description="Maximum age, defaults to the configured expiry")


class ExecuteRequest(BaseModel):
    """Request to run instructions directly in a target's execution context."""

    instructions: Any = Field(description="Instruction list, single instruction or JSON string")


class UpdateProfileRequest(BaseModel):
    """Request to update the mutable node identity fields."""

    node_name: str | None = Field(default=None, description="New node name")
    node_token: str | None = Field(default=None, description="New node credential")


# ==================== LIFECYCLE ====================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the API."""
    global config, channel, dispatcher, browser_host, periodic_task, stop_event

    logger.info("🚀 Initializing webrelay services...")

    config = load_config()
    store = IdentityStore(config.storage_dir, default_token=config.dispatcher.default_token)
    client = TaskServerClient(config.dispatcher)
    channel = LocalChannel()
    dispatcher = Dispatcher(channel, client, store, config=config.dispatcher)

    if config.browser.enabled:
        browser_host = BrowserHost(channel, config.browser, config.runner)
        browser_host.bind(dispatcher)
        try:
            await browser_host.start()
            logger.info("✅ Browser host started")
        except Exception as e:
            logger.warning(f"⚠️  Failed to start browser host: {e}")
            browser_host = None
            dispatcher.host = None

    stop_event = asyncio.Event()
    periodic_task = asyncio.create_task(dispatcher.run_periodic(stop_event=stop_event))

    logger.info("✅ webrelay API ready")

    yield

    logger.info("🛑 Shutting down webrelay API...")

    stop_event.set()
    await periodic_task
    await dispatcher.shutdown()
    if browser_host:
        await browser_host.stop()
    await client.aclose()


# Create FastAPI app
app = FastAPI(
    title="webrelay Coordinator API",
    description="Dispatches remote browser instructions to per-tab execution contexts",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_dispatcher() -> Dispatcher:
    if not dispatcher:
        raise HTTPException(status_code=503, detail="Dispatcher not available")
    return dispatcher


# ==================== HEALTH CHECK ====================


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "webrelay Coordinator API",
        "version": "1.0.0",
        "status": "running",
        "features": {
            "dispatcher": dispatcher is not None,
            "browser": browser_host is not None,
            "periodic": periodic_task is not None and not periodic_task.done(),
        },
    }


# ==================== DISPATCH ENDPOINTS ====================


@app.post(
    "/api/v1/cycle",
    response_model=CycleReport,
    tags=tags_dict["dispatch"],
)
async def run_cycle():
    """Run one dispatch cycle immediately."""
    return await require_dispatcher().run_cycle()


@app.get(
    "/api/v1/connections",
    response_model=list[ConnectionRecord],
    tags=tags_dict["dispatch"],
)
async def list_connections():
    """List connected execution contexts."""
    return require_dispatcher().registry.list_connected()


# ==================== QUEUE ENDPOINTS ====================


@app.get(
    "/api/v1/queue",
    response_model=dict[str, int],
    tags=tags_dict["queue"],
)
async def queue_stats():
    """Pending instruction count per target."""
    return require_dispatcher().queue.stats_all()


@app.post(
    "/api/v1/queue/sweep",
    response_model=dict[str, Any],
    tags=tags_dict["queue"],
)
async def sweep_queue(request: SweepRequest):
    """Drop queued instructions older than the maximum age."""
    current = require_dispatcher()
    max_age = request.max_age_ms if request.max_age_ms is not None else current.config.expire_after_ms
    removed = current.queue.sweep_expired(max_age)
    return {"removed": removed, "max_age_ms": max_age}


@app.post(
    "/api/v1/queue/{target}",
    response_model=dict[str, Any],
    tags=tags_dict["queue"],
)
async def enqueue_instructions(target: str, request: EnqueueRequest):
    """Queue instruction payloads for a target."""
    current = require_dispatcher()
    added = current.queue.enqueue(target, request.instructions)
    return {"target": target, "added": added, "pending": current.queue.count(target)}


@app.delete(
    "/api/v1/queue/{target}",
    response_model=dict[str, Any],
    tags=tags_dict["queue"],
)
async def clear_queue(target: str):
    """Drop every queued instruction of a target."""
    cleared = require_dispatcher().queue.clear(target)
    return {"target": target, "cleared": cleared}


# ==================== TARGET ENDPOINTS ====================


@app.post(
    "/api/v1/targets/{target}/execute",
    response_model=Reply,
    tags=tags_dict["targets"],
)
async def execute_on_target(target: str, request: ExecuteRequest):
    """Run instructions directly in the execution context of a target."""
    return await send_to_target(target, Message(action="executeInstructions", data=request.instructions))


@app.post(
    "/api/v1/targets/{target}/messages",
    response_model=Reply,
    tags=tags_dict["targets"],
)
async def send_to_target(target: str, message: Message):
    """Send a raw action message to the execution context of a target."""
    if not channel:
        raise HTTPException(status_code=503, detail="Channel not available")

    try:
        return await channel.send(target, message)
    except ReceiverMissingError:
        raise HTTPException(status_code=404, detail=f"Target not connected: {target}")
    except WebRelayError as e:
        logger.error(f"Message {message.action} to {target} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))


# ==================== PROFILE ENDPOINTS ====================


@app.get(
    "/api/v1/profile",
    response_model=NodeProfile,
    tags=tags_dict["profile"],
)
async def get_profile():
    """Get the node identity."""
    return require_dispatcher().store.get_or_create_identity()


@app.put(
    "/api/v1/profile",
    response_model=NodeProfile,
    tags=tags_dict["profile"],
)
async def update_profile(request: UpdateProfileRequest):
    """Update the node name and/or credential."""
    current = require_dispatcher()
    try:
        profile = current.store.update_identity(request.model_dump(exclude_none=True))
    except (ValueError, IOError) as e:
        raise HTTPException(status_code=500, detail=str(e))
    current.client.clear_token()
    return profile


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
