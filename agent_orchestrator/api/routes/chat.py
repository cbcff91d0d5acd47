"""
Streaming chat endpoint.

POST /v1/chat/stream runs one agent run on a worker thread and relays its
events to the client as Server-Sent Events. The run writes into a queue; the
response generator drains it. When the client goes away the generator is
closed and the run is told to stop.
"""

import asyncio
import logging
import queue
import threading
import time
from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from ..schemas import ChatStreamRequest, ErrorResponse
from ...errors import PersistenceError
from ...orchestration.events import EventMultiplexer, QueueSink
from ...orchestrator import ChatOrchestrator, ChatRequest, failure_tag, new_run_id
from ...repositories import ConversationAccessDenied, ConversationNotFound

logger = logging.getLogger(__name__)

router = APIRouter()

# How long one queue read blocks before checking in again
POLL_INTERVAL_SECONDS = 0.5
KEEPALIVE_SECONDS = 15.0


def _run_in_worker(
    orchestrator: ChatOrchestrator,
    chat_request: ChatRequest,
    events: EventMultiplexer,
    run_id: str,
) -> None:
    try:
        orchestrator.run(chat_request, events, run_id=run_id)
    except Exception as e:
        logger.exception(f"[{run_id}] Run crashed: {e}")
        events.failure(failure_tag(e), f"Internal error: {e}")


async def _event_stream(
    events: EventMultiplexer,
    sink: QueueSink,
    run_id: str,
) -> AsyncIterator[str]:
    finished = False
    last_sent = time.monotonic()
    try:
        while True:
            try:
                event = await asyncio.to_thread(sink.get, POLL_INTERVAL_SECONDS)
            except queue.Empty:
                if time.monotonic() - last_sent >= KEEPALIVE_SECONDS:
                    last_sent = time.monotonic()
                    yield ": keep-alive\n\n"
                continue
            last_sent = time.monotonic()
            yield event.to_sse()
            if event.is_terminal:
                finished = True
                return
    finally:
        if not finished:
            logger.info(f"[{run_id}] Stream closed before the run finished")
            events.disconnect()


@router.post(
    "/v1/chat/stream",
    summary="Stream an agent run",
    description=(
        "Send a user message and receive the run's progress notes, insights, "
        "message deltas, artifact chunks and final answer as Server-Sent Events."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        403: {"model": ErrorResponse, "description": "Conversation belongs to another user"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
    },
)
async def chat_stream(body: ChatStreamRequest, request: Request) -> StreamingResponse:
    deps = request.app.state.deps

    if body.conversation_id:
        try:
            await asyncio.to_thread(deps.repository.get, body.conversation_id, body.user_id)
        except ConversationNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ConversationAccessDenied as e:
            raise HTTPException(status_code=403, detail=str(e))
        except PersistenceError as e:
            logger.error(f"Conversation lookup failed: {e}")
            raise HTTPException(status_code=503, detail="Record store unavailable")

    run_id = new_run_id()
    sink = QueueSink()
    events = EventMultiplexer(sink, label=run_id)
    chat_request = ChatRequest(
        message=body.message,
        user_id=body.user_id,
        business_profile_id=body.business_profile_id,
        conversation_id=body.conversation_id,
    )

    worker = threading.Thread(
        target=_run_in_worker,
        args=(ChatOrchestrator(deps), chat_request, events, run_id),
        name=run_id,
        daemon=True,
    )
    worker.start()
    logger.info(f"[{run_id}] Streaming run started")

    return StreamingResponse(
        _event_stream(events, sink, run_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
