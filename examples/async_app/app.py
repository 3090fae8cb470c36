"""FastAPI app that sends messages through a broker with trace context.

Run with ``uvicorn app:app`` from this directory; spans are printed to the
console.
"""

import logging
from contextlib import asynccontextmanager

import anyio
from fastapi import FastAPI
from handlers import pubsub, router, send_message, tracer
from pydantic import BaseModel

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the receiver and span export, stop them in order."""
    logger.info("Starting receiver...")

    async with pubsub, anyio.create_task_group() as tg:
        tg.start_soon(router.run)
        tg.start_soon(tracer.processor.run)

        yield

        logger.info("Shutting down receiver...")
        await router.close()
        await tracer.shutdown()


app = FastAPI(title="Ferry Async App", lifespan=lifespan)


class SendResponse(BaseModel):
    status: str
    trace_id: str


@app.post("/send", status_code=202)
async def send(message: str) -> SendResponse:
    """Send a message to the queue."""
    trace_id = await send_message(message)
    return SendResponse(status="accepted", trace_id=trace_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
