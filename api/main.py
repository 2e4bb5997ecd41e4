import asyncio
import logging
import os

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional

from harvester.engine import harvest, validate_request
from harvester.errors import InvalidRequestError
from harvester.sites import configured_sources

from .auth import get_api_key
from .rate_limit import RATE_LIMIT, limiter, register_rate_limit

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "3000"))
MAX_CONCURRENT_SESSIONS = int(os.getenv("MAX_CONCURRENT_SESSIONS", "2"))
SESSION_TIMEOUT = float(os.getenv("SESSION_TIMEOUT", "600"))

app = FastAPI(title="Hotel Review Harvester API", version="1.0")

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)

# one browser per running session; caps memory/CPU use
session_slots = asyncio.Semaphore(MAX_CONCURRENT_SESSIONS)


def error_response(status_code, message):
    return JSONResponse(status_code=status_code, content={"error": message})


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/sources", dependencies=[Depends(get_api_key)])
async def list_sources():
    """List the OTA keys that have a site adapter configured."""
    return {"sources": configured_sources()}


@app.get("/api/{source}", dependencies=[Depends(get_api_key)])
@limiter.limit(RATE_LIMIT)
async def run_harvest(
    request: Request,
    source: str,
    url: Optional[str] = Query(None),
    hotel_id: Optional[str] = Query(None),
):
    """
    Harvest reviews for one hotel and relay the session outcome.

    The request is validated before a browser is launched. Sessions beyond
    MAX_CONCURRENT_SESSIONS wait for a free slot. A session running longer
    than SESSION_TIMEOUT is cancelled: its browser is released and nothing is
    delivered.

    Args:
        request (Request): FastAPI request object (required for rate limiting)
        source (str): OTA key (traveloka, ticketcom, agoda, tripcom)
        url (str): hotel page URL on the OTA
        hotel_id (str): backend hotel identifier

    Returns:
        JSONResponse:
            - 200 with message, termination_reason, review_count, hotel_name,
              pages and delivery on graceful termination
            - 400 on request validation failure
            - 500 with the raw failure message when the harvest crashed
            - 504 when the session timed out and was cancelled
    """
    try:
        validate_request(source, url, hotel_id)
    except InvalidRequestError as e:
        return error_response(400, str(e))

    logger.info(f"Harvest requested: source={source} hotel_id={hotel_id} url={url}")
    async with session_slots:
        try:
            outcome = await asyncio.wait_for(
                harvest(source, url, hotel_id), timeout=SESSION_TIMEOUT
            )
        except asyncio.TimeoutError:
            logger.error(f"Harvest for hotel {hotel_id} cancelled after {SESSION_TIMEOUT}s")
            return error_response(504, f"Harvest timed out after {SESSION_TIMEOUT:g}s")
        except Exception as e:
            logger.exception(f"Scraper error for hotel {hotel_id}: {e}")
            return error_response(500, f"Harvest failed: {e}")

    message = (
        f"Harvest finished: {outcome.review_count} reviews "
        f"({outcome.termination_reason.value})"
    )
    logger.info(f"{message} for hotel {hotel_id}")
    return {"message": message, **outcome.model_dump(mode="json")}


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
