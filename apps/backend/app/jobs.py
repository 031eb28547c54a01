"""
Proxy endpoints for the scrape engine's job API.

Status responses are never cached; upstream failures come back as
{error, ...} bodies with the upstream status so pollers can tell a
missing job (404) from a transient failure.
"""
import json
import logging
from typing import Optional
import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.config import get_arachne_api_url
from core.net import HTTPClient, read_json

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["jobs"])

NO_STORE = {"Cache-Control": "no-store"}


def get_arachne_client() -> HTTPClient:
    return HTTPClient(get_arachne_api_url())


async def _proxy_status(client: HTTPClient, job_id: str) -> JSONResponse:
    """Fetch one job's status from the scrape engine and mirror the outcome."""
    url = f"{client.base_url}/scrape/status?id={job_id}"
    try:
        response = await client.get("/scrape/status", params={"id": job_id})
    except httpx.HTTPError as e:
        logger.error(f"[jobs] Job status request for {job_id} failed: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to fetch job status",
                "details": str(e) or type(e).__name__,
                "backendUrl": client.base_url,
            },
            headers=NO_STORE,
        )

    if not response.is_success:
        message = read_json(response).get("error") or response.text.strip() or "Job not found"
        logger.warning(f"[jobs] Scrape engine returned {response.status_code} for job {job_id}: {message}")
        return JSONResponse(
            status_code=response.status_code,
            content={
                "error": message,
                "debug": {"url": url, "status": response.status_code, "jobId": job_id},
            },
            headers=NO_STORE,
        )

    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        logger.error(f"[jobs] Scrape engine sent invalid JSON for job {job_id}")
        return JSONResponse(
            status_code=502,
            content={"error": "Invalid response from scrape engine"},
            headers=NO_STORE,
        )

    return JSONResponse(content=data, headers=NO_STORE)


@router.get("/scrape/status")
async def scrape_status(
    id: Optional[str] = Query(None),
    client: HTTPClient = Depends(get_arachne_client),
):
    """GET /api/scrape/status?id=JOB_ID"""
    if not id:
        return JSONResponse(status_code=400, content={"error": "Job ID is required"})
    return await _proxy_status(client, id)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, client: HTTPClient = Depends(get_arachne_client)):
    return await _proxy_status(client, job_id)


@router.get("/jobs")
async def list_jobs(client: HTTPClient = Depends(get_arachne_client)):
    try:
        response = await client.get("/api/jobs")
        return JSONResponse(status_code=response.status_code, content=response.json())
    except (httpx.HTTPError, json.JSONDecodeError, ValueError) as e:
        logger.error(f"[jobs] Jobs API error: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch jobs"})


@router.post("/scrape")
async def submit_scrape(request: Request, client: HTTPClient = Depends(get_arachne_client)):
    """Forward a scrape submission unchanged and mirror the engine's answer."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError):
        return JSONResponse(status_code=400, content={"error": "Request body must be JSON"})

    try:
        response = await client.post_json("/scrape", body)
        return JSONResponse(status_code=response.status_code, content=response.json())
    except (httpx.HTTPError, json.JSONDecodeError, ValueError) as e:
        logger.error(f"[jobs] Scrape API error: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to submit scrape job"})
