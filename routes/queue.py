"""
Queue management endpoints.

Thin transport over the QueueDriver:
- POST   /queue              add an item (base64 photos), auto-starts when idle
- GET    /queue              snapshot of every job plus status message
- GET    /queue/quota        monthly analysis quota
- GET    /queue/{job_id}     one job with its result
- POST   /queue/start|stop|resume
- POST   /queue/{job_id}/retry
- DELETE /queue/{job_id}     remove one job (even the one in flight)
- DELETE /queue              clear everything (stops first)
"""

import base64
import binascii
import logging
from typing import List

from fastapi import APIRouter, Request

from services.app_state import get_app_state_from_request
from services.exceptions import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["queue"])


def decode_photos(payload) -> List[bytes]:
    """Decode the `photos` list of base64 strings (data: URLs allowed)"""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    photos = payload.get("photos")
    if not isinstance(photos, list):
        raise ValidationError("'photos' must be a list of base64 strings", field="photos")

    decoded = []
    for idx, photo in enumerate(photos):
        if not isinstance(photo, str) or not photo.strip():
            raise ValidationError(f"Photo {idx} is not a base64 string", field="photos")
        if photo.startswith("data:") and "," in photo:
            photo = photo.split(",", 1)[1]
        try:
            data = base64.b64decode(photo, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError(f"Photo {idx} is not valid base64", field="photos")
        if not data:
            raise ValidationError(f"Photo {idx} is empty", field="photos")
        decoded.append(data)
    return decoded


@router.post("/queue", status_code=201)
async def add_to_queue(request: Request):
    """Add one item to the queue"""
    app_state = get_app_state_from_request(request)
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Request body is not valid JSON")

    photos = decode_photos(payload)
    job_id = app_state.driver.enqueue(photos)
    job = app_state.driver.queue.get(job_id)
    return {
        "job": job.to_dict(include_result=False),
        "is_running": app_state.driver.is_running,
        "status_message": app_state.driver.status_message,
    }


@router.get("/queue")
async def get_queue(request: Request, include_results: bool = True):
    """Full queue snapshot"""
    app_state = get_app_state_from_request(request)
    return app_state.driver.snapshot(include_results=include_results)


@router.get("/queue/quota")
async def get_quota(request: Request):
    """Monthly analysis quota"""
    app_state = get_app_state_from_request(request)
    return app_state.quota.get_status()


@router.get("/queue/{job_id}")
async def get_job(request: Request, job_id: str):
    app_state = get_app_state_from_request(request)
    return app_state.driver.queue.get(job_id).to_dict()


@router.post("/queue/start")
async def start_queue(request: Request):
    app_state = get_app_state_from_request(request)
    started = app_state.driver.start()
    return {"started": started, "status_message": app_state.driver.status_message}


@router.post("/queue/stop")
async def stop_queue(request: Request):
    app_state = get_app_state_from_request(request)
    app_state.driver.stop()
    return {"stopped": True, "status_message": app_state.driver.status_message}


@router.post("/queue/resume")
async def resume_queue(request: Request):
    """Clear a rate-limit pause and start again"""
    app_state = get_app_state_from_request(request)
    started = app_state.driver.resume()
    return {"started": started, "status_message": app_state.driver.status_message}


@router.post("/queue/{job_id}/retry")
async def retry_job(request: Request, job_id: str):
    app_state = get_app_state_from_request(request)
    app_state.driver.retry(job_id)
    return app_state.driver.queue.get(job_id).to_dict(include_result=False)


@router.delete("/queue/{job_id}")
async def remove_job(request: Request, job_id: str):
    app_state = get_app_state_from_request(request)
    app_state.driver.remove(job_id)
    return {"removed": job_id}


@router.delete("/queue")
async def clear_queue(request: Request):
    app_state = get_app_state_from_request(request)
    cleared = app_state.driver.clear()
    return {"cleared": cleared, "status_message": app_state.driver.status_message}
