"""
FastAPI Backend for DP Measurement.
Provides endpoints for card calibration, point editing, automatic pupil
detection and the text report.
"""

import logging
from typing import List

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from dp_engine.config import get_settings
from dp_engine.coordinates import CanvasPoint
from dp_engine.errors import REASON_BUSY, ConfigurationError, InputError
from dp_engine.imaging import decode_base64_image, load_image_bytes
from dp_service import DPService, SessionNotFound, get_dp_service

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="DP Measurement API",
    description="API for measuring interpupillary distance using a 10 x 10 cm reference card",
    version="0.1.0"
)

# Add CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class Base64ImageRequest(BaseModel):
    """Request with base64 encoded image."""
    image: str


class PointRequest(BaseModel):
    """Point in display-canvas pixels."""
    x: float
    y: float


class QuadRequest(BaseModel):
    """Four card corners in display-canvas pixels."""
    corners: List[PointRequest]


def _session(service: DPService, session_id: str):
    try:
        return service.get_session(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "DP Measurement API"}


@app.post("/api/sessions")
async def create_session(request: Base64ImageRequest, service: DPService = Depends(get_dp_service)):
    """Start a session from a base64 encoded photo."""
    try:
        image = decode_base64_image(request.image)
        session_id, _ = service.create_session(image)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return service.session_state(session_id)


@app.post("/api/sessions/file")
async def create_session_file(file: UploadFile = File(...), service: DPService = Depends(get_dp_service)):
    """Start a session from an uploaded file."""
    contents = await file.read()
    try:
        image = load_image_bytes(contents)
        session_id, _ = service.create_session(image)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return service.session_state(session_id)


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str, service: DPService = Depends(get_dp_service)):
    _session(service, session_id)
    return service.session_state(session_id)


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, service: DPService = Depends(get_dp_service)):
    try:
        service.delete_session(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"deleted": session_id}


@app.post("/api/sessions/{session_id}/detect-card")
async def detect_card(session_id: str, service: DPService = Depends(get_dp_service)):
    """Detect the reference card and set the scale."""
    result = _session(service, session_id).detect_card()
    state = service.session_state(session_id)
    state["success"] = result.calibrated
    state["error"] = result.error_message
    return state


@app.post("/api/sessions/{session_id}/calibrate")
async def calibrate(session_id: str, request: QuadRequest, service: DPService = Depends(get_dp_service)):
    """Calibrate from 4 card corners marked by the user."""
    session = _session(service, session_id)
    result = session.calibrate_quad([CanvasPoint(c.x, c.y) for c in request.corners])
    if not result.calibrated:
        raise HTTPException(status_code=422, detail=result.error_message)
    return service.session_state(session_id)


@app.post("/api/sessions/{session_id}/points")
async def add_point(session_id: str, request: PointRequest, service: DPService = Depends(get_dp_service)):
    _session(service, session_id).add_point(CanvasPoint(request.x, request.y))
    return service.session_state(session_id)


@app.put("/api/sessions/{session_id}/points/{index}")
async def move_point(
    session_id: str,
    index: int,
    request: PointRequest,
    service: DPService = Depends(get_dp_service)
):
    """Drag an existing point to a new position."""
    session = _session(service, session_id)
    try:
        session.drag_point(index, CanvasPoint(request.x, request.y))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return service.session_state(session_id)


@app.post("/api/sessions/{session_id}/hit-test")
async def hit_test(session_id: str, request: PointRequest, service: DPService = Depends(get_dp_service)):
    """Index of the point under the pointer, if any."""
    index = _session(service, session_id).hit_test(CanvasPoint(request.x, request.y))
    return {"index": index}


@app.post("/api/sessions/{session_id}/undo")
async def undo(session_id: str, service: DPService = Depends(get_dp_service)):
    _session(service, session_id).undo()
    return service.session_state(session_id)


@app.post("/api/sessions/{session_id}/clear")
async def clear(session_id: str, service: DPService = Depends(get_dp_service)):
    _session(service, session_id).clear()
    return service.session_state(session_id)


@app.post("/api/sessions/{session_id}/detect-pupils")
async def detect_pupils(session_id: str, service: DPService = Depends(get_dp_service)):
    """Detect both iris centers automatically."""
    outcome = await _session(service, session_id).detect_pupils()
    if outcome.reason == REASON_BUSY:
        raise HTTPException(status_code=409, detail=REASON_BUSY)

    state = service.session_state(session_id)
    state["success"] = outcome.success
    state["error"] = outcome.reason
    state["used_cpu_fallback"] = outcome.used_cpu_fallback
    return state


@app.get("/api/sessions/{session_id}/report", response_class=PlainTextResponse)
async def report(session_id: str, service: DPService = Depends(get_dp_service)):
    """Plain-text results report."""
    session = _session(service, session_id)
    try:
        text = session.report()
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return PlainTextResponse(
        text,
        headers={"Content-Disposition": 'attachment; filename="dp_results.txt"'}
    )


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logger.info("Starting DP Measurement API on http://0.0.0.0:8000 (docs at /docs)")

    uvicorn.run(app, host="0.0.0.0", port=8000)
