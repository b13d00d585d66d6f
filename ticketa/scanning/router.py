from fastapi import APIRouter, Depends, HTTPException, status, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
import json
import logging

from ticketa.config import settings
from ticketa.database import get_db, get_session_factory
from ticketa.auth.dependencies import require_role
from ticketa.auth.permissions import Identity, Role
from ticketa.bookings.ticket_service import normalize_ticket_code
from ticketa.scanning.schemas import ScanRequest, TicketScanResult, ScanHistory, ScanRecord
from ticketa.scanning.scan_service import ScanService
from ticketa.scanning.debounce import ScanDebouncer
from ticketa.trips.service import TripService
from ticketa.exceptions import DriverNotFound, NotAuthorized, StoreUnavailable

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/scan", response_model=TicketScanResult)
def scan_ticket(
    request: ScanRequest,
    identity: Identity = Depends(require_role(Role.DRIVER)),
    db: Session = Depends(get_db)
):
    """Validate a ticket code typed by the driver or decoded from a QR code"""

    scan_service = ScanService(db)

    try:
        return scan_service.validate_ticket(request.code, identity, request.scan_location)
    except (DriverNotFound, NotAuthorized) as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except StoreUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

@router.get("/history", response_model=ScanHistory)
def get_scan_history(
    limit: int = Query(10, ge=1, le=100, description="Maximum results"),
    identity: Identity = Depends(require_role(Role.DRIVER)),
    db: Session = Depends(get_db)
):
    """Recent scans made by the current driver"""
    scans, total = ScanService(db).get_scan_history(identity, limit=limit)
    return ScanHistory(
        scans=[ScanRecord.model_validate(scan) for scan in scans],
        total=total
    )

def _identify(session_factory, token: Optional[str]) -> Optional[Identity]:
    with session_factory() as db:
        return TripService.identity_from_token(db, token)

def _scan(session_factory, code: str, identity: Identity, scan_location: Optional[str]) -> TicketScanResult:
    with session_factory() as db:
        return ScanService(db).validate_ticket(code, identity, scan_location)

@router.websocket("/ws")
async def scanner_websocket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    session_factory=Depends(get_session_factory)
):
    """
    Live scanner channel for a driver device.

    The device sends ``{"type": "decoded", "code": ...}`` for every QR code it
    decodes from the camera feed. Repeats of a code inside the debounce window
    are answered with ``suppressed`` and never reach the database.
    """
    identity = await run_in_threadpool(_identify, session_factory, token)
    if identity is None or not identity.has_role(Role.DRIVER):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    debouncer = ScanDebouncer(window_seconds=settings.SCAN_DEBOUNCE_SECONDS)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(message, dict):
                continue

            if message.get("type") == "ping":
                await websocket.send_json({
                    "type": "pong",
                    "timestamp": datetime.now().isoformat()
                })
                continue

            if message.get("type") != "decoded":
                continue

            code = str(message.get("code") or "")
            if not debouncer.should_process(code):
                await websocket.send_json({
                    "type": "suppressed",
                    "code": normalize_ticket_code(code)
                })
                continue

            try:
                result = await run_in_threadpool(
                    _scan, session_factory, code, identity, message.get("scan_location")
                )
            except (DriverNotFound, NotAuthorized, StoreUnavailable) as e:
                await websocket.send_json({
                    "type": "scan_error",
                    "code": normalize_ticket_code(code),
                    "message": str(e)
                })
                continue

            await websocket.send_json({"type": "scan_result", **result.model_dump(mode="json")})

    except WebSocketDisconnect:
        logger.debug("Scanner for user %s disconnected", identity.user_id)
