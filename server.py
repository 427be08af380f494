import asyncio
import json
import logging
import os
from dataclasses import asdict
from datetime import date
from typing import Dict, List, Optional

import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Header
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from config import settings, location, load_env_config, env_flag
from core.geo_filter import GeoSample, GeoSampleFilter
from core.gate import GateError, GateSession, ZoneSelectionRequired
from core.location_trust import LocationTrustEngine
from database import AttendanceLogger, ChangeFeed, EmbeddingDB, EmployeeRoster, RulesDB

logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
logger = logging.getLogger("server")

CONF = load_env_config()


# ============================================================================
# DATA MODELS
# ============================================================================
class LoginRequest(BaseModel):
    employee_id: str

class ClockInRequest(BaseModel):
    zone_id: Optional[str] = None

class PositionMessage(BaseModel):
    latitude: float
    longitude: float
    accuracy: float
    timestamp: int  # epoch milliseconds
    mock: bool = False

    def to_sample(self):
        return GeoSample(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy_meters=self.accuracy,
            captured_at_ms=self.timestamp,
            is_mock_flagged=self.mock,
        )


# ============================================================================
# WEBSOCKET MANAGER
# ============================================================================
class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, employee_id: str):
        await websocket.accept()
        self.active_connections.setdefault(employee_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket, employee_id: str):
        connections = self.active_connections.get(employee_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(employee_id, None)

    async def send_status(self, employee_id: str, status: dict):
        for connection in list(self.active_connections.get(employee_id, [])):
            try:
                await connection.send_json({"type": "status", **status})
            except Exception as e:
                logger.info("Dropping websocket for %s: %s", employee_id, e)
                self.disconnect(connection, employee_id)

manager = ConnectionManager()

# Strong references until each push completes
background_tasks = set()


def push_status(session):
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    task = loop.create_task(manager.send_status(session.employee_id, session.status()))
    background_tasks.add(task)
    task.add_done_callback(background_tasks.discard)


# ============================================================================
# SYSTEM STATE
# ============================================================================
class SystemState:
    def __init__(self,
                 data_dir=settings.DATA_DIR,
                 detector_factory=None,
                 reject_mock=None,
                 scanner_options=None):
        self.feed = ChangeFeed()
        self.faces = EmbeddingDB(os.path.join(data_dir, os.path.basename(settings.FACE_DB_PATH)),
                                 feed=self.feed)
        self.attendance = AttendanceLogger(
            os.path.join(data_dir, os.path.basename(settings.ATTENDANCE_LOG_FILE)), feed=self.feed)
        self.rules = RulesDB(os.path.join(data_dir, os.path.basename(settings.GEOFENCE_RULES_PATH)))
        self.roster = EmployeeRoster(os.path.join(data_dir, os.path.basename(settings.EMPLOYEES_PATH)))
        self.detector_factory = detector_factory
        if reject_mock is None:
            reject_mock = env_flag(CONF.get("REJECT_MOCK_LOCATIONS", location.REJECT_MOCK_LOCATIONS))
        self.reject_mock = reject_mock
        self.scanner_options = scanner_options or {}
        self.sessions: Dict[str, GateSession] = {}

    def load_models(self):
        if self.detector_factory is not None:
            return
        # Imported here so the API can start without the vision stack loaded
        from core.detector import FaceDetector
        self.detector_factory = FaceDetector

    def new_detector(self):
        """Fresh detector for one session; MediaPipe graphs keep per-stream tracking state"""
        if self.detector_factory is None:
            return None
        return self.detector_factory()

    def login(self, employee_id):
        canonical_id, record = self.roster.get(employee_id)
        if record is None:
            raise HTTPException(404, "Employee not found")
        if not record.get("active", False):
            raise HTTPException(403, "Employee is not active")

        if canonical_id in self.sessions:
            return self.sessions[canonical_id]

        engine = LocationTrustEngine(sample_filter=GeoSampleFilter(reject_mock=self.reject_mock))
        session = GateSession(
            canonical_id,
            faces=self.faces,
            attendance=self.attendance,
            rules_db=self.rules,
            detector=self.new_detector(),
            feed=self.feed,
            location_engine=engine,
            scanner_options=self.scanner_options,
            on_update=push_status,
        )
        session.open()
        self.sessions[canonical_id] = session
        return session

    def logout(self, employee_id):
        session = self.sessions.pop(employee_id, None)
        if session is None:
            return False
        session.close()
        return True

    def get_session(self, employee_id):
        session = self.sessions.get(employee_id)
        if session is None:
            raise HTTPException(404, "No active session")
        return session

    def shutdown(self):
        for employee_id in list(self.sessions):
            self.logout(employee_id)

state = SystemState()

@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        state.load_models()
    except Exception as e:
        # Scanner sessions will report 'camera unavailable'
        logger.error("Detector unavailable: %s", e)
    yield
    state.shutdown()

app = FastAPI(lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


# ============================================================================
# API ENDPOINTS
# ============================================================================
@app.post("/api/login")
async def login(req: LoginRequest):
    session = state.login(req.employee_id)
    return {"status": "success", "session": session.status()}

@app.post("/api/logout/{employee_id}")
async def logout(employee_id: str):
    if not state.logout(employee_id):
        raise HTTPException(404, "No active session")
    return {"status": "success"}

@app.get("/api/status/{employee_id}")
async def get_status(employee_id: str):
    return state.get_session(employee_id).status()

@app.post("/api/clock-in/{employee_id}")
async def clock_in(employee_id: str, req: Optional[ClockInRequest] = None):
    session = state.get_session(employee_id)
    zone_id = req.zone_id if req else None
    try:
        await session.request_clock_in(zone_id)
    except ZoneSelectionRequired as e:
        raise HTTPException(409, {
            "reason": e.reason,
            "zones": [{"id": z.id, "zone_name": z.zone_name} for z in e.zones],
        })
    except GateError as e:
        raise HTTPException(409, str(e))
    return {"status": "armed", "session": session.status()}

@app.post("/api/register/{employee_id}")
async def register(employee_id: str):
    session = state.get_session(employee_id)
    try:
        await session.start_registration()
    except GateError as e:
        raise HTTPException(409, str(e))
    return {"status": "armed", "session": session.status()}

@app.post("/api/scan/{employee_id}/cancel")
async def cancel_scan(employee_id: str):
    session = state.get_session(employee_id)
    session.cancel_scan()
    return {"status": "success"}

@app.delete("/api/face/{employee_id}")
async def delete_face(employee_id: str):
    if not state.faces.delete(employee_id):
        raise HTTPException(404, "No enrolled face")
    return {"status": "success"}

@app.get("/api/attendance/{employee_id}")
async def get_attendance(employee_id: str, start: Optional[date] = None, end: Optional[date] = None, limit: Optional[int] = None):
    if start is None and end is None:
        records = state.attendance.recent(employee_id, limit or 5)
    else:
        records = state.attendance.history(employee_id, start, end)
        if limit:
            records = records[:limit]
    return [asdict(r) for r in records]

@app.delete("/api/attendance/record/{record_id}")
async def delete_attendance(record_id: str, x_admin_password: Optional[str] = Header(None)):
    if x_admin_password != CONF["ADMIN_PASSWORD"]:
        raise HTTPException(401, "Invalid password")
    if not state.attendance.delete(record_id):
        raise HTTPException(404, "Record not found")
    return {"status": "success"}


@app.websocket("/ws/{employee_id}")
async def websocket_endpoint(websocket: WebSocket, employee_id: str):
    session = state.sessions.get(employee_id)
    if session is None:
        await websocket.close(code=4404)
        return

    await manager.connect(websocket, employee_id)
    await websocket.send_json({"type": "status", **session.status()})
    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                session.push_frame(message["bytes"])
                continue
            if message.get("text") is None:
                continue

            try:
                payload = json.loads(message["text"])
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "invalid json"})
                continue
            if not isinstance(payload, dict):
                await websocket.send_json({"type": "error", "detail": "expected a json object"})
                continue

            kind = payload.get("type")
            if kind == "position":
                try:
                    fix = PositionMessage(**payload)
                except ValidationError as e:
                    await websocket.send_json({"type": "error", "detail": str(e)})
                    continue
                session.on_position(fix.to_sample())
            elif kind == "position_error":
                session.on_position_error(payload.get("reason", "location unavailable"))
            await websocket.send_json({"type": "status", **session.status()})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket, employee_id)


if __name__ == "__main__":
    uvicorn.run(app, host=CONF.get("HOST", settings.HOST), port=int(CONF.get("PORT", settings.PORT)))
