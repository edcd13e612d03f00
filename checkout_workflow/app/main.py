import logging
from typing import List

from fastapi import FastAPI, HTTPException, Depends, status
from fastapi.responses import Response

from .dependencies import get_checkout_service
from ..config import settings
from ..domain.exceptions import MachineDefinitionError
from ..services.checkout import CheckoutService
from ..services.exceptions import SessionNotFoundError, UnknownMachineError
from ..state.models import MachineSnapshot
from .schemas import CreateSessionRequest, EventRequest, SessionRead

logging.basicConfig(level=settings.LOG_LEVEL)

app = FastAPI(title="Checkout Workflow")

# Interpreters live on the server's event loop, so every endpoint touching
# them is declared `async def`.

def _to_read(session_id: str, snapshot: MachineSnapshot, service: CheckoutService) -> SessionRead:
    child_state = None
    discarded = []
    try:
        session = service.get_session(session_id)
        child = session.interpreter.child
        child_state = child.value if child is not None else None
        discarded = list(session.discarded)
    except SessionNotFoundError:
        pass

    return SessionRead(
        session_id=session_id,
        machine_id=snapshot.machine_id,
        state=snapshot.value,
        status=snapshot.status.value,
        context=snapshot.context,
        updated_at=snapshot.timestamp,
        child_state=child_state,
        discarded_events=discarded,
    )

# --- Endpoints ---

@app.post(
    "/sessions",
    response_model=SessionRead,
    status_code=status.HTTP_201_CREATED
)
async def create_session(
    request: CreateSessionRequest,
    service: CheckoutService = Depends(get_checkout_service)
):
    """Starts a new workflow session."""
    try:
        session = service.create_session(request.machine_id, context=request.context)
    except UnknownMachineError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _to_read(session.session_id, session.interpreter.get_snapshot(), service)


@app.get("/sessions/{session_id}", response_model=SessionRead)
async def get_session(
    session_id: str,
    service: CheckoutService = Depends(get_checkout_service)
):
    """
    Retrieves the current state of a session.
    Sessions not running in this process are served from their stored snapshot.
    """
    try:
        snapshot = service.get_snapshot(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    return _to_read(session_id, snapshot, service)


@app.post("/sessions/{session_id}/events", response_model=SessionRead)
async def send_event(
    session_id: str,
    event: EventRequest,
    service: CheckoutService = Depends(get_checkout_service)
):
    try:
        snapshot = service.send_event(session_id, event.type, event.data)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _to_read(session_id, snapshot, service)


@app.post("/sessions/{session_id}/resume", response_model=SessionRead)
async def resume_session(
    session_id: str,
    service: CheckoutService = Depends(get_checkout_service)
):
    """Restarts a session from its stored snapshot."""
    try:
        session = service.resume_session(session_id)
    except (SessionNotFoundError, UnknownMachineError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MachineDefinitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _to_read(session_id, session.interpreter.get_snapshot(), service)


@app.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    service: CheckoutService = Depends(get_checkout_service)
):
    """
    Stops a session and clears its stored snapshot. Returns 204 No Content on success.
    """
    success = service.delete_session(session_id)
    if not success:
        raise HTTPException(status_code=404, detail="Session not found")

    # For 204, we must explicitly return a Response object with no content
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/machines", response_model=List[str])
async def list_machines(service: CheckoutService = Depends(get_checkout_service)):
    """Lists the machine ids a session can be started with."""
    return service.list_machines()
