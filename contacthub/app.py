"""FastAPI application: HTTP + WebSocket endpoints for the contact hub.

Endpoints:

  GET  /health                                  Health check + link state
  POST /chatbot                                 One chat assistant turn
  GET  /call?from=&to=                          Originate a call (operator)
  GET|POST /api/reminders                       Callback requests
  GET|POST /api/appointments                    Technician appointments
  GET|POST /api/messages                        Shared operator board
  POST /api/private-messages                    Direct operator message
  GET  /api/private-messages/{user1}/{user2}    Conversation between two users
  GET  /api/dialogue/sessions                   Live chat conversations (operator)
  WS   /ws                                      Realtime hub stream

The inbound call flow:
  1. AmiClient keeps an authenticated manager session with the PBX
  2. EventBridge watches its event stream for Newchannel events
  3. A caller-bearing Newchannel is published as ``inbound_call``
  4. Every browser connected to /ws receives it
"""

from __future__ import annotations

# Load .env into os.environ before Settings is instantiated
from dotenv import load_dotenv
load_dotenv()

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from typing import Any

# Configure root logger early so all contacthub loggers have a handler
# when run via `uvicorn contacthub.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-22s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from contacthub.auth import require_admin_token
from contacthub.config import Settings, settings as default_settings
from contacthub.dialogue import DialogueEngine, DialogueSessions, default_rules, load_rules_jsonl
from contacthub.manager import AmiClient, ManagerLink
from contacthub.models import Appointment, Message, PrivateMessage, Reminder
from contacthub.realtime import (
    APPOINTMENTS_UPDATE,
    MESSAGES_UPDATE,
    PRIVATE_MESSAGE,
    REMINDERS_UPDATE,
    RealtimeHub,
)
from contacthub.records import save_and_broadcast
from contacthub.stores import HubStores, PersistenceFailure
from contacthub.telephony import CallOriginator, EventBridge, OriginateOutcome

log = logging.getLogger("contacthub.app")

_START_TIME = time.time()

_OUTCOME_STATUS = {
    OriginateOutcome.ACCEPTED: 200,
    OriginateOutcome.REJECTED: 502,
    OriginateOutcome.TIMED_OUT: 504,
}


def build_link(settings: Settings) -> AmiClient:
    """Create the AMI client described by ``settings``."""
    return AmiClient(
        settings.ami_host,
        settings.ami_port,
        settings.ami_username,
        settings.ami_secret,
        connect_timeout=settings.ami_connect_timeout,
        action_timeout=settings.ami_action_timeout,
        reconnect_initial_delay=settings.ami_reconnect_initial_delay,
        reconnect_max_delay=settings.ami_reconnect_max_delay,
        keepalive_interval=settings.ami_keepalive_interval,
    )


async def _read_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _missing(body: dict[str, Any] | None, fields: tuple[str, ...]) -> list[str]:
    if body is None:
        return list(fields)
    return [f for f in fields if not isinstance(body.get(f), str) or not body[f].strip()]


def _bad_request(missing: list[str]) -> JSONResponse:
    return JSONResponse(
        {"success": False, "message": f"Missing fields: {', '.join(missing)}"},
        status_code=400,
    )


def _save_failed(e: PersistenceFailure) -> JSONResponse:
    log.error("Record not saved: %s", e)
    return JSONResponse(
        {"success": False, "message": "Could not save the record"}, status_code=500,
    )


def create_app(
    settings: Settings | None = None,
    *,
    link: ManagerLink | None = None,
    stores: HubStores | None = None,
    hub: RealtimeHub | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``link``, ``stores`` and ``hub`` replace the ones built from settings
    (tests pass fakes and in-memory stores).
    """
    settings = settings or default_settings

    link_injected = link is not None
    link = link if link_injected else build_link(settings)
    if stores is None:
        stores = (
            HubStores.from_directory(settings.data_dir)
            if settings.data_dir else HubStores.in_memory()
        )
    hub = hub or RealtimeHub(queue_size=settings.hub_queue_size)

    originator = CallOriginator(
        link,
        context=settings.originate_context,
        channel_technology=settings.originate_channel_technology,
        timeout_ms=settings.originate_timeout_ms,
        caller_id_template=settings.originate_caller_id_template,
    )
    bridge = EventBridge(link, hub)

    rules = (
        load_rules_jsonl(settings.dialogue_rules_path)
        if settings.dialogue_rules_path else default_rules()
    )

    def _new_engine(session_id: str) -> DialogueEngine:
        return DialogueEngine(
            session_id,
            rules=rules,
            reminders=stores.reminders,
            appointments=stores.appointments,
            originator=originator,
            hub=hub,
            offer_from_extension=settings.offer_from_extension,
            offer_to_extension=settings.offer_to_extension,
        )

    sessions = DialogueSessions(_new_engine, idle_timeout=settings.dialogue_session_idle_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for warning in settings.validate_startup():
            log.warning(warning)

        if link_injected or (settings.ami_username and settings.ami_secret):
            link.start()
        else:
            log.warning("Manager link not started: no AMI credentials")
        bridge.start()
        log.info("Contact hub started")
        try:
            yield
        finally:
            await bridge.stop()
            await link.close()
            log.info("Contact hub stopped")

    app = FastAPI(
        title="Contact Hub",
        description="Customer-contact hub: PBX manager link, chat assistant and realtime events",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.link = link
    app.state.stores = stores
    app.state.hub = hub
    app.state.originator = originator
    app.state.bridge = bridge
    app.state.sessions = sessions

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check plus manager link state."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({
            "status": "ok",
            "uptime": uptime,
            "manager_link": link.state.value,
            "realtime_subscribers": hub.subscriber_count,
        })

    # ── Chat assistant ─────────────────────────────────────────

    @app.post("/chatbot")
    async def chatbot(request: Request) -> JSONResponse:
        body = await _read_body(request)
        if body is None or not isinstance(body.get("message"), str):
            return JSONResponse({"error": "message is required"}, status_code=400)

        sessions.prune_idle()
        session_id = body.get("session_id")
        engine = sessions.get_or_create(session_id if isinstance(session_id, str) else None)
        reply = await engine.handle_message(body["message"])
        return JSONResponse({
            "reply": reply.reply,
            "action": reply.action.value,
            "session_id": engine.session_id,
        })

    @app.get("/api/dialogue/sessions", dependencies=[Depends(require_admin_token)])
    async def list_dialogue_sessions() -> JSONResponse:
        """Return a summary of every live chat conversation."""
        return JSONResponse({"sessions": sessions.to_list(), "count": len(sessions)})

    # ── Call origination ───────────────────────────────────────

    @app.get("/call", dependencies=[Depends(require_admin_token)])
    async def call(
        from_extension: str | None = Query(None, alias="from"),
        to: str | None = Query(None),
    ) -> JSONResponse:
        if not from_extension or not to:
            return JSONResponse({"error": "'from' and 'to' are required"}, status_code=400)

        result = await originator.originate(from_extension, to)
        return JSONResponse(
            result.model_dump(mode="json"), status_code=_OUTCOME_STATUS[result.outcome],
        )

    # ── Records ────────────────────────────────────────────────

    @app.get("/api/reminders")
    async def list_reminders() -> JSONResponse:
        return JSONResponse(await stores.reminders.list_all())

    @app.post("/api/reminders")
    async def create_reminder(request: Request) -> JSONResponse:
        body = await _read_body(request)
        missing = _missing(body, ("number",))
        if missing:
            return _bad_request(missing)
        try:
            await save_and_broadcast(
                stores.reminders, Reminder(number=body["number"].strip()), hub, REMINDERS_UPDATE,
            )
        except PersistenceFailure as e:
            return _save_failed(e)
        return JSONResponse({"success": True, "message": "Reminder saved"})

    @app.get("/api/appointments")
    async def list_appointments() -> JSONResponse:
        return JSONResponse(await stores.appointments.list_all())

    @app.post("/api/appointments")
    async def create_appointment(request: Request) -> JSONResponse:
        body = await _read_body(request)
        missing = _missing(body, ("name", "date", "time", "mobile"))
        if missing:
            return _bad_request(missing)
        appointment = Appointment(
            name=body["name"].strip(),
            date=body["date"].strip(),
            time=body["time"].strip(),
            mobile=body["mobile"].strip(),
            purpose=str(body.get("purpose") or "").strip(),
        )
        try:
            await save_and_broadcast(stores.appointments, appointment, hub, APPOINTMENTS_UPDATE)
        except PersistenceFailure as e:
            return _save_failed(e)
        return JSONResponse({"success": True, "message": "Appointment saved"})

    @app.get("/api/messages")
    async def list_messages() -> JSONResponse:
        return JSONResponse(await stores.messages.list_all())

    @app.post("/api/messages")
    async def create_message(request: Request) -> JSONResponse:
        body = await _read_body(request)
        missing = _missing(body, ("sender", "content"))
        if missing:
            return _bad_request(missing)
        message = Message(sender=body["sender"].strip(), content=body["content"])
        try:
            await save_and_broadcast(stores.messages, message, hub, MESSAGES_UPDATE)
        except PersistenceFailure as e:
            return _save_failed(e)
        return JSONResponse({"success": True, "message": "Message saved"})

    @app.post("/api/private-messages")
    async def create_private_message(request: Request) -> JSONResponse:
        body = await _read_body(request)
        missing = _missing(body, ("sender", "recipient", "content"))
        if missing:
            return _bad_request(missing)
        message = PrivateMessage(
            sender=body["sender"].strip(),
            recipient=body["recipient"].strip(),
            content=body["content"],
        )
        try:
            await save_and_broadcast(
                stores.private_messages, message, hub, PRIVATE_MESSAGE, snapshot=False,
            )
        except PersistenceFailure as e:
            return _save_failed(e)
        return JSONResponse({"success": True, "message": "Private message sent"})

    @app.get("/api/private-messages/{user1}/{user2}")
    async def list_private_messages(user1: str, user2: str) -> JSONResponse:
        """Messages exchanged between two users, oldest first."""
        pair = {(user1, user2), (user2, user1)}
        conversation = [
            m for m in await stores.private_messages.list_all()
            if (m.get("sender"), m.get("recipient")) in pair
        ]
        conversation.sort(key=lambda m: m.get("timestamp", ""))
        return JSONResponse(conversation)

    # ── Realtime stream WebSocket ──────────────────────────────

    async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
        try:
            while True:
                event = await queue.get()
                await websocket.send_json(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("Realtime stream send failed: %s", e)

    @app.websocket("/ws")
    async def realtime_stream(websocket: WebSocket) -> None:
        """Stream every hub event to the connected browser."""
        with hub.subscription() as queue:
            await websocket.accept()
            sender = asyncio.create_task(_forward(websocket, queue))
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                sender.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sender

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "contacthub.app:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        log_config=log_config,
    )
