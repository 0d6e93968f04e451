import asyncio
from dataclasses import dataclass
import logging
from urllib.parse import parse_qs

from fastapi.encoders import jsonable_encoder
import socketio

from nettrack.core.config import get_settings
from nettrack.core.errors import NetTrackError, ValidationError
from nettrack.core.security import decode_access_token_payload
from nettrack.db.session import SessionLocal
from nettrack.realtime.synchronizers import ChatSynchronizer, FeedSynchronizer
from nettrack.services.change_notifier import Subscription, change_notifier, inbox_channel
from nettrack.services.chat_service import Conversation
from nettrack.services.user_service import get_active_user_session, get_user_by_username

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")

settings = get_settings()
FEED_REFRESH_SECONDS = max(1.0, settings.feed_poll_interval_seconds)

_session_factory = SessionLocal

UNAUTHORIZED = {"ok": False, "error": "Not authenticated", "code": "unauthorized"}


@dataclass
class ConnectionIdentity:
    username: str
    session_id: str


_sid_to_identity: dict[str, ConnectionIdentity] = {}
_sid_chat: dict[str, ChatSynchronizer] = {}
_sid_feed: dict[str, FeedSynchronizer] = {}
_sid_inbox: dict[str, Subscription] = {}
_loop: asyncio.AbstractEventLoop | None = None
_feed_refresh_task: asyncio.Task | None = None


def _session_string(session: dict, key: str) -> str:
    value = session.get(key)
    return value.strip() if isinstance(value, str) else ""


def _payload_string(data: dict | None, key: str) -> str:
    value = data.get(key) if isinstance(data, dict) else None
    return value.strip() if isinstance(value, str) else ""


def _remember_loop() -> None:
    global _loop
    _loop = asyncio.get_running_loop()


def _schedule_emit(event: str, payload: dict, sid: str) -> None:
    """Emit from whichever thread a change notification arrived on."""
    loop = _loop
    if loop is None or loop.is_closed():
        return
    coroutine = sio.emit(event, jsonable_encoder(payload), room=sid)
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        loop.create_task(coroutine)
    else:
        asyncio.run_coroutine_threadsafe(coroutine, loop)


def _dispatch(task) -> None:
    """Run a synchronizer refetch on the loop's executor instead of the publisher's thread."""
    loop = _loop
    if loop is None or loop.is_closed():
        task()
        return

    def run() -> None:
        try:
            task()
        except Exception:
            logger.exception("Background refresh failed")

    loop.call_soon_threadsafe(loop.run_in_executor, None, run)


def _resolve_token(auth: dict | None, environ: dict) -> str | None:
    token = auth.get("token") if isinstance(auth, dict) else None
    if (
        not token
        and settings.websocket_allow_query_token
        and not settings.websocket_require_auth_payload_token
    ):
        token = parse_qs(environ.get("QUERY_STRING", "")).get("token", [None])[0]
    if settings.websocket_require_auth_payload_token and not token:
        return None
    if isinstance(token, str) and token.lower().startswith("bearer "):
        token = token.split(" ", 1)[1]
    return token if isinstance(token, str) and token.strip() else None


def _load_identity_from_token(token: str | None) -> ConnectionIdentity | None:
    if not token:
        return None
    payload = decode_access_token_payload(token)
    if not payload:
        return None
    subject = payload.get("sub")
    session_id = payload.get("sid")
    if not isinstance(subject, str) or not subject.strip():
        return None
    if not isinstance(session_id, str) or not session_id.strip():
        return None

    with _session_factory() as db:
        user = get_user_by_username(db, subject)
        if not user:
            return None
        active_session = get_active_user_session(db, username=user.username, session_id=session_id.strip())
        if not active_session:
            return None
        return ConnectionIdentity(username=user.username, session_id=session_id.strip())


def _session_is_active(username: str, session_id: str) -> bool:
    with _session_factory() as db:
        user = get_user_by_username(db, username)
        if not user:
            return False
        return get_active_user_session(db, username=user.username, session_id=session_id) is not None


async def _username_for(sid: str) -> str:
    """
    Username behind ``sid`` as long as its login session is still live.

    Checked on every event: an account deleted or logged out after connect
    loses the socket here, and a re-registered username never inherits it.
    """
    try:
        session = await sio.get_session(sid)
    except KeyError:
        return ""
    username = _session_string(session, "username")
    session_id = _session_string(session, "session_id")
    if not username or not session_id:
        return ""
    if not await asyncio.to_thread(_session_is_active, username, session_id):
        logger.info("Socket %s for %s has no live session, dropping it", sid, username)
        _teardown_sid(sid)
        return ""
    return username


def _chat_for(sid: str, username: str) -> ChatSynchronizer:
    synchronizer = _sid_chat.get(sid)
    if synchronizer is None or synchronizer.username != username:

        def on_messages(conversation: Conversation, messages: list[dict]) -> None:
            _schedule_emit(
                "chat_messages",
                {"conversation": conversation.ref, "messages": messages},
                sid,
            )

        synchronizer = ChatSynchronizer(
            username, on_messages, session_factory=_session_factory, dispatch=_dispatch
        )
        _sid_chat[sid] = synchronizer
    return synchronizer


def _feed_for(sid: str, username: str) -> FeedSynchronizer:
    synchronizer = _sid_feed.get(sid)
    if synchronizer is None or synchronizer.username != username:

        def on_feed(entries: list[dict]) -> None:
            _schedule_emit("friends_feed", {"entries": entries}, sid)

        synchronizer = FeedSynchronizer(
            username, on_feed, session_factory=_session_factory, dispatch=_dispatch
        )
        _sid_feed[sid] = synchronizer
    return synchronizer


def _subscribe_inbox(sid: str, identity: ConnectionIdentity) -> None:
    def on_inbox(event: str, payload: dict) -> None:
        if event == "session_revoked":
            # None means every session of the account.
            revoked = payload.get("session_id")
            if revoked is None or revoked == identity.session_id:
                _schedule_emit("session_revoked", {"username": identity.username}, sid)
                _teardown_sid(sid)
            return
        _schedule_emit("inbox", {"event": event, **payload}, sid)

    previous = _sid_inbox.pop(sid, None)
    if previous:
        previous.cancel()
    _sid_inbox[sid] = change_notifier.subscribe(inbox_channel(identity.username), on_inbox)


def _teardown_sid(sid: str) -> None:
    chat = _sid_chat.pop(sid, None)
    if chat:
        chat.leave()
    feed = _sid_feed.pop(sid, None)
    if feed:
        feed.stop()
    inbox = _sid_inbox.pop(sid, None)
    if inbox:
        inbox.cancel()
    _sid_to_identity.pop(sid, None)


async def _feed_refresh_loop() -> None:
    """Re-push every watched feed on a fixed tick."""
    while True:
        await asyncio.sleep(FEED_REFRESH_SECONDS)
        for sid, synchronizer in list(_sid_feed.items()):
            if not synchronizer.active:
                continue
            try:
                await asyncio.to_thread(synchronizer.refresh)
            except Exception:
                logger.exception("Feed refresh failed for %s", sid)


def _ensure_feed_refresh_task() -> None:
    global _feed_refresh_task
    if _feed_refresh_task and not _feed_refresh_task.done():
        return
    _feed_refresh_task = sio.start_background_task(_feed_refresh_loop)


@sio.event
async def connect(sid: str, environ: dict, auth: dict | None = None) -> bool:
    token = _resolve_token(auth, environ)
    identity = await asyncio.to_thread(_load_identity_from_token, token)
    if not identity:
        return False

    _remember_loop()
    _ensure_feed_refresh_task()
    _sid_to_identity[sid] = identity
    await sio.save_session(
        sid,
        {
            "username": identity.username,
            "session_id": identity.session_id,
        },
    )
    _subscribe_inbox(sid, identity)
    await sio.emit(
        "system",
        {
            "message": "connected",
            "username": identity.username,
            "feed_refresh_seconds": FEED_REFRESH_SECONDS,
        },
        room=sid,
    )
    logger.info("Socket %s connected as %s", sid, identity.username)
    return True


@sio.event
async def disconnect(sid: str) -> None:
    identity = _sid_to_identity.get(sid)
    _teardown_sid(sid)
    if identity:
        logger.info("Socket %s for %s disconnected", sid, identity.username)


@sio.event
async def enter_conversation(sid: str, data: dict | None = None) -> dict:
    username = await _username_for(sid)
    if not username:
        return dict(UNAUTHORIZED)
    _remember_loop()

    synchronizer = _chat_for(sid, username)
    try:
        messages = await asyncio.to_thread(synchronizer.enter, _payload_string(data, "conversation") or "global")
    except NetTrackError as exc:
        return exc.to_payload()
    return {
        "ok": True,
        "conversation": synchronizer.state,
        "messages": jsonable_encoder(messages),
    }


@sio.event
async def leave_conversation(sid: str, data: dict | None = None) -> dict:
    synchronizer = _sid_chat.get(sid)
    if synchronizer:
        synchronizer.leave()
    return {"ok": True}


@sio.event
async def send_chat_message(sid: str, data: dict | None = None) -> dict:
    username = await _username_for(sid)
    if not username:
        return dict(UNAUTHORIZED)
    _remember_loop()

    synchronizer = _chat_for(sid, username)
    requested = _payload_string(data, "conversation")
    try:
        if requested and requested != synchronizer.state:
            await asyncio.to_thread(synchronizer.enter, requested)
        if synchronizer.state is None:
            raise ValidationError("Enter a conversation first")
        message = await asyncio.to_thread(synchronizer.send, _payload_string(data, "text"))
    except NetTrackError as exc:
        return exc.to_payload()
    return {"ok": True, "message": jsonable_encoder(message)}


@sio.event
async def watch_feed(sid: str, data: dict | None = None) -> dict:
    username = await _username_for(sid)
    if not username:
        return dict(UNAUTHORIZED)
    _remember_loop()

    synchronizer = _feed_for(sid, username)
    try:
        entries = await asyncio.to_thread(synchronizer.start)
    except NetTrackError as exc:
        return exc.to_payload()
    return {"ok": True, "entries": jsonable_encoder(entries)}


@sio.event
async def unwatch_feed(sid: str, data: dict | None = None) -> dict:
    synchronizer = _sid_feed.pop(sid, None)
    if synchronizer:
        synchronizer.stop()
    return {"ok": True}


def build_socket_app(api_app) -> socketio.ASGIApp:
    return socketio.ASGIApp(sio, other_asgi_app=api_app, socketio_path="socket.io")
