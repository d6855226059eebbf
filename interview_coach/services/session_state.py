# services/session_state.py
"""
Session state machine over the shared session store.

    idle -> processing -> speaking -> idle -> ...

The store itself has no transactions, so every write to one session goes
through a SessionActor: a queue plus a single worker task that performs the
read-merge-write. Two patches to the same session can never interleave
inside this process.
"""
import asyncio
import inspect
from typing import Any, Awaitable, Callable, Collection, Dict, Mapping, Optional, Protocol, Union

from fastapi.encoders import jsonable_encoder

from interview_coach.config import get_settings
from interview_coach.errors import InvalidTransition, SessionAlreadyExists, SessionNotFound
from interview_coach.models.session import AvatarState, SessionState, SessionStatus, now_ms
from interview_coach.utils.logger import get_logger

logger = get_logger("SessionStateMachine")

Document = Dict[str, Any]

ALLOWED_TRANSITIONS = {
    SessionStatus.IDLE: {SessionStatus.LISTENING, SessionStatus.PROCESSING},
    SessionStatus.LISTENING: {SessionStatus.IDLE, SessionStatus.PROCESSING},
    SessionStatus.PROCESSING: {SessionStatus.SPEAKING, SessionStatus.IDLE},
    SessionStatus.SPEAKING: {SessionStatus.IDLE},
}


class Subscription(Protocol):
    async def cancel(self) -> None: ...


class SessionStore(Protocol):
    """Key-value document store with change notifications."""

    async def get(self, session_id: str) -> Optional[Document]: ...

    async def set(self, session_id: str, data: Document) -> None: ...

    async def create(self, session_id: str, data: Document) -> bool: ...

    async def subscribe(self, session_id: str,
                        callback: Callable[[Document], Awaitable[None]]) -> Subscription: ...


OnChange = Callable[[SessionState], Union[None, Awaitable[None]]]
# a partial, or a function of the current snapshot returning one
Partial = Union[Mapping[str, Any], Callable[[SessionState], Mapping[str, Any]]]

_STOP = object()


class SessionActor:
    """Serialises every write to one session through a single worker task."""

    def __init__(self, session_id: str, idle_seconds: float, on_retire: Callable[["SessionActor"], None]):
        self.session_id = session_id
        self.idle_seconds = idle_seconds
        self.stopped = False
        self._on_retire = on_retire
        self._queue: asyncio.Queue = asyncio.Queue()
        self.task = asyncio.create_task(self._run(), name=f"session-actor:{session_id}")

    def submit(self, operation: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((operation, future))
        return future

    async def stop(self) -> None:
        if self.stopped:
            return
        done = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((_STOP, done))
        await done

    async def _run(self) -> None:
        while True:
            try:
                operation, future = await asyncio.wait_for(self._queue.get(), timeout=self.idle_seconds)
            except asyncio.TimeoutError:
                if self._queue.empty():
                    self._retire()
                    return
                continue

            if operation is _STOP:
                self._retire()
                self._fail_pending()
                future.set_result(None)
                return
            if future.cancelled():
                continue
            try:
                result = await operation()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

    def _retire(self) -> None:
        self.stopped = True
        self._on_retire(self)

    def _fail_pending(self) -> None:
        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(RuntimeError(f"Session actor {self.session_id} stopped"))


class SessionStateMachine:
    def __init__(self, store: SessionStore, actor_idle_seconds: Optional[float] = None):
        self.store = store
        self.actor_idle_seconds = (
            actor_idle_seconds if actor_idle_seconds is not None else get_settings().session_actor_idle_seconds
        )
        self._actors: Dict[str, SessionActor] = {}

    # ------------------------------------------------------------------ #
    # Store operations
    # ------------------------------------------------------------------ #

    async def create(self, session_id: str, initial_owner: str) -> SessionState:
        """New record at idle with empty history; fails if the id is taken."""
        state = SessionState(
            session_id=session_id,
            owner=initial_owner,
            status=SessionStatus.IDLE,
            conversation_history=[],
            avatar_state=AvatarState.neutral(),
        )
        created = await self.store.create(session_id, state.model_dump(mode="json"))
        if not created:
            raise SessionAlreadyExists(session_id)
        logger.info(f"✅ Session {session_id} created for {initial_owner}")
        return state

    async def read(self, session_id: str) -> Optional[SessionState]:
        doc = await self.store.get(session_id)
        if doc is None:
            return None
        return SessionState.model_validate(doc)

    async def patch(self, session_id: str, partial: Partial) -> SessionState:
        """Shallow-merge partial over the stored snapshot and write it back whole.

        A callable partial is evaluated inside the actor against the snapshot
        it is merged over.
        """
        return await self._actor(session_id).submit(lambda: self._apply(session_id, partial))

    async def transition(self, session_id: str, target: SessionStatus, partial: Optional[Partial] = None,
                         *, from_states: Optional[Collection[SessionStatus]] = None,
                         **fields: Any) -> SessionState:
        """Patch that also checks the status edge against the current snapshot.

        from_states narrows the accepted source states further than the
        transition table does.
        """

        def build(state: SessionState) -> Mapping[str, Any]:
            extra = partial(state) if callable(partial) else (partial or {})
            return {**extra, **fields, "status": target}

        return await self._actor(session_id).submit(
            lambda: self._apply(session_id, build, target, from_states)
        )

    async def subscribe(self, session_id: str, on_change: OnChange) -> Subscription:
        """Deliver every new snapshot to on_change, starting with the current one."""

        async def deliver(doc: Document) -> None:
            result = on_change(SessionState.model_validate(doc))
            if inspect.isawaitable(result):
                await result

        subscription = await self.store.subscribe(session_id, deliver)
        current = await self.store.get(session_id)
        if current is not None:
            await deliver(current)
        return subscription

    # ------------------------------------------------------------------ #
    # Actors
    # ------------------------------------------------------------------ #

    async def discard(self, session_id: str) -> None:
        """Stop writing to a finished session. The record itself is left to expire."""
        actor = self._actors.pop(session_id, None)
        if actor is not None:
            await actor.stop()

    async def close(self) -> None:
        actors = list(self._actors.values())
        self._actors.clear()
        for actor in actors:
            await actor.stop()

    def _actor(self, session_id: str) -> SessionActor:
        actor = self._actors.get(session_id)
        if actor is None or actor.stopped:
            actor = SessionActor(session_id, self.actor_idle_seconds, self._forget)
            self._actors[session_id] = actor
        return actor

    def _forget(self, actor: SessionActor) -> None:
        if self._actors.get(actor.session_id) is actor:
            del self._actors[actor.session_id]

    async def _apply(self, session_id: str, partial: Partial,
                     target: Optional[SessionStatus] = None,
                     from_states: Optional[Collection[SessionStatus]] = None) -> SessionState:
        current = await self.store.get(session_id)
        if current is None:
            raise SessionNotFound(session_id)
        snapshot = SessionState.model_validate(current)

        if target is not None:
            status = snapshot.status
            if from_states is not None and status not in from_states:
                raise InvalidTransition(status.value, target.value)
            if target != status and target not in ALLOWED_TRANSITIONS[status]:
                raise InvalidTransition(status.value, target.value)

        changes = partial(snapshot) if callable(partial) else partial
        merged = {**current, **jsonable_encoder(dict(changes)), "updated_at": now_ms()}
        state = SessionState.model_validate(merged)
        await self.store.set(session_id, state.model_dump(mode="json"))
        logger.debug(f"Session {session_id} -> {state.status.value}")
        return state
