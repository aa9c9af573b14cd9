import asyncio
import json
import logging
import time
import uuid
from typing import Dict, List, Optional

from config import SESSION_TTL
from exceptions import InvalidStateTransition, SessionNotFound, TransactionNotFound
from models import AppState, ExtractedData, SessionState, Transaction

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    AppState.IDLE: {AppState.PROCESSING},
    AppState.PROCESSING: {AppState.SUCCESS, AppState.ERROR},
    AppState.SUCCESS: {AppState.PROCESSING},
    AppState.ERROR: {AppState.PROCESSING},
}


class SessionManager:
    """
    Owns the in-memory state of every upload session.

    Each session moves idle -> processing -> success | error. A session that
    is not processing can be reset to idle. Progress updates are delivered
    only to streams attached while the session is processing; a stream that
    attaches later gets a single event describing the current state.
    """

    def __init__(self, ttl: int = SESSION_TTL):
        self.ttl = ttl
        self.sessions: Dict[str, SessionState] = {}
        self.listeners: Dict[str, List[asyncio.Queue]] = {}
        self.last_touched: Dict[str, float] = {}

    def create_session(self, session_id: Optional[str] = None) -> SessionState:
        self.purge_expired()
        session_id = session_id or str(uuid.uuid4())
        session = SessionState(session_id=session_id)
        self._store(session)
        return session

    def _store(self, session: SessionState) -> SessionState:
        self.sessions[session.session_id] = session
        self.last_touched[session.session_id] = time.monotonic()
        return session

    def get_session(self, session_id: str) -> SessionState:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    def _transition(self, session_id: str, new_state: AppState, **changes) -> SessionState:
        session = self.get_session(session_id)
        if new_state not in _ALLOWED_TRANSITIONS[session.state]:
            raise InvalidStateTransition(
                f"Cannot move session from {session.state.value} to {new_state.value}"
            )
        updated = self._store(session.model_copy(update={"state": new_state, **changes}))
        logger.info(f"Session {session_id}: {session.state.value} -> {new_state.value}")
        return updated

    def start_processing(self, session_id: str, filenames: Optional[List[str]] = None) -> SessionState:
        return self._transition(
            session_id,
            AppState.PROCESSING,
            data=None,
            error=None,
            progress=0,
            message="Processing started.",
            filenames=filenames or [],
        )

    def mark_success(self, session_id: str, data: ExtractedData) -> SessionState:
        return self._transition(session_id, AppState.SUCCESS, data=data, error=None,
                                progress=100, message="Processing complete!")

    def mark_error(self, session_id: str, message: str) -> SessionState:
        return self._transition(session_id, AppState.ERROR, data=None, error=message,
                                progress=100, message=message)

    def reset(self, session_id: str) -> SessionState:
        """Discard the session's data. Extraction calls cannot be cancelled, so a processing session is refused."""
        session = self.get_session(session_id)
        if session.state == AppState.PROCESSING:
            raise InvalidStateTransition("Cannot reset a session while it is processing")
        updated = self._store(SessionState(session_id=session_id))
        logger.info(f"Session {session_id}: {session.state.value} -> {AppState.IDLE.value}")
        return updated

    def discard(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.last_touched.pop(session_id, None)
        self.listeners.pop(session_id, None)

    def purge_expired(self) -> int:
        """Drop sessions untouched for longer than the TTL. Processing sessions are kept."""
        cutoff = time.monotonic() - self.ttl
        expired = [
            session_id for session_id, touched in self.last_touched.items()
            if touched < cutoff and self.sessions[session_id].state != AppState.PROCESSING
        ]
        for session_id in expired:
            self.discard(session_id)
        if expired:
            logger.info(f"Purged {len(expired)} expired sessions")
        return len(expired)

    # --- Row edits ---

    def _require_data(self, session_id: str) -> ExtractedData:
        session = self.get_session(session_id)
        if session.state != AppState.SUCCESS or session.data is None:
            raise InvalidStateTransition(
                f"Transactions can only be edited after a successful extraction (session is {session.state.value})"
            )
        return session.data

    def _replace_transactions(self, session_id: str, transactions: List[Transaction]) -> ExtractedData:
        data = self._require_data(session_id)
        updated = data.model_copy(update={"transactions": transactions})
        self._store(self.sessions[session_id].model_copy(update={"data": updated}))
        return updated

    def add_transaction(self, session_id: str, transaction: Transaction) -> ExtractedData:
        """New rows go first, as in the dashboard's edit form."""
        data = self._require_data(session_id)
        return self._replace_transactions(session_id, [transaction] + list(data.transactions))

    def update_transaction(self, session_id: str, index: int, transaction: Transaction) -> ExtractedData:
        data = self._require_data(session_id)
        transactions = list(data.transactions)
        if not 0 <= index < len(transactions):
            raise TransactionNotFound(f"Transaction {index} not found")
        transactions[index] = transaction
        return self._replace_transactions(session_id, transactions)

    def delete_transaction(self, session_id: str, index: int) -> ExtractedData:
        data = self._require_data(session_id)
        transactions = list(data.transactions)
        if not 0 <= index < len(transactions):
            raise TransactionNotFound(f"Transaction {index} not found")
        del transactions[index]
        return self._replace_transactions(session_id, transactions)

    # --- Progress streaming ---

    @staticmethod
    def _event(session: SessionState, data: dict = None) -> dict:
        return {
            "state": session.state.value,
            "progress": session.progress,
            "message": session.message,
            "data": data
        }

    async def update_progress(self, session_id: Optional[str], progress: int, message: str, data: dict = None):
        if session_id is None or session_id not in self.sessions:
            return

        session = self._store(
            self.sessions[session_id].model_copy(update={"progress": progress, "message": message})
        )

        payload = self._event(session, data)
        for queue in self.listeners.get(session_id, []):
            await queue.put(payload)

    async def listen(self, session_id: str):
        session = self.sessions.get(session_id)
        if session is None:
            yield f"data: {json.dumps({'error': 'Task not found'})}\n\n"
            return

        if session.state != AppState.PROCESSING:
            yield f"data: {json.dumps(self._event(session))}\n\n"
            return

        queue = asyncio.Queue()
        self.listeners.setdefault(session_id, []).append(queue)
        try:
            while True:
                data = await queue.get()
                yield f"data: {json.dumps(data, default=str)}\n\n"
                if data["progress"] >= 100:
                    break
        finally:
            queues = self.listeners.get(session_id, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self.listeners.pop(session_id, None)


session_manager = SessionManager()
