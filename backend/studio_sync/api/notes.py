import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from studio_sync.db.session import get_session
from studio_sync.models.order import PersonNote, serialize_note, utcnow
from studio_sync.services.live_sync import stream_response
from studio_sync.services.notifier import NOTE_CHANGED, notifier

logger = logging.getLogger(__name__)
router = APIRouter()

PEOPLE = ("amandine", "charlie", "loic", "melina")


class Todo(BaseModel):
    id: str
    text: str
    done: bool = False


class NotePatch(BaseModel):
    content: Optional[str] = None
    todos: Optional[List[Todo]] = None


def _get_or_create(session: Session, person: str) -> PersonNote:
    note = session.exec(select(PersonNote).where(PersonNote.person == person)).first()
    if note is None:
        note = PersonNote(person=person, content="", todos=[])
        session.add(note)
    return note


@router.get("")
def list_notes():
    """The team's notes, one per person; missing rows are created empty."""
    session = get_session()
    try:
        notes = [_get_or_create(session, p) for p in PEOPLE]
        session.commit()
        for note in notes:
            session.refresh(note)
        return {"notes": [serialize_note(n) for n in notes]}
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to load notes: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
    finally:
        session.close()


@router.get("/stream")
async def notes_stream(request: Request):
    return stream_response(request, NOTE_CHANGED)


@router.patch("/{person}")
def update_note(person: str, upd: NotePatch):
    if person not in PEOPLE:
        return JSONResponse({"error": "Invalid person"}, status_code=422)

    session = get_session()
    try:
        note = _get_or_create(session, person)
        if upd.content is not None:
            note.content = upd.content
        if upd.todos is not None:
            note.todos = [t.model_dump() for t in upd.todos]
        note.updated_at = utcnow()
        session.add(note)
        session.commit()
        session.refresh(note)
        payload = serialize_note(note)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to save note person=%s: %s", person, e)
        raise HTTPException(status_code=500, detail="Internal server error")
    finally:
        session.close()

    notifier.emit(NOTE_CHANGED, payload)
    return {"note": payload}
