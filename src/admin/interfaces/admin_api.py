from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException

from src.execution.domain.exceptions import (
    DeadLetterNotFoundError,
    DuplicateCommandError,
    EngineClosedError,
    QueueFullError,
)
from src.execution.runtime.command_engine import CommandEngine


def build_admin_router(engine: CommandEngine) -> APIRouter:
    """
    Introspection and dead-letter operations over an existing engine.
    Building commands from requests stays with the integrating service.
    """
    router = APIRouter(prefix="/commands/v1", tags=["commands"])

    @router.get("/stats")
    def get_stats():
        return engine.get_stats().to_dict()

    @router.get("/dead-letters")
    def list_dead_letters(limit: int = 100):
        return {"items": [entry.to_dict() for entry in engine.list_dead_letters(limit=limit)]}

    @router.get("/dead-letters/{command_id}")
    def get_dead_letter(command_id: str):
        entry = engine.get_dead_letter(command_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Dead letter not found")
        return entry.to_dict()

    @router.post("/dead-letters/{command_id}/retry")
    def retry_dead_letter(command_id: str):
        try:
            engine.retry_dead_letter(command_id)
        except DeadLetterNotFoundError:
            raise HTTPException(status_code=404, detail="Dead letter not found")
        except QueueFullError as exc:
            raise HTTPException(status_code=429, detail=str(exc))
        except DuplicateCommandError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except EngineClosedError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        return {"status": "queued", "command_id": command_id}

    @router.delete("/dead-letters/{command_id}")
    def purge_dead_letter(command_id: str):
        if not engine.purge_dead_letters(command_id=command_id):
            raise HTTPException(status_code=404, detail="Dead letter not found")
        return {"status": "purged", "command_id": command_id}

    @router.delete("/dead-letters")
    def purge_dead_letters(older_than: Optional[datetime] = None):
        if older_than is not None and older_than.tzinfo is None:
            older_than = older_than.replace(tzinfo=timezone.utc)
        return {"status": "purged", "count": engine.purge_dead_letters(older_than=older_than)}

    @router.get("/history/{session_id}")
    def get_history(session_id: str):
        return engine.get_history_info(session_id).to_dict()

    return router
