# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from mindhit.api.v1.deps import require_user_id
from mindhit.db.models import MindmapGraph
from mindhit.db.session import get_db
from mindhit.services import mindmap_service


router = APIRouter(prefix="/sessions", tags=["mindmaps"])


class MindmapOut(BaseModel):
    id: str
    session_id: str
    status: str
    error_message: str | None
    nodes: list[dict[str, object]]
    edges: list[dict[str, object]]
    layout: dict[str, object]
    generated_at: datetime
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: MindmapGraph) -> "MindmapOut":
        return cls(
            id=row.id,
            session_id=row.session_id,
            status=row.status,
            error_message=row.error_message,
            nodes=list(row.nodes or []),
            edges=list(row.graph_edges or []),
            layout=dict(row.layout or {}),
            generated_at=row.generated_at,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class MindmapEnvelope(BaseModel):
    mindmap: MindmapOut


class GenerateMindmapRequest(BaseModel):
    force: bool = False


@router.get("/{session_id}/mindmap", response_model=MindmapEnvelope, operation_id="mindmaps_get")
async def mindmaps_get(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> MindmapEnvelope:
    row = mindmap_service.get_by_session(db, session_id, user_id)
    return MindmapEnvelope(mindmap=MindmapOut.from_row(row))


@router.post(
    "/{session_id}/mindmap/generate",
    response_model=MindmapEnvelope,
    status_code=status.HTTP_202_ACCEPTED,
    operation_id="mindmaps_generate",
)
async def mindmaps_generate(
    session_id: str,
    payload: GenerateMindmapRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user_id),
) -> MindmapEnvelope:
    force = payload.force if payload is not None else False
    row = mindmap_service.request_generation(db, session_id, user_id, force=force)
    return MindmapEnvelope(mindmap=MindmapOut.from_row(row))
