"""Convos router - API endpoints for conversations within an org."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_org_context, require_csrf_header
from app.core.errors import NotFoundError
from app.core.org_cache import OrgContext
from app.core.rate_limit import limiter
from app.schemas.convo import (
    ConvoCreate,
    ConvoCreateResponse,
    ConvoDelete,
    ConvoDetailRead,
    ConvoReply,
    ConvoReplyResponse,
    ConvoSpaceTarget,
    ConvoSpaceWorkflowsRead,
    ConvoSummaryRead,
    ConvoWorkflowSet,
    ConvoWorkflowSetResponse,
    EntryPage,
    OkResponse,
)
from app.services import convo_service
from app.utils.pagination import CursorParams, get_cursor_params
from app.utils.public_ids import ConvoPublicId

router = APIRouter(prefix="/{org_shortcode}/convos", tags=["convos"])


@router.post(
    "",
    response_model=ConvoCreateResponse,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit("60/minute")
def create_convo(
    request: Request,
    data: ConvoCreate,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    """Start a conversation in a space."""
    created = convo_service.create_convo(db, org=org, data=data)
    return ConvoCreateResponse(
        public_id=created.convo_public_id, entry_public_id=created.entry_public_id
    )


@router.post(
    "/reply",
    response_model=ConvoReplyResponse,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit("120/minute")
def reply_to_convo(
    request: Request,
    data: ConvoReply,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    """Reply to an entry of a conversation."""
    created = convo_service.reply_to_convo(db, org=org, data=data)
    return ConvoReplyResponse(public_id=created.entry_public_id)


@router.post("/delete", response_model=OkResponse, dependencies=[Depends(require_csrf_header)])
def delete_convos(
    data: ConvoDelete,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    """Delete one or many conversations."""
    convo_service.delete_convos(db, org=org, convo_public_ids=data.convo_public_ids)
    return OkResponse()


@router.get("/{convo_public_id}", response_model=ConvoDetailRead)
def get_convo(
    convo_public_id: ConvoPublicId,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    detail = convo_service.get_convo(db, org=org, convo_public_id=convo_public_id)
    return convo_service.to_detail_read(detail)


@router.get("/{convo_public_id}/summary", response_model=ConvoSummaryRead)
def get_convo_summary(
    convo_public_id: ConvoPublicId,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    """Per-member view with the latest entry, for client-side stores."""
    summary = convo_service.get_org_member_specific_convo(
        db, org=org, convo_public_id=convo_public_id
    )
    if summary is None:
        raise NotFoundError("Conversation not found")
    return convo_service.to_summary_read(summary)


@router.get("/{convo_public_id}/entries", response_model=EntryPage)
def list_convo_entries(
    convo_public_id: ConvoPublicId,
    page: CursorParams = Depends(get_cursor_params),
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    result = convo_service.list_convo_entries(
        db,
        org=org,
        convo_public_id=convo_public_id,
        cursor=page.cursor,
        limit=page.limit,
    )
    return EntryPage(
        items=[convo_service.to_entry_read(view) for view in result.items],
        next_cursor=result.next_cursor,
    )


@router.post(
    "/{convo_public_id}/seen",
    response_model=OkResponse,
    dependencies=[Depends(require_csrf_header)],
)
def mark_convo_seen(
    convo_public_id: ConvoPublicId,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    convo_service.mark_convo_seen(db, org=org, convo_public_id=convo_public_id)
    return OkResponse()


@router.get("/{convo_public_id}/workflows", response_model=list[ConvoSpaceWorkflowsRead])
def get_convo_space_workflows(
    convo_public_id: ConvoPublicId,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    """Workflow stage of the conversation in each visible space."""
    views = convo_service.get_convo_space_workflows(db, org=org, convo_public_id=convo_public_id)
    return [convo_service.to_workflows_read(view) for view in views]


@router.post(
    "/{convo_public_id}/workflow",
    response_model=ConvoWorkflowSetResponse,
    dependencies=[Depends(require_csrf_header)],
)
def set_convo_space_workflow(
    convo_public_id: ConvoPublicId,
    data: ConvoWorkflowSet,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    record = convo_service.set_convo_space_workflow(
        db,
        org=org,
        convo_public_id=convo_public_id,
        space_public_id=data.space_public_id,
        workflow_public_id=data.workflow_public_id,
    )
    return ConvoWorkflowSetResponse(public_id=record.public_id)


@router.post(
    "/{convo_public_id}/spaces/add",
    response_model=OkResponse,
    dependencies=[Depends(require_csrf_header)],
)
def add_convo_to_space(
    convo_public_id: ConvoPublicId,
    data: ConvoSpaceTarget,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    convo_service.add_convo_to_space(
        db, org=org, convo_public_id=convo_public_id, space_public_id=data.space_public_id
    )
    return OkResponse()


@router.post(
    "/{convo_public_id}/spaces/move",
    response_model=OkResponse,
    dependencies=[Depends(require_csrf_header)],
)
def move_convo_to_space(
    convo_public_id: ConvoPublicId,
    data: ConvoSpaceTarget,
    org: OrgContext = Depends(get_org_context),
    db: Session = Depends(get_db),
):
    """Re-file the conversation so the target is its only space."""
    convo_service.move_convo_to_space(
        db, org=org, convo_public_id=convo_public_id, space_public_id=data.space_public_id
    )
    return OkResponse()
