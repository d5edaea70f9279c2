"""Pydantic schemas for API request/response models."""

from app.schemas.convo import (
    AttachmentIn,
    ConvoCreate,
    ConvoCreateResponse,
    ConvoDelete,
    ConvoDetailRead,
    ConvoRecipientIn,
    ConvoReply,
    ConvoReplyResponse,
    ConvoSpaceTarget,
    ConvoSpaceWorkflowsRead,
    ConvoSummaryRead,
    ConvoWorkflowSet,
    ConvoWorkflowSetResponse,
    EntryPage,
    EntryRead,
    OkResponse,
)

__all__ = [
    "AttachmentIn",
    "ConvoCreate",
    "ConvoCreateResponse",
    "ConvoDelete",
    "ConvoDetailRead",
    "ConvoRecipientIn",
    "ConvoReply",
    "ConvoReplyResponse",
    "ConvoSpaceTarget",
    "ConvoSpaceWorkflowsRead",
    "ConvoSummaryRead",
    "ConvoWorkflowSet",
    "ConvoWorkflowSetResponse",
    "EntryPage",
    "EntryRead",
    "OkResponse",
]
