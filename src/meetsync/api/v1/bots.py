"""Manual recovery for meetings whose completion webhook was missed or rejected."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.meetsync.api.deps import get_current_user_id, get_reconciler
from src.meetsync.errors import InputValidationError, OwnershipError, VendorError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/bots", tags=["bots"])


class RecoveryResponse(BaseModel):
    bot_id: str
    recovered: bool
    meeting_id: str | None = None
    vendor_status: str | None = None
    processing_status: str | None = None


@router.post("/{bot_id}/recover", response_model=RecoveryResponse)
async def recover_bot(
    bot_id: str,
    user_id: str = Depends(get_current_user_id),
    reconciler: Any = Depends(get_reconciler),
) -> RecoveryResponse:
    try:
        outcome = await reconciler.recover_meeting(bot_id, user_id)
    except OwnershipError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Meeting belongs to another user",
        )
    except InputValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except VendorError as exc:
        logger.warning("bots.recover_vendor_error", bot_id=bot_id, error=str(exc))
        if exc.status_code == 404:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Bot not found on MeetingBaas",
            )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch bot from MeetingBaas",
        )

    meeting = outcome.meeting
    return RecoveryResponse(
        bot_id=bot_id,
        recovered=outcome.recovered,
        meeting_id=str(meeting.id) if meeting else None,
        vendor_status=outcome.vendor_status,
        processing_status=meeting.processing_status.value if meeting else None,
    )
