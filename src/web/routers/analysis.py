"""
Analysis API Router

Manual trigger over the transcript queue plus the dashboard flows: fresh
analysis, feedback re-run, transcript append and follow-up chat.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..app import limiter
from ...auth.dependencies import get_current_user, get_services
from ...core.exceptions import (
    AnalysisFailedError,
    AnalyzerNotConfiguredError,
    RecordNotFoundError,
)
from ...core.records import ClientProfile, Feedback, TranscriptBundle


logger = logging.getLogger(__name__)

router = APIRouter()


class TriggerRequest(BaseModel):
    """Manual trigger request."""
    client_id: Optional[str] = Field(None, alias="clientId")
    force: bool = False

    class Config:
        populate_by_name = True


class NewAnalysisRequest(BaseModel):
    """Fresh analysis from pasted transcripts."""
    client_id: Optional[str] = Field(None, alias="clientId")
    oldest: str = ""
    middle: str = ""
    recent: str = ""
    context: str = ""
    client_profile: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


class FeedbackRequest(BaseModel):
    """Feedback re-run; analysis_id replaces in place, transcript_data starts a new record."""
    analysis_id: Optional[int] = Field(None, alias="analysisId")
    client_id: Optional[str] = Field(None, alias="clientId")
    transcript_data: Optional[Dict[str, Any]] = None
    inaccuracies: str = ""
    additional_context: str = ""
    focus_areas: str = ""

    class Config:
        populate_by_name = True


class AddTranscriptsRequest(BaseModel):
    """Append transcripts to an existing analysis input."""
    analysis_id: Optional[int] = Field(None, alias="analysisId")
    client_id: Optional[str] = Field(None, alias="clientId")
    transcript_data: Optional[Dict[str, Any]] = None
    transcripts: List[str] = []

    class Config:
        populate_by_name = True


class ChatRequest(BaseModel):
    """Follow-up question about a stored analysis."""
    analysis_id: int = Field(..., alias="analysisId")
    question: str
    history: List[Dict[str, str]] = []

    class Config:
        populate_by_name = True


def _retryable_failure(e: AnalysisFailedError) -> JSONResponse:
    """Analyzer failure in a dashboard flow: nothing saved, input handed back for retry."""
    logger.error(f"Analysis failed: {e}")
    return JSONResponse(
        status_code=502,
        content={
            "detail": "Analysis failed, please try again",
            "retryable": True,
            "transcript_data": e.bundle.to_dict() if e.bundle else None,
            "client_id": e.client_id,
        },
    )


def _owned_record(services, analysis_id: int, user: dict):
    record = services.analyses.get(analysis_id)
    if record is None or (record.owner_id and record.owner_id != user["uid"]):
        raise HTTPException(status_code=404, detail=f"Analysis {analysis_id} not found")
    return record


def _check_client(services, client_id: Optional[str], user: dict):
    if not client_id:
        return
    client = services.clients.get(client_id)
    if client is None or (client.owner_id and client.owner_id != user["uid"]):
        raise HTTPException(status_code=404, detail=f"Client {client_id} not found")


@router.post("/trigger")
@limiter.limit("10/minute")
async def trigger_analysis(
    request: Request,
    body: TriggerRequest,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """
    Analyze a client's queued transcripts now.

    Returns the latest analysis with status "unchanged" if nothing was
    queued since the last run, unless force is set.
    """
    if not body.client_id:
        raise HTTPException(status_code=400, detail="clientId is required")

    _check_client(services, body.client_id, user)

    try:
        outcome = await services.orchestrator.trigger_manual(body.client_id, owner_id=user["uid"], force=body.force)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalyzerNotConfiguredError:
        raise HTTPException(status_code=412, detail="Analyzer not configured")
    except Exception as e:
        logger.error(f"Manual analysis failed for client {body.client_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Analysis failed")

    return outcome.to_dict()


@router.post("")
@limiter.limit("10/minute")
async def create_analysis(
    request: Request,
    body: NewAnalysisRequest,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Run a fresh analysis from three pasted transcripts."""
    _check_client(services, body.client_id, user)

    profile = ClientProfile.from_dict(body.client_profile) if body.client_profile else None
    bundle = TranscriptBundle(
        oldest=body.oldest,
        middle=body.middle,
        recent=body.recent,
        context=body.context,
        client_profile=profile,
    )

    try:
        outcome = await services.orchestrator.analyze_new(bundle, client_id=body.client_id, owner_id=user["uid"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalyzerNotConfiguredError:
        raise HTTPException(status_code=412, detail="Analyzer not configured")
    except AnalysisFailedError as e:
        return _retryable_failure(e)

    return outcome.to_dict()


@router.post("/feedback")
@limiter.limit("10/minute")
async def rerun_with_feedback(
    request: Request,
    body: FeedbackRequest,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Re-run an analysis with user corrections."""
    if body.analysis_id is not None:
        _owned_record(services, body.analysis_id, user)
    _check_client(services, body.client_id, user)

    feedback = Feedback(
        inaccuracies=body.inaccuracies,
        additional_context=body.additional_context,
        focus_areas=body.focus_areas,
    )
    bundle = TranscriptBundle.from_dict(body.transcript_data) if body.transcript_data else None

    try:
        outcome = await services.orchestrator.rerun_with_feedback(
            feedback,
            record_id=body.analysis_id,
            bundle=bundle,
            client_id=body.client_id,
            owner_id=user["uid"],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalyzerNotConfiguredError:
        raise HTTPException(status_code=412, detail="Analyzer not configured")
    except AnalysisFailedError as e:
        return _retryable_failure(e)

    return outcome.to_dict()


@router.post("/transcripts")
@limiter.limit("10/minute")
async def add_transcripts(
    request: Request,
    body: AddTranscriptsRequest,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Add transcripts to an analysis and re-run it."""
    if body.analysis_id is not None:
        _owned_record(services, body.analysis_id, user)
    _check_client(services, body.client_id, user)

    bundle = TranscriptBundle.from_dict(body.transcript_data) if body.transcript_data else None

    try:
        outcome = await services.orchestrator.add_transcripts(
            body.transcripts,
            record_id=body.analysis_id,
            bundle=bundle,
            client_id=body.client_id,
            owner_id=user["uid"],
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalyzerNotConfiguredError:
        raise HTTPException(status_code=412, detail="Analyzer not configured")
    except AnalysisFailedError as e:
        return _retryable_failure(e)

    return outcome.to_dict()


@router.post("/chat")
@limiter.limit("30/minute")
async def follow_up_chat(
    request: Request,
    body: ChatRequest,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Answer a follow-up question about a finished analysis."""
    _owned_record(services, body.analysis_id, user)

    try:
        answer = await services.orchestrator.answer_follow_up(body.analysis_id, body.question, body.history)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalyzerNotConfiguredError:
        raise HTTPException(status_code=412, detail="Analyzer not configured")
    except Exception as e:
        logger.error(f"Follow-up failed for analysis {body.analysis_id}: {e}", exc_info=True)
        return JSONResponse(status_code=502, content={"detail": "Could not answer, please try again", "retryable": True})

    return {"analysis_id": body.analysis_id, "answer": answer}


@router.get("/{analysis_id}")
async def get_analysis(
    analysis_id: int,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Get one analysis with the input it was computed from."""
    return _owned_record(services, analysis_id, user).to_dict()
