# ========================================
# routes/analysis.py - End-of-session analysis and answer scoring
# ========================================

from fastapi import APIRouter, Depends, HTTPException

from interview_coach.errors import InterviewCoachError
from interview_coach.models.interview import AnalysisResult, AnswerRecord
from interview_coach.models.request import AnalysisRequest, TranscriptCorrectionRequest
from interview_coach.routes.deps import get_analysis_pipeline
from interview_coach.services.analysis_pipeline import AnalysisInput, AnalysisPipeline
from interview_coach.services.media_loader import load_media
from interview_coach.utils.auth import verify_api_token
from interview_coach.utils.logger import get_logger

router = APIRouter(tags=["Analysis"], dependencies=[Depends(verify_api_token)])
logger = get_logger("AnalysisRoutes")


@router.post("/interviews/{interview_id}/analyze", response_model=AnalysisResult)
async def analyze_interview(
    interview_id: str,
    request: AnalysisRequest,
    pipeline: AnalysisPipeline = Depends(get_analysis_pipeline),
):
    """Score a finished interview from its transcript and optional recordings"""
    logger.info(
        f"📊 Analyze {interview_id}: transcript={len(request.transcript)} chars, "
        f"media={len(request.media_refs or [])}, duration={request.duration_seconds or 0}s"
    )
    try:
        media = await load_media(request.media_refs, max_bytes=pipeline.max_media_bytes)
        return await pipeline.analyze(AnalysisInput(
            transcript=request.transcript,
            question=request.question,
            framework=request.framework,
            media=media,
            duration_seconds=request.duration_seconds,
        ))
    except InterviewCoachError as e:
        logger.warning(f"Analysis failed for {interview_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Gemini analysis error for {interview_id}: {e}", exc_info=True)
        raise HTTPException(500, str(e) or "Analysis failed")


@router.post("/answers/score", response_model=AnswerRecord)
async def score_answer(request: TranscriptCorrectionRequest):
    """Recompute the local score after the candidate corrects a transcript"""
    record = AnswerRecord(
        question_index=request.question_index,
        question_text=request.question_text,
        duration_seconds=request.duration_seconds,
        media_ref=request.media_ref,
    )
    return record.with_corrected_transcript(request.transcript, request.framework)
