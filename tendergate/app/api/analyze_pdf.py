"""Tender PDF analysis endpoint.

The PDF travels inline (base64) to the upstream model through the same
protection pipeline as chat. Analyses are expensive, so this route has
its own hourly per-IP allowance and a long-lived result cache.
"""

import json
import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tendergate.app.api.deps import GateDep, SettingsDep, get_pipeline
from tendergate.app.api.schemas import CompanyProfile, PdfAnalysisRequest
from tendergate.app.core.logging import get_log_context, get_logger
from tendergate.app.middleware.request_id import get_request_id
from tendergate.app.providers.base import GenerationRequest
from tendergate.app.services.response_cache import ResponseCache
from tendergate.app.services.sliding_log import SlidingLogLimiter

router = APIRouter()
logger = get_logger(__name__)

ANALYSIS_SECTIONS = [
    "Tender Overview: title, reference number, issuing authority, estimated value, tender type",
    "Critical Dates: download window, pre-bid meeting, bid submission deadline, bid openings",
    "Eligibility Criteria: turnover, experience, qualifications, certifications, past projects",
    "Financial Requirements: EMD, tender fee, performance guarantee, payment terms",
    "Scope of Work",
    "Required Documents Checklist",
    "Red Flags & Important Clauses",
    "Recommendations",
]


def pdf_cache_key(body: PdfAnalysisRequest) -> str:
    """First 100 characters of the PDF plus the profile fields that shape the answer."""
    profile = body.profile or CompanyProfile()
    profile_part = json.dumps(
        {"keywords": profile.keywords or "", "turnover": str(profile.annual_turnover or "")},
        sort_keys=True,
    )
    return f"{body.pdf_data[:100]}_{profile_part}"


def decoded_size_mb(pdf_data: str) -> float:
    # base64 inflates by a third
    return (len(pdf_data) * 0.75) / (1024 * 1024)


def build_analysis_prompt(profile: Optional[CompanyProfile]) -> str:
    lines: List[str] = ["You are an expert Indian tender analyst. Analyze this tender PDF document."]
    if profile is not None:
        lines += [
            "",
            "Company Profile:",
            f"- Industry Keywords: {profile.keywords or 'Not specified'}",
            f"- Annual Turnover: ₹{profile.annual_turnover or 'Not specified'}",
            f"- Years of Experience: {profile.years_of_experience or 'Not specified'}",
            f"- Certifications: {profile.certifications or 'Not specified'}",
            "",
            "Assess eligibility against this profile: Eligible / Partially Eligible / Not Eligible.",
        ]
    lines += ["", "Cover the following sections:"]
    lines += [f"{i}. {section}" for i, section in enumerate(ANALYSIS_SECTIONS, start=1)]
    lines += ["", "Format the response as structured Markdown."]
    return "\n".join(lines)


def build_pdf_contents(pdf_data: str, prompt: str) -> List[Dict[str, Any]]:
    return [
        {"inlineData": {"mimeType": "application/pdf", "data": pdf_data}},
        {"text": prompt},
    ]


@router.post("/api/analyze-pdf", response_model=None)
async def analyze_pdf(request: Request, gate: GateDep, settings: SettingsDep) -> JSONResponse:
    """Analyze a tender PDF against an optional company profile.

    Raises:
        HTTPException: 429 when the hourly allowance is spent, 400 for
            missing or oversized PDFs
    """
    limiter: SlidingLogLimiter = request.app.state.pdf_limiter
    cache: ResponseCache = request.app.state.pdf_cache

    decision = limiter.hit(gate.ip)
    if not decision.allowed:
        minutes = max(1, math.ceil(decision.retry_after / 60))
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": f"Too many PDF analyses. Please try again in {minutes} minutes.",
                "retryAfter": decision.retry_after,
            },
            headers={
                "Retry-After": str(decision.retry_after),
                "X-RateLimit-Remaining": "0",
            },
        )

    try:
        body = PdfAnalysisRequest.model_validate(json.loads(await request.body()))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if not body.pdf_data:
        raise HTTPException(status_code=400, detail="No PDF data provided")

    headers = {"X-RateLimit-Remaining": str(decision.remaining)}

    cached = cache.get(body)
    if cached is not None:
        logger.info(f"PDF analysis cache hit for {body.file_name}")
        return JSONResponse(
            content={"success": True, "analysis": cached, "cached": True},
            headers={**headers, "X-Cache": "HIT"},
        )

    if decoded_size_mb(body.pdf_data) > settings.pdf_max_size_mb:
        raise HTTPException(
            status_code=400,
            detail=f"PDF file too large. Maximum size is {settings.pdf_max_size_mb:g}MB.",
        )

    pipeline = get_pipeline(request)
    generation = GenerationRequest(
        contents=build_pdf_contents(body.pdf_data, build_analysis_prompt(body.profile)),
    )
    result = await pipeline.generate(generation, use_cache=False)
    cache.set(body, result.text)

    logger.info(
        f"PDF analysis completed for {body.file_name}",
        extra=get_log_context(
            request_id=get_request_id(request),
            client_ip=gate.ip,
            model=result.model,
        ),
    )

    return JSONResponse(
        content={"success": True, "analysis": result.text, "cached": False},
        headers={**headers, "X-Cache": "MISS"},
    )
