"""Request models for the HTTP API."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from tendergate.app.providers.base import GenerationRequest


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``. Either ``prompt`` or ``contents`` is required."""
    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    contents: Any = None
    model: Optional[str] = Field(default=None, min_length=1)
    tools: Optional[List[Dict[str, Any]]] = None
    generation_config: Optional[Dict[str, Any]] = Field(default=None, alias="generationConfig")

    def to_generation_request(self, prompt: Optional[str] = None) -> GenerationRequest:
        return GenerationRequest(
            prompt=prompt if prompt is not None else self.prompt,
            contents=self.contents,
            model=self.model,
            tools=self.tools,
            generation_config=self.generation_config,
        )


class CompanyProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    keywords: str = ""
    annual_turnover: Union[str, int, float] = Field(default="", alias="annualTurnover")
    years_of_experience: Union[str, int, float] = Field(default="", alias="yearsOfExperience")
    certifications: str = ""


class PdfAnalysisRequest(BaseModel):
    """Body of ``POST /api/analyze-pdf``; ``pdfData`` is base64 encoded."""
    model_config = ConfigDict(populate_by_name=True)

    pdf_data: str = Field(default="", alias="pdfData")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    profile: Optional[CompanyProfile] = None
