"""Structured legal document analysis and assistant chat."""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from legalease.errors import AnalysisFailed
from legalease.services.llm import LLMClient, clean_markdown, parse_json_lenient


logger = logging.getLogger("legalease.documents")

Level = Literal["high", "medium", "low"]


class Risk(BaseModel):
    id: int
    title: str
    description: str
    severity: Level = "low"
    clauseId: int = 1


class Clause(BaseModel):
    id: int
    title: str
    originalText: str = ""
    simplifiedExplanation: str = ""
    whatThisMeans: str = ""
    riskLevel: Level = "low"
    category: str = "General"


class DocumentAnalysis(BaseModel):
    title: str
    overview: str
    keyPoints: List[str] = Field(default_factory=list)
    risks: List[Risk] = Field(default_factory=list)
    clauses: List[Clause] = Field(default_factory=list)

    class Config:
        frozen = True


class ChatResponse(BaseModel):
    response: str
    context: Literal["document", "general"]


SYSTEM_PROMPT = """You are a specialized document analysis AI assistant for a Legal Document Simplification Platform. Your primary role is to analyze documents and provide clear, accurate, and understandable explanations.

Core Responsibilities:
1. Analyze ANY type of document and extract meaningful information
2. For legal documents: identify risks, obligations, and translate complex language
3. For non-legal documents: provide relevant analysis and extract key information
4. Provide practical advice and recommendations
5. Answer questions about document content and concepts

Guidelines:
- Always provide clear, non-technical explanations
- If it's a legal document: highlight risks, obligations, and legal implications
- If it's NOT a legal document: still provide valuable analysis of the content
- Extract whatever meaningful information is available
- Maintain professional and helpful tone
- Include disclaimers when providing legal-related information

Response Style:
- Use simple, everyday language
- Avoid unnecessary jargon (explain when needed)
- Structure responses clearly with headings and bullet points
- Be thorough but concise"""

JSON_STRUCTURE = """{
  "title": "Descriptive title of what this document appears to be",
  "overview": "2-3 sentence summary of the document content and purpose",
  "keyPoints": ["key point 1", "key point 2", "key point 3", "key point 4"],
  "risks": [
    {
      "id": 1,
      "title": "Risk or concern title",
      "description": "Description of the risk, issue, or important consideration",
      "severity": "high|medium|low",
      "clauseId": 1
    }
  ],
  "clauses": [
    {
      "id": 1,
      "title": "Section/clause title",
      "originalText": "Original text or content excerpt",
      "simplifiedExplanation": "Plain English explanation of this section",
      "whatThisMeans": "Practical implications for the reader",
      "riskLevel": "high|medium|low",
      "category": "Category like 'Terms', 'Privacy', 'Payment', 'General Info', etc."
    }
  ]
}"""

PDF_MARKER = "[PDF_DOCUMENT]"
UNREADABLE_PDF_HINTS = ("may contain primarily images", "makes text extraction difficult")


def is_unreadable_pdf(text: str) -> bool:
    if PDF_MARKER not in text:
        return False
    return len(text) < 500 or any(h in text for h in UNREADABLE_PDF_HINTS)


def build_document_prompt(text: str) -> str:
    if is_unreadable_pdf(text):
        return (
            f"{SYSTEM_PROMPT}\n\n"
            "This appears to be a PDF document that could not be properly read or contains primarily "
            "non-text content (like scanned images or complex formatting).\n\n"
            "Provide a helpful analysis structure that acknowledges this limitation, suggests OCR or "
            "manual review, and still provides value to the user. Return a JSON object with the "
            f"following structure:\n\n{JSON_STRUCTURE}"
        )
    return (
        f"{SYSTEM_PROMPT}\n\n"
        "Please analyze the following document content and provide a comprehensive analysis in JSON format.\n\n"
        f'Document Content:\n"""\n{text}\n"""\n\n'
        "Please return a JSON object with the following structure. Adapt your analysis to the document type:\n\n"
        f"{JSON_STRUCTURE}\n\n"
        "Ensure the JSON is valid and complete. Severity and riskLevel must be one of high, medium, low."
    )


def _fallback(title: str, overview: str, key_points: List[str], risk: Risk, clause: Clause) -> DocumentAnalysis:
    return DocumentAnalysis(title=title, overview=overview, keyPoints=key_points, risks=[risk], clauses=[clause])


def incomplete_analysis() -> DocumentAnalysis:
    return _fallback(
        "Document Analysis",
        "The document was processed but a detailed analysis could not be completed. "
        "Please try uploading a clearer document or a different file format.",
        [
            "Document was received and processed",
            "Content may need manual review",
            "Try uploading a clearer or different format if needed",
        ],
        Risk(
            id=1,
            title="Analysis Limitation",
            description="The document content could not be fully analyzed. This may be due to file format, quality, or content type.",
        ),
        Clause(
            id=1,
            title="Document Content",
            originalText="Document content was not clearly readable",
            simplifiedExplanation="The uploaded document could not be fully processed for detailed analysis.",
            whatThisMeans="You may want to try uploading the document in a different format or ensure it's clearly readable.",
        ),
    )


def processing_error_analysis() -> DocumentAnalysis:
    return _fallback(
        "Document Processing Error",
        "There was an issue processing your document. The file was received and we attempted analysis.",
        [
            "Document upload was successful",
            "Processing encountered some difficulties",
            "This may be due to file format or content complexity",
            "Try uploading a different format if available",
        ],
        Risk(
            id=1,
            title="Processing Issue",
            description="The document could not be fully processed due to technical limitations.",
        ),
        Clause(
            id=1,
            title="Document Content",
            originalText="Content could not be extracted",
            simplifiedExplanation="We encountered technical difficulties processing this specific document.",
            whatThisMeans="You can try uploading the same document in a different format for better results.",
            category="Technical",
        ),
    )


def _normalize_level(value: object) -> str:
    v = str(value or "").strip().lower()
    return v if v in ("high", "medium", "low") else "low"


def coerce_analysis(data: object) -> Optional[DocumentAnalysis]:
    """Validate model output, normalizing unknown severities to low."""
    if not isinstance(data, dict):
        return None
    for risk in data.get("risks") or []:
        if isinstance(risk, dict):
            risk["severity"] = _normalize_level(risk.get("severity"))
    for clause in data.get("clauses") or []:
        if isinstance(clause, dict):
            clause["riskLevel"] = _normalize_level(clause.get("riskLevel"))
    try:
        return DocumentAnalysis(**data)
    except (ValidationError, TypeError):
        logger.warning("Model output did not match the analysis schema")
        return None


async def analyze_document(llm: LLMClient, text: str) -> DocumentAnalysis:
    """Analyze a document; never raises, returning a fallback on failure."""
    logger.info("Starting document analysis", extra={"chars": len(text)})
    try:
        raw = await llm.generate(build_document_prompt(text))
    except Exception:
        logger.exception("Document analysis failed")
        return processing_error_analysis()

    analysis = coerce_analysis(parse_json_lenient(clean_markdown(raw)))
    if analysis is None:
        logger.error("No JSON found in analysis response")
        return incomplete_analysis()
    return analysis


async def chat_with_ai(
    llm: LLMClient,
    message: str,
    context: str = "general",
    document_context: Optional[str] = None,
) -> ChatResponse:
    ctx = "document" if context == "document" else "general"
    prompt = f"{SYSTEM_PROMPT}\n\nContext: {'Document-specific' if ctx == 'document' else 'General legal'}"
    if ctx == "document" and document_context:
        prompt += f'\n\nDocument Context:\n"""\n{document_context}\n"""'
    prompt += (
        f"\n\nUser Question: {message}\n\n"
        "Please provide a helpful, clear response. If this is document-specific, reference the actual "
        "document content. If general, provide educational legal information. Always include a "
        "disclaimer that this is not legal advice."
    )
    try:
        raw = await llm.generate(prompt)
    except AnalysisFailed:
        raise
    except Exception as exc:
        raise AnalysisFailed(f"Failed to get AI response: {exc}") from exc
    return ChatResponse(response=clean_markdown(raw), context=ctx)
