"""
Prompt templates for document classification and analysis.

Every analysis prompt asks for a single JSON object with the keys parsed by
schemas.analysis.AnalysisResult; the per-type suffix only shifts emphasis.
"""

from __future__ import annotations

CLASSIFICATION_PROMPT = """You are a document classification expert. Decide the type of the document below.

Reply with exactly one of these codes and nothing else:
- contract — contracts, agreements, terms and conditions
- email — e-mail messages and threads
- meeting_notes — meeting minutes, discussion summaries, agendas
- quotation — quotations, estimates, invoices, purchase orders

If you cannot decide, reply contract."""


_BASE_ANALYSIS_INSTRUCTION = """You are a professional document analyst. Analyze the document below and return the result as JSON.

The response must follow this format exactly:
{
  "summary": "2-3 sentence summary of the document",
  "entities": {
    "people": ["names of people"],
    "companies": ["company names"],
    "dates": ["dates mentioned"]
  },
  "sentiment": "positive" | "negative" | "neutral",
  "keyPoints": ["key point 1", "key point 2"],
  "actionItems": ["action item 1", "action item 2"],
  "confidence": 0.0-1.0
}

Return only the JSON object, with no surrounding text."""

_TYPE_EMPHASIS: dict[str, str] = {
    "contract": """## Contract focus
- Identify the contracting parties
- Extract the term and every important date
- List the main obligations and responsibilities
- Flag potentially risky clauses
- Extract amounts and payment terms
- actionItems should list clauses that need follow-up""",

    "email": """## E-mail focus
- Identify the intent of sender and recipients
- Extract concrete requests or questions
- Judge the urgency
- List what needs a reply or follow-up
- actionItems should list what must be answered""",

    "meeting_notes": """## Meeting notes focus
- Extract the attendees
- List the key topics discussed
- Identify the decisions taken
- Extract action items and their owners
- Note the date of the next meeting
- actionItems should list each action item with its owner""",

    "quotation": """## Quotation focus
- Identify the quoting party and the customer
- Extract line items and amounts
- Note the total amount and currency
- Extract the validity period
- List payment and delivery terms
- actionItems should list what needs confirmation or a reply""",
}


def get_document_analysis_prompt(analysis_type: str) -> str:
    """Unknown types fall back to the contract emphasis."""
    emphasis = _TYPE_EMPHASIS.get(analysis_type, _TYPE_EMPHASIS["contract"])
    return f"{_BASE_ANALYSIS_INSTRUCTION}\n\n{emphasis}"
