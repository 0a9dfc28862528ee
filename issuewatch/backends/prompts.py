"""Prompt builders for the backend capability operations."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

from langdetect import LangDetectException, detect

from ..models import KnowledgeEntry

MAX_SYNTHESIS_ENTRIES = 5
MAX_ENTRY_ANSWER_CHARS = 2000

_JSON_ONLY = "Reply with the JSON object only, no other text."


def _language(text: str) -> Optional[str]:
    try:
        return detect(text) if text and text.strip() else None
    except LangDetectException:
        return None


def classify_question(text: str) -> str:
    return f"""Decide whether the following customer message is a question that needs an answer.
Respond in JSON:
{{
  "isQuestion": boolean,
  "confidence": number,        // 0-100, how sure you are that this is a question
  "summary": string,           // one-line summary of the question
  "sentiment": "positive" | "neutral" | "negative",
  "suggestedTags": string[],   // 1-3 short category tags
  "suggestedReply": string     // suggested reply, if it is a question
}}

Greetings, thanks and acknowledgements are not questions.
{_JSON_ONLY}

Message:
{text}"""


def evaluate_reply(question: str, reply: str) -> str:
    return f"""Judge whether the reply answers the customer's question. Respond in JSON:
{{
  "relevanceScore": number,      // 0-100
  "isCounterQuestion": boolean,  // true when the reply asks the customer for more information
  "explanation": string
}}

{_JSON_ONLY}

Question:
{question}

Reply:
{reply}"""


def deduplicate_tag(new_tag: str, existing_tags: Sequence[str]) -> str:
    return f"""Decide whether a new tag means the same as one of the existing tags. Respond in JSON:
{{
  "similarTag": string | null,  // the closest existing tag, copied exactly, or null
  "shouldMerge": boolean        // true to reuse the existing tag instead of the new one
}}

{_JSON_ONLY}

New tag: {new_tag}
Existing tags: {", ".join(existing_tags)}"""


def aggregate_sentiment(messages: Sequence[str]) -> str:
    numbered = "\n".join(f"{i}. {message}" for i, message in enumerate(messages, start=1))
    return f"""Assess the overall sentiment of this customer's recent messages (oldest first).
Respond in JSON:
{{
  "sentiment": "positive" | "neutral" | "negative" | "at_risk",
  "reason": string
}}

Use at_risk when the customer looks likely to churn.
{_JSON_ONLY}

Recent messages:
{numbered}"""


def synthesize_answer(query: str, entries: Sequence[KnowledgeEntry]) -> str:
    """Ask for an answer grounded only in ``entries`` (numbered from 1)."""

    blocks = []
    for number, entry in enumerate(entries[:MAX_SYNTHESIS_ENTRIES], start=1):
        answer = entry.answer
        if len(answer) > MAX_ENTRY_ANSWER_CHARS:
            answer = answer[:MAX_ENTRY_ANSWER_CHARS] + "..."
        blocks.append(f"[{number}] {entry.question}\n{answer}")
    context = "\n\n".join(blocks)
    lang = _language(query)
    language_rule = f"\n5. Answer in the language with ISO code '{lang}'" if lang else ""
    return f"""You are a customer support assistant. Answer the user's question from the knowledge base.

Rules:
1. Use only the knowledge base content below
2. If the knowledge base does not cover the question, set canAnswer to false
3. Keep the answer short, professional and well organised
4. List the steps when the answer involves several steps{language_rule}

Question: {query}

Knowledge base:
{context}

Respond in JSON:
{{
  "canAnswer": boolean,
  "answer": string,
  "confidence": number,      // 0-100
  "usedKnowledge": number[]  // numbers of the entries you used
}}"""
