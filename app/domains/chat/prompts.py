"""Prompt templates for condensing questions and answering over documents."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.core.config import PromptProfileEnum


if TYPE_CHECKING:
    from app.domains.chat.history import HistoryEntry
    from app.domains.chat.retriever import RetrievedChunk


NO_DOCUMENTS_CONTEXT = (
    "No relevant documents found. Please upload a document first or try a different question."
)

CONDENSE_TEMPLATE = """Given the conversation and follow up question, rephrase the follow up question as a standalone question about the uploaded documents.
Keep the language of the original question. Return only the standalone question.

Chat History:
{chat_history}

Follow Up Question: {question}
Standalone question:"""

QA_TEMPLATE = """You are a document analysis assistant that helps users understand and extract insights from their uploaded documents.
Use the following context from the uploaded documents to answer the question. If you are unsure, say that you don't know.

Context:
{context}

Chat History:
{chat_history}

Question: {question}
Answer:"""

MARKETING_TEMPLATE = """You are a digital marketing manager. Only talk about marketing content; for anything else answer "I am a marketing chatbot, I do not have an answer to your question."
Use the context and the chat history below to answer the question at the end. If you don't know the answer, say that you don't know instead of making one up.

Context:
{context}

Chat History:
{chat_history}

Question: {question}
Answer:"""


@dataclass(frozen=True)
class PromptProfile:
    """A named answering persona."""

    name: str
    answer_template: str
    condense_template: str = CONDENSE_TEMPLATE


PROMPT_PROFILES: dict[str, PromptProfile] = {
    PromptProfileEnum.documents.value: PromptProfile(name="documents", answer_template=QA_TEMPLATE),
    PromptProfileEnum.marketing.value: PromptProfile(name="marketing", answer_template=MARKETING_TEMPLATE),
}


def get_prompt_profile(name: str | PromptProfileEnum) -> PromptProfile:
    key = name.value if isinstance(name, PromptProfileEnum) else name
    try:
        return PROMPT_PROFILES[key]
    except KeyError:
        raise ValueError(f"Unknown prompt profile: {key}") from None


def format_history(history: Iterable["HistoryEntry"]) -> str:
    """Render history as ``role: content`` lines, oldest first."""
    return "\n".join(f"{entry.role}: {entry.content}" for entry in history)


def build_context(chunks: Sequence["RetrievedChunk"]) -> str:
    """Join retrieved chunks in rank order, or the no-documents sentinel."""
    if not chunks:
        return NO_DOCUMENTS_CONTEXT
    return "\n\n".join(chunk.text for chunk in sorted(chunks, key=lambda c: c.rank))


def build_condense_prompt(question: str, history: Sequence["HistoryEntry"], profile: PromptProfile) -> str:
    return profile.condense_template.format(chat_history=format_history(history), question=question)


def build_answer_prompt(
    question: str,
    context: str,
    history: Sequence["HistoryEntry"],
    profile: PromptProfile,
) -> str:
    return profile.answer_template.format(
        context=context,
        chat_history=format_history(history),
        question=question,
    )
