"""Chat with selected documents.

The full text of every selected document goes into the system prompt; the
last HISTORY_TURNS chat messages are replayed as "ROLE: content" lines
ahead of the new question.
"""

import logging
from typing import List, Optional

from docbuilder.llm.gateway import LLMGateway, get_gateway

logger = logging.getLogger("docbuilder.documents.chat")

HISTORY_TURNS = 10


def build_chat_system_prompt(documents: dict) -> str:
    names = ", ".join(documents)
    contents = "\n\n".join(f"{name}:\n{text}" for name, text in documents.items())
    return (
        "You are an assistant that helps answer questions about the following documents:\n"
        f"{names}\n\n"
        "The content of these documents is as follows:\n"
        f"{contents}\n\n"
        "Answer questions based only on the information in these documents. "
        "If the information isn't present, say you don't know."
    )


def build_chat_user_prompt(question: str, history: Optional[List[dict]] = None) -> str:
    recent = (history or [])[-HISTORY_TURNS:]
    lines = [
        f"{str(m.get('role', 'user')).upper()}: {m.get('content', '')}"
        for m in recent if m.get("content")
    ]
    context = "\n".join(lines)
    return f"{context}\n\n{question}" if context else question


def answer_question(question: str, documents: dict,
                    history: Optional[List[dict]] = None,
                    gateway: Optional[LLMGateway] = None,
                    model: Optional[str] = None) -> str:
    """Answer a question from the given {name: text} documents.

    LLMGatewayError propagates to the caller.
    """
    if not question or not question.strip():
        raise ValueError("Question is required")
    if not documents:
        raise ValueError("Select at least one document")
    gateway = gateway or get_gateway()
    logger.info("Chat question over %d documents (%d history turns)",
                len(documents), min(len(history or []), HISTORY_TURNS))
    return gateway.complete(
        build_chat_user_prompt(question.strip(), history),
        system_prompt=build_chat_system_prompt(documents),
        model=model,
    )
