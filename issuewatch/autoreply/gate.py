"""Per-message auto-reply decision.

For each inbound customer message the gate:

1. detects a bot-name mention (case-insensitive substring of any alias);
2. otherwise classifies the message with the primary backend only and
   continues only for questions at or above the confidence threshold;
3. searches the knowledge base;
4. replies when the answer clears the threshold, or when the bot was
   mentioned and any answer exists; a mention without an answer gets the
   fixed not-found reply;
5. opens the issue (``REPLIED`` with the sent text when a reply was
   delivered, else ``PENDING``) and writes one auto-reply log row.

Conversations with auto-reply disabled still get their issue and log row.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from ..analysis.classifier import QuestionClassifier
from ..analysis.lifecycle import IssueLifecycleEngine
from ..backends.errors import BackendError
from ..knowledge.retrieval import KnowledgeAnswer, KnowledgeRetrievalEngine
from ..models import (
    AutoReplyLog,
    Conversation,
    InboundEvent,
    IssueStatus,
    Message,
    Sentiment,
    as_utc,
)
from ..repository import MonitorRepository
from ..settings import MonitorSettings
from .sender import ReplyDeliveryError, ReplySender

logger = logging.getLogger(__name__)

MENTION_CONFIDENCE = 100.0


def mentions_bot(text: str, aliases: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(alias.strip() and alias.strip().lower() in lowered for alias in aliases)


class ConversationLocks:
    """One lock per conversation id; different conversations never block each other."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    @contextmanager
    def hold(self, conversation_id: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(conversation_id, threading.Lock())
        with lock:
            yield


_default_locks = ConversationLocks()


@dataclass
class InboundOutcome:
    processed: bool
    mentioned: bool = False
    is_question: bool = False
    confidence: float = 0.0
    replied: bool = False
    reply_text: Optional[str] = None
    issue_id: Optional[int] = None
    knowledge: Optional[KnowledgeAnswer] = None
    error: Optional[str] = None


class AutoReplyGate:
    def __init__(
        self,
        repository: MonitorRepository,
        classifier: QuestionClassifier,
        retrieval: KnowledgeRetrievalEngine,
        lifecycle: IssueLifecycleEngine,
        sender: ReplySender,
        settings: MonitorSettings,
        *,
        locks: Optional[ConversationLocks] = None,
    ) -> None:
        self._repository = repository
        self._classifier = classifier
        self._retrieval = retrieval
        self._lifecycle = lifecycle
        self._sender = sender
        self._settings = settings
        self._locks = locks or _default_locks

    def handle_inbound_message(self, event: InboundEvent) -> InboundOutcome:
        if event.is_staff_author or not (event.text or "").strip():
            return InboundOutcome(processed=False)
        with self._locks.hold(event.conversation_id):
            return self._handle(event)

    def _handle(self, event: InboundEvent) -> InboundOutcome:
        text = (event.text or "").strip()
        message = self._message_for(event)
        conversation = self._repository.get_conversation(event.conversation_id) or Conversation(
            id=event.conversation_id
        )
        threshold = self._settings.confidence_threshold

        mentioned = mentions_bot(text, self._settings.bot_names)
        summary = text[:200]
        sentiment = Sentiment.NEUTRAL
        suggested_reply: Optional[str] = None
        if mentioned:
            is_question, confidence = True, MENTION_CONFIDENCE
        else:
            try:
                analysis = self._classifier.classify(message)
            except BackendError as exc:
                logger.warning("Classifying message %s failed: %s", message.id, exc)
                return InboundOutcome(processed=False, error=str(exc))
            if analysis is None:
                return InboundOutcome(processed=False)
            is_question, confidence = analysis.is_question, analysis.confidence
            summary = analysis.summary or summary
            sentiment = analysis.sentiment
            suggested_reply = analysis.suggested_reply
            if not is_question or confidence < threshold:
                logger.debug(
                    "Message %s not handled: question=%s confidence=%.0f",
                    message.id,
                    is_question,
                    confidence,
                )
                return InboundOutcome(processed=False, is_question=is_question, confidence=confidence)

        knowledge = self._retrieval.search_knowledge(
            text, conversation.id, message_id=message.id, log=False
        )
        reply_text = self._choose_reply(mentioned, knowledge, conversation)
        replied = bool(reply_text) and self._deliver(conversation.id, reply_text or "")

        issue = self._lifecycle.create_issue(
            message,
            summary=summary,
            sentiment=sentiment,
            suggested_reply=suggested_reply,
            customer_id=conversation.customer_id,
            auto_reply=reply_text if replied else None,
        )
        if issue is None:
            issue = self._repository.get_issue_by_trigger(message.id)
            if issue is not None and replied and issue.status is IssueStatus.PENDING:
                issue = self._lifecycle.mark_auto_replied(issue, reply_text or "")

        self._repository.add_auto_reply_log(
            AutoReplyLog(
                question=text,
                answer=reply_text,
                matched=knowledge.matched,
                confidence=knowledge.confidence,
                knowledge_id=knowledge.entry_id,
                conversation_id=conversation.id,
                message_id=message.id,
                replied=replied,
            )
        )
        return InboundOutcome(
            processed=True,
            mentioned=mentioned,
            is_question=is_question,
            confidence=confidence,
            replied=replied,
            reply_text=reply_text if replied else None,
            issue_id=issue.id if issue is not None else None,
            knowledge=knowledge,
        )

    def _message_for(self, event: InboundEvent) -> Message:
        if event.message_id is not None:
            stored = self._repository.get_message(event.message_id)
            if stored is not None:
                return stored
        return self._repository.add_message(
            event.conversation_id,
            event.external_party_id,
            is_staff=False,
            content=event.text,
            created_at=as_utc(event.timestamp),
        )

    def _choose_reply(
        self, mentioned: bool, knowledge: KnowledgeAnswer, conversation: Conversation
    ) -> Optional[str]:
        if not (self._settings.auto_reply_enabled and conversation.auto_reply_enabled):
            return None
        confident = knowledge.matched and knowledge.confidence >= self._settings.confidence_threshold
        if knowledge.answer and (confident or (mentioned and knowledge.matched)):
            return knowledge.answer
        if mentioned:
            return self._settings.not_found_reply
        return None

    def _deliver(self, conversation_id: int, text: str) -> bool:
        try:
            message_id = self._sender.send(conversation_id, text)
        except ReplyDeliveryError as exc:
            logger.warning("Auto-reply to conversation %s failed: %s", conversation_id, exc)
            return False
        if message_id is None:
            logger.warning("Auto-reply to conversation %s was not delivered", conversation_id)
            return False
        logger.info("Auto-replied in conversation %s", conversation_id)
        return True
