from __future__ import annotations

import logging
from typing import Callable, Optional

import pandas as pd

from crm_assistant.conversation.cascade import ResolverCascade
from crm_assistant.conversation.prompt_composer import (
    compose_analysis_prompt,
    compose_prompt,
    mode_display_name,
    parse_context_payload,
    system_prompt_for,
)
from crm_assistant.conversation.relevance import is_business_related
from crm_assistant.conversation.structure_detector import package_response
from crm_assistant.conversation.types import ASSISTANT, USER, ConversationState, Message
from crm_assistant.core.entity_matcher import RegionLookup
from crm_assistant.core.llm_client import ChatResult, GenerativeClient, LLMClientError
from crm_assistant.core.snapshot_loader import CurrentUser, EntitySnapshot
from crm_assistant.core.time_windows import local_now

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Merhaba! Ben ART AI. Size nasıl yardımcı olabilirim?"
CLEARED_MESSAGE = "Sohbet temizlendi. Size nasıl yardımcı olabilirim?"
REFUSAL_MESSAGE = (
    "Üzgünüm, sadece CRM sistemi ile ilgili konularda (klinikler, teklifler, raporlar, ziyaretler, "
    "ürünler, kampanyalar vb.) yardımcı olabilirim. Lütfen iş ile ilgili bir soru sorunuz."
)
ERROR_MESSAGE = "Üzgünüm, isteğinizi işlerken bir hata oluştu. Lütfen tekrar deneyin."
CHAT_ERROR_MESSAGE = "Üzgünüm, bir hata oluştu. Lütfen tekrar deneyin."


class ChatAssistant:
    """
    One conversation: relevance check, grounded retrieval, prompt, model
    call and response packaging. Every call appends to the message log.
    """

    def __init__(
        self,
        snapshot: EntitySnapshot,
        current_user: Optional[CurrentUser] = None,
        client: Optional[GenerativeClient] = None,
        region_lookup: Optional[RegionLookup] = None,
        clock: Optional[Callable[[], pd.Timestamp]] = None,
        cascade: Optional[ResolverCascade] = None,
    ):
        self.snapshot = snapshot
        self.client = client if client is not None else GenerativeClient()
        self.cascade = cascade if cascade is not None else ResolverCascade(region_lookup=region_lookup)
        self.state = ConversationState(current_user=current_user, clock=clock or local_now)
        self.state.append(Message(sender=ASSISTANT, text=WELCOME_MESSAGE))

    @property
    def messages(self):
        return self.state.messages

    def refresh_snapshot(self, snapshot: EntitySnapshot) -> None:
        self.snapshot = snapshot

    def _reply(self, text: str) -> Message:
        return self.state.append(Message(sender=ASSISTANT, text=text))

    # ------------------------------------------------------------------
    # Grounded question answering
    # ------------------------------------------------------------------

    def send(self, text: str) -> Optional[Message]:
        """Answer one user message. Blank input is ignored and returns None."""
        text = (text or "").strip()
        if not text:
            return None
        self.state.append(Message(sender=USER, text=text))

        related = is_business_related(text) or self.cascade.refers_to_earlier_answer(text, self.snapshot, self.state)
        if not related:
            logger.info("Out-of-domain message refused")
            return self._reply(REFUSAL_MESSAGE)

        resolution = self.cascade.resolve(text, self.snapshot, self.state)
        prompt = compose_prompt(text, resolution, self.state.current_user)
        try:
            reply = self.client.generate_text(prompt)
        except LLMClientError:
            logger.exception("Model call failed for resolver %r", resolution.resolver or "generic")
            return self._reply(ERROR_MESSAGE)

        return self.state.append(package_response(reply, resolution.retrieved))

    # ------------------------------------------------------------------
    # Free chat and analysis modes
    # ------------------------------------------------------------------

    def chat(self, text: str, mode: str = "chat") -> Optional[Message]:
        """Multi-turn chat over the whole log with a mode-specific system prompt, no retrieval."""
        text = (text or "").strip()
        if not text:
            return None
        self.state.append(Message(sender=USER, text=text))

        result = self.client.chat(self.state.messages, system_prompt_for(mode))
        if result.error or not result.result:
            logger.error("Chat call failed in mode %s: %s", mode, result.error)
            return self._reply(CHAT_ERROR_MESSAGE)
        return self._reply(result.result)

    def change_mode(self, mode: str) -> Message:
        return self._reply(f"Mod değiştirildi: {mode_display_name(mode)}. Bu modda size nasıl yardımcı olabilirim?")

    def analyze(self, prompt: str, mode: str = "default", context_payload: Optional[str] = None) -> ChatResult:
        """
        One-off analysis outside the conversation log.

        Raises ContextPayloadError when `context_payload` is not a JSON object.
        """
        context = parse_context_payload(context_payload)
        composed = compose_analysis_prompt(prompt, context)
        return self.client.chat([Message(sender=USER, text=composed)], system_prompt_for(mode))

    def clear(self) -> Message:
        self.state.messages.clear()
        self.state.last_grounded = None
        return self._reply(CLEARED_MESSAGE)
