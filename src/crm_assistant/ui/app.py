from __future__ import annotations

import logging
import traceback
from typing import List, Optional

import pandas as pd
import streamlit as st

from crm_assistant.config import APP_NAME, APP_VERSION, ASSISTANT_NAME, CURRENT_USER_ID
from crm_assistant.conversation.orchestrator import ChatAssistant
from crm_assistant.conversation.prompt_composer import PROMPT_MODES, ContextPayloadError, mode_display_name
from crm_assistant.conversation.structure_detector import strip_table_marker
from crm_assistant.conversation.types import ASSISTANT, Message, TableData
from crm_assistant.core.entity_matcher import RegionLookup
from crm_assistant.core.snapshot_loader import (
    CurrentUser,
    EntitySnapshot,
    SnapshotLoaderError,
    fetch_current_user,
    fetch_snapshot,
)

logger = logging.getLogger(__name__)

ANALYSIS_MODES = ["default"] + [m for m in PROMPT_MODES if m != "chat"]


def _table_frame(table: TableData) -> pd.DataFrame:
    """DataFrame for display; short rows are padded, long rows truncated to the header."""
    width = len(table.headers)
    rows: List[List[str]] = []
    for row in table.rows:
        padded = list(row[:width]) + [""] * max(0, width - len(row))
        rows.append(padded)
    return pd.DataFrame(rows, columns=table.headers)


# ---------------------------------------------------------------------------
# Session bootstrap
# ---------------------------------------------------------------------------

def _load_current_user() -> Optional[CurrentUser]:
    if not CURRENT_USER_ID:
        return None
    try:
        return fetch_current_user(CURRENT_USER_ID)
    except SnapshotLoaderError as exc:
        st.warning(f"Kullanıcı bilgisi alınamadı: {exc}")
        return None


def _get_assistant() -> Optional[ChatAssistant]:
    if "assistant" in st.session_state:
        return st.session_state["assistant"]

    try:
        with st.spinner("CRM verileri yükleniyor..."):
            snapshot = fetch_snapshot()
    except SnapshotLoaderError as exc:
        st.error(f"CRM verileri yüklenemedi: {exc}")
        return None

    assistant = ChatAssistant(
        snapshot=snapshot,
        current_user=_load_current_user(),
        region_lookup=RegionLookup.from_file(),
    )
    st.session_state["assistant"] = assistant
    return assistant


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

def _render_message(message: Message) -> None:
    role = "assistant" if message.sender == ASSISTANT else "user"
    with st.chat_message(role):
        if message.data_type == "table" and message.table_data is not None:
            st.markdown(strip_table_marker(message.text))
            if message.table_data.title:
                st.caption(message.table_data.title)
            st.dataframe(_table_frame(message.table_data), use_container_width=True, hide_index=True)
        else:
            st.markdown(message.text)


def _render_chat_area(assistant: ChatAssistant) -> None:
    st.subheader(f"{ASSISTANT_NAME} ile sohbet")

    col1, col2 = st.columns([3, 1])
    with col1:
        grounded = st.toggle(
            "CRM verileriyle yanıtla",
            value=True,
            help="Kapalıyken seçilen modda serbest sohbet yapılır, kayıt araması yapılmaz.",
        )
    with col2:
        if st.button("Sohbeti temizle"):
            assistant.clear()

    mode = "chat"
    if not grounded:
        mode = st.selectbox("Mod", options=list(PROMPT_MODES), format_func=mode_display_name)

    for message in assistant.messages:
        _render_message(message)

    busy = st.session_state.get("busy", False)
    text = st.chat_input("Bir soru yazın...", disabled=busy)
    if not text:
        return

    st.session_state["busy"] = True
    try:
        with st.spinner("Yanıt hazırlanıyor..."):
            if grounded:
                assistant.send(text)
            else:
                assistant.chat(text, mode=mode)
    finally:
        st.session_state["busy"] = False
    st.rerun()


# ---------------------------------------------------------------------------
# Developer panels
# ---------------------------------------------------------------------------

def _render_snapshot_status(assistant: ChatAssistant) -> None:
    with st.expander("Veri durumu (geliştirici görünümü)", expanded=False):
        user = assistant.state.current_user
        if user is None:
            st.write("Oturum: anonim (CRM_CURRENT_USER_ID tanımlı değil)")
        else:
            st.write(f"Oturum: {user.name} ({user.role})")

        counts = assistant.snapshot.counts()
        st.dataframe(
            pd.DataFrame({"Koleksiyon": list(counts), "Kayıt": list(counts.values())}),
            use_container_width=True,
            hide_index=True,
        )

        if st.button("Verileri yenile"):
            try:
                with st.spinner("CRM verileri yükleniyor..."):
                    snapshot: EntitySnapshot = fetch_snapshot()
                assistant.refresh_snapshot(snapshot)
                st.success("Veriler yenilendi.")
            except SnapshotLoaderError:
                st.error("Veriler yenilenirken hata oluştu.")
                st.text_area("Traceback", value=traceback.format_exc(), height=220)


def _render_analysis_tester(assistant: ChatAssistant) -> None:
    with st.expander("AI analiz testi (geliştirici görünümü)", expanded=False):
        mode = st.selectbox("Prompt tipi", options=ANALYSIS_MODES, format_func=mode_display_name, key="analysis_mode")
        prompt = st.text_area("Analiz edilecek metin", value="", height=120)
        context_raw = st.text_area("Bağlam verisi (JSON, isteğe bağlı)", value="", height=120)

        if st.button("Analiz et", key="run_analysis_btn"):
            if not prompt.strip():
                st.warning("Lütfen analiz edilecek bir metin girin.")
                return
            try:
                with st.spinner("Analiz ediliyor..."):
                    result = assistant.analyze(prompt, mode=mode, context_payload=context_raw)
            except ContextPayloadError as exc:
                st.error(str(exc))
                return

            if result.error:
                st.error(f"AI analizi başarısız: {result.error}")
                return
            st.success("Analiz tamamlandı.")
            st.markdown(result.result)
            if result.raw is not None:
                st.json(result.raw, expanded=False)


def run_app() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    st.set_page_config(page_title=APP_NAME, page_icon="🤖", layout="wide")
    st.title(APP_NAME)
    st.caption(f"Sürüm {APP_VERSION}")

    assistant = _get_assistant()
    if assistant is None:
        return

    _render_chat_area(assistant)
    _render_snapshot_status(assistant)
    _render_analysis_tester(assistant)
