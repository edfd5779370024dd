import asyncio
import io
import os
from pathlib import Path

import streamlit as st

from jt_bridge.client import convert_file, fetch_version

BRIDGE_URL = os.getenv("JT_BRIDGE_URL", "ws://127.0.0.1:9876/")
DEFAULT_TOOL = os.getenv("JT_BRIDGE_AJT2JT", "")


def _reset_state():
    for key in ("version", "jt_bytes", "jt_name", "error"):
        st.session_state.pop(key, None)
    # A fresh uploader key drops the AJT file picked before the restart
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def _check_version() -> str | None:
    try:
        return asyncio.run(fetch_version(BRIDGE_URL))
    except Exception as e:
        st.session_state["error"] = f"Failed to reach bridge: {e}"
        return None


def _convert(uploaded_file: io.BytesIO, tool_path: str) -> bytes | None:
    try:
        source = uploaded_file.getvalue().decode("utf-8")
    except UnicodeDecodeError as e:
        st.session_state["error"] = f"AJT file is not UTF-8 text: {e}"
        return None
    try:
        return asyncio.run(convert_file(tool_path, source, BRIDGE_URL))
    except Exception as e:
        st.session_state["error"] = f"Conversion failed: {e}"
        return None


def main() -> None:
    st.set_page_config(page_title="JT Bridge Console", page_icon="🧊", layout="centered")
    st.title("🧊 JT Bridge Console")
    st.caption(f"Bridge: {BRIDGE_URL}")

    col1, col2 = st.columns([1, 1])
    with col1:
        if st.button("Restart", type="secondary"):
            _reset_state()
            st.rerun()
    with col2:
        if st.button("Check version"):
            version = _check_version()
            if version:
                st.session_state["version"] = version
    if version := st.session_state.get("version"):
        st.info(f"Bridge version {version}")

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    tool_path = st.text_input("Path to ajt2jt converter", value=DEFAULT_TOOL)
    uploaded = st.file_uploader(
        "Upload an AJT file",
        type=["ajt", "txt"],  # type: ignore[arg-type]
        key=f"uploader-{st.session_state['upload_key']}",
    )

    if uploaded and st.button("Convert", type="primary"):
        st.session_state.pop("error", None)
        with st.spinner("Converting..."):
            jt = _convert(uploaded, tool_path)
        if jt is not None:
            st.session_state["jt_bytes"] = jt
            st.session_state["jt_name"] = Path(uploaded.name).with_suffix(".jt").name
            st.toast("Conversion complete", icon="✅")

    if "jt_bytes" in st.session_state:
        st.success(f"Converted {len(st.session_state['jt_bytes'])} bytes")
        st.download_button(
            label="Download JT",
            data=st.session_state["jt_bytes"],
            file_name=st.session_state["jt_name"],
            mime="application/octet-stream",
        )

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
