"""Shared look for the Streamlit pages."""

from __future__ import annotations

from html import escape
from typing import Any, Optional

import streamlit as st


_THEME_CSS = """
<style>
:root {
    --forma-accent: #0F766E;
    --forma-accent-soft: #CCFBF1;
    --forma-surface: #FFFFFF;
    --forma-border: rgba(15, 118, 110, 0.22);
    --forma-text: #1F2933;
    --forma-muted: #5F6B7A;
}

html, body {
    font-family: "Inter", "Segoe UI", system-ui, sans-serif;
    color: var(--forma-text);
}

[data-testid="stAppViewContainer"] {
    background: linear-gradient(180deg, #F0FDFA 0%, #FFFFFF 60%);
}

.block-container {
    padding-top: 2.5rem;
    max-width: 1100px;
}

.forma-header {
    display: flex;
    gap: 1rem;
    align-items: center;
    margin-bottom: 1.5rem;
}

.forma-header__icon {
    font-size: 2.2rem;
}

.forma-header__title {
    margin: 0;
    font-size: 2rem;
    font-weight: 700;
}

.forma-header__subtitle {
    margin: 0.25rem 0 0;
    color: var(--forma-muted);
}

.forma-step {
    display: inline-block;
    padding: 0.15rem 0.65rem;
    border-radius: 999px;
    background: var(--forma-accent-soft);
    color: var(--forma-accent);
    font-size: 0.8rem;
    font-weight: 600;
    margin-bottom: 0.5rem;
}

.forma-computed {
    font-size: 1.35rem;
    font-weight: 600;
    color: var(--forma-accent);
}

.stButton>button {
    border-radius: 10px;
    border: 1px solid var(--forma-border);
}
</style>
"""


def apply_app_theme(page_title: str, page_icon: Optional[str] = None) -> None:
    """Set up consistent page configuration and inject the shared CSS theme."""

    st.set_page_config(
        page_title=page_title,
        page_icon=page_icon,
        layout="wide",
        initial_sidebar_state="expanded",
    )
    st.markdown(_THEME_CSS, unsafe_allow_html=True)


def page_header(
    title: str,
    subtitle: Optional[str] = None,
    icon: Optional[str] = None,
    *,
    container: Optional[Any] = None,
) -> None:
    """Render the page title block."""

    icon_markup = f"<span class='forma-header__icon'>{icon}</span>" if icon else ""
    subtitle_markup = (
        f"<p class='forma-header__subtitle'>{escape(subtitle)}</p>" if subtitle else ""
    )
    target = container.markdown if container is not None else st.markdown
    target(
        f"<div class='forma-header'>{icon_markup}<div>"
        f"<h1 class='forma-header__title'>{escape(title)}</h1>{subtitle_markup}"
        "</div></div>",
        unsafe_allow_html=True,
    )


def step_badge(current: int, total: int) -> None:
    st.markdown(f"<span class='forma-step'>Page {current} of {total}</span>", unsafe_allow_html=True)


def render_computed(label: str, value: str) -> None:
    st.markdown(
        f"<div><small>{escape(label)}</small><div class='forma-computed'>{escape(value)}</div></div>",
        unsafe_allow_html=True,
    )


__all__ = ["apply_app_theme", "page_header", "render_computed", "step_badge"]
