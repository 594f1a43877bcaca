"""
Streamlit app entrypoint - navigation and shared services.

This module builds the page navigation and owns the process-wide service
objects (provider data manager, geocoder, AI service, backend client). Pages
get them through ``get_services()``, which is cached with
``st.cache_resource`` so the CMS extract is parsed once per process.
"""

from __future__ import annotations

import logging

import streamlit as st

st.set_page_config(page_title="MediConnect", page_icon=":hospital:", layout="wide")

logger = logging.getLogger(__name__)

from mediconnect.app_logic import Services, build_services  # noqa: E402 - must import after set_page_config
from mediconnect.utils.config import configure_logging, validate_configuration  # noqa: E402

__all__ = ["get_services", "show_configuration_warnings"]


@st.cache_resource
def get_services() -> Services:
    """Build the pipeline collaborators once per process."""
    configure_logging()
    for component, issue in validate_configuration().items():
        logger.warning(f"Configuration issue ({component}): {issue}")
    return build_services()


def show_configuration_warnings():
    """Show configuration problems, if any, in a collapsed expander."""
    issues = validate_configuration()
    if not issues:
        return
    with st.expander("⚠️ Configuration notices", expanded=False):
        for component, issue in issues.items():
            st.write(f"- **{component}**: {issue}")


_nav_items = [
    ("pages/0_🏠_home.py", "Home", "🏠"),
    ("pages/1_🔎_Find_a_Doctor.py", "Find a Doctor", "🔎"),
    ("pages/2_📄_Results.py", "Results", "📄"),
    ("pages/3_🩺_Symptom_Check.py", "Symptom Check", "🩺"),
    ("pages/4_🚨_Emergency_Alert.py", "Emergency Alert", "🚨"),
    ("pages/20_📊_Data_Dashboard.py", "Data Dashboard", "📊"),
]


def _build_and_run_app():
    """Build navigation and warm the shared services.

    Intentionally encapsulated to prevent duplicate rendering when pages import app.
    """
    try:
        get_services()
    except Exception as e:
        logger.warning(f"Could not initialise services on app load: {e}")

    nav_pages = [st.Page(path, title=title, icon=icon) for path, title, icon in _nav_items]
    pg = st.navigation(nav_pages)
    pg.run()


if __name__ == "__main__":
    _build_and_run_app()
