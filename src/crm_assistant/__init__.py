"""
ART AI CRM assistant.

Answers Turkish questions about clinic-CRM records by grounding a
generative-language call in records retrieved from a pre-fetched snapshot.
"""

from crm_assistant.config import APP_NAME, APP_VERSION

__version__ = APP_VERSION

__all__ = ["APP_NAME", "__version__"]
