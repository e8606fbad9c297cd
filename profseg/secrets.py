from __future__ import annotations

import os
from typing import Optional


def get_api_key() -> Optional[str]:
    """API key for the chat endpoint: PROFSEG_API_KEY, then OPENAI_API_KEY."""
    for name in ("PROFSEG_API_KEY", "OPENAI_API_KEY"):
        v = (os.getenv(name) or "").strip()
        if v:
            return v
    return None
