from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from crud6.core.config import settings


def parse_model_name(name: str) -> Tuple[str, Optional[str]]:
    """Split ``model@connection`` into its parts."""
    model, sep, connection = name.partition("@")
    return model, (connection or None) if sep else None


def substitute_pivot_data(
    pivot_data: Dict[str, Any],
    current_user: Any = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Replace the symbolic pivot values now, current_user and current_date."""
    now = now or settings.get_now()
    values = {}
    for key, value in pivot_data.items():
        if value == "now":
            value = now
        elif value == "current_user":
            value = current_user
        elif value == "current_date":
            value = now.date()
        values[key] = value
    return values


def title_from_name(name: str) -> str:
    return name.replace("_", " ").title()
