"""
Hostname generation for recovery runs.
"""

import string
import secrets
from typing import Dict, Mapping

from .interfaces import ROLES

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def random_suffix(length: int = 8) -> str:
    return ''.join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def generate_domains(templates: Mapping[str, str], timestamp: int, suffix: str) -> Dict[str, str]:
    """
    Render one hostname per role.

    Pure function of its inputs; templates use ``{timestamp}`` and
    ``{suffix}`` placeholders.
    """
    missing = [role for role in ROLES if role not in templates]
    if missing:
        raise ValueError(f"no domain template for role(s): {', '.join(missing)}")

    return {
        role: templates[role].format(timestamp=timestamp, suffix=suffix).lower()
        for role in ROLES
    }
