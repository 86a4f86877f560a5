from __future__ import annotations

import logging
import re
import secrets
from typing import Callable, Optional

from django.conf import settings

logger = logging.getLogger(__name__)

# 32 symbols; 0/O and 1/I are left out so codes survive being read aloud or retyped.
SYNC_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
SYNC_CODE_LENGTH = 6


class SyncCodeAllocationError(RuntimeError):
    pass


def _prefix(prefix: Optional[str] = None) -> str:
    return (prefix or getattr(settings, 'SYNC_CODE_PREFIX', 'SIGNAL')).upper()


def generate_sync_code(prefix: Optional[str] = None) -> str:
    body = ''.join(secrets.choice(SYNC_CODE_ALPHABET) for _ in range(SYNC_CODE_LENGTH))
    return f"{_prefix(prefix)}-{body}"


def normalize_sync_code(raw: Optional[str], prefix: Optional[str] = None) -> str:
    """Uppercase ``raw`` and make sure it carries the ``PREFIX-`` marker.

    ``"signal-abc234"`` and ``"abc234"`` both become ``"SIGNAL-ABC234"``.
    """
    code = (raw or '').strip().upper()
    marker = f"{_prefix(prefix)}-"
    if not code.startswith(marker):
        code = f"{marker}{code}"
    return code


def is_well_formed(code: str, prefix: Optional[str] = None) -> bool:
    pattern = rf"{re.escape(_prefix(prefix))}-[{SYNC_CODE_ALPHABET}]{{{SYNC_CODE_LENGTH}}}"
    return bool(re.fullmatch(pattern, code or ''))


def allocate_sync_code(
    exists: Callable[[str], bool],
    *,
    max_attempts: Optional[int] = None,
    generate: Optional[Callable[[], str]] = None,
) -> str:
    """Return a fresh sync code for which ``exists`` reports False.

    Gives up with :class:`SyncCodeAllocationError` after ``max_attempts``
    candidates (``SYNC_CODE_MAX_ATTEMPTS``, default 10) all collided.
    """
    if max_attempts is None:
        max_attempts = getattr(settings, 'SYNC_CODE_MAX_ATTEMPTS', 10)
    generate = generate or generate_sync_code
    for attempt in range(1, max_attempts + 1):
        candidate = generate()
        if not exists(candidate):
            return candidate
        logger.info("sync_code_collision", extra={"attempt": attempt})
    logger.error("sync_code_allocation_exhausted", extra={"attempts": max_attempts})
    raise SyncCodeAllocationError('Failed to generate unique sync code')
