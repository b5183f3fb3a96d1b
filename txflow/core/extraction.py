"""
Defensive extraction from loosely-structured job responses
----------------------------------------------------------
The job-status endpoint does not commit to one shape: the status can sit at
`result.status` or at the top level, and the result file URL has a well-known
nested location but sometimes appears elsewhere. Each lookup is a small,
independently testable strategy; extractors try them in order and take the
first usable value.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Optional, Sequence

from txflow.core.state_machine import JOB_PENDING, JOB_COMPLETED, JOB_FAILED

Strategy = Callable[[Dict[str, Any]], Optional[str]]

FILE_URL_KEY = "file_url"

# result.uploadFileEcontractS3.unsigned_file.file_url
WELL_KNOWN_URL_PATH = ("result", "uploadFileEcontractS3", "unsigned_file", FILE_URL_KEY)

DEFAULT_FAILURE_MESSAGE = "Job processing failed."

_STATUS_MAP = {
    "pending": JOB_PENDING,
    "completed": JOB_COMPLETED,
    "failed": JOB_FAILED,
}


def _as_str(v: Any) -> Optional[str]:
    if isinstance(v, str):
        s = v.strip()
        return s or None
    return None


def _result_object(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    res = payload.get("result") if isinstance(payload, dict) else None
    return res if isinstance(res, dict) else None


def dig(payload: Any, path: Sequence[str]) -> Any:
    cur = payload
    for k in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(k)
    return cur


# ---- status -----------------------------------------------------------------

def nested_status(payload: Dict[str, Any]) -> Optional[str]:
    res = _result_object(payload)
    return _as_str(res.get("status")) if res else None


def top_level_status(payload: Dict[str, Any]) -> Optional[str]:
    return _as_str(payload.get("status")) if isinstance(payload, dict) else None


STATUS_STRATEGIES: Sequence[Strategy] = (nested_status, top_level_status)


def extract_status(payload: Any, strategies: Sequence[Strategy] = STATUS_STRATEGIES) -> str:
    """
    Map a status response to a Job state. Missing or unrecognized status is
    PENDING, never an error.
    """
    if not isinstance(payload, dict):
        return JOB_PENDING
    for strategy in strategies:
        raw = strategy(payload)
        if raw:
            return _STATUS_MAP.get(raw.lower(), JOB_PENDING)
    return JOB_PENDING


# ---- result URL -------------------------------------------------------------

def well_known_file_url(payload: Dict[str, Any]) -> Optional[str]:
    return _as_str(dig(payload, WELL_KNOWN_URL_PATH))


def scan_file_url(payload: Any) -> Optional[str]:
    """Depth-first search for the first string field named exactly `file_url`."""
    if isinstance(payload, dict):
        for k, v in payload.items():
            if k == FILE_URL_KEY and isinstance(v, str) and v.strip():
                return v.strip()
            if isinstance(v, (dict, list)):
                found = scan_file_url(v)
                if found:
                    return found
    elif isinstance(payload, list):
        for item in payload:
            found = scan_file_url(item)
            if found:
                return found
    return None


URL_STRATEGIES: Sequence[Strategy] = (well_known_file_url, scan_file_url)


def normalize_url(url: str) -> str:
    return re.sub(r"\s", "%20", url)


def extract_result_url(payload: Any, strategies: Sequence[Strategy] = URL_STRATEGIES) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for strategy in strategies:
        url = strategy(payload)
        if url:
            return normalize_url(url)
    return None


# ---- failure message ----------------------------------------------------------

def nested_message(payload: Dict[str, Any]) -> Optional[str]:
    res = _result_object(payload)
    return _as_str(res.get("message")) if res else None


def top_level_message(payload: Dict[str, Any]) -> Optional[str]:
    return _as_str(payload.get("message")) if isinstance(payload, dict) else None


MESSAGE_STRATEGIES: Sequence[Strategy] = (nested_message, top_level_message)


def extract_error_message(payload: Any, strategies: Sequence[Strategy] = MESSAGE_STRATEGIES) -> str:
    if isinstance(payload, dict):
        for strategy in strategies:
            msg = strategy(payload)
            if msg:
                return msg
    return DEFAULT_FAILURE_MESSAGE
