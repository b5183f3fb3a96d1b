from typing import Any, Dict, Tuple


def unwrap_envelope(body: Any) -> Tuple[bool, str, Dict[str, Any]]:
    """
    The remote system answers with several envelope variants:

      {"success": true, "message": "...", "data": {...}, "code": 200}
      {"data": {...}}                      (no success flag)
      {...}                                (bare payload)

    Returns (ok, message, data) where `data` is always a dict. `ok` is False only
    when the envelope explicitly says `success: false`.
    """
    if not isinstance(body, dict):
        return True, "", {}

    message = body.get("message") if isinstance(body.get("message"), str) else ""
    ok = body.get("success") is not False

    if "data" in body and ("success" in body or "code" in body or len(body) == 1):
        data = body.get("data")
        if isinstance(data, dict):
            return ok, message, data
        # success-only answers (e.g. resend) carry a non-dict `data`
        return ok, message, {"value": data} if data is not None else {}

    return ok, message, body
