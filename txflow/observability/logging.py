import json
import time
from txflow.settings import settings
from txflow.utils.masking import mask_phone_number

# OTP codes, signature images and credentials never reach the log stream
SECRET_KEYS = {"code", "otp", "signature", "sign_base64", "token"}
# Phone numbers keep the shape the user sees on screen (091*****78)
PHONE_KEYS = {"phoneNumber", "phone_number"}


def _scrub(key, value):
    if isinstance(value, dict):
        return {k: _scrub(key if key in SECRET_KEYS else k, v) for k, v in value.items()}
    if isinstance(value, list):
        return [_scrub(key, v) for v in value]
    if not isinstance(value, str) or not value:
        return value
    if key in SECRET_KEYS:
        return f"[REDACTED:{len(value)}chars]"
    if key in PHONE_KEYS:
        return mask_phone_number(value)
    return value


def log(event: str, **fields):
    """One JSON object per line: ts, event, then the caller's fields."""
    payload = {"ts": int(time.time()), "event": event}
    if settings.ENABLE_PII_REDACTION:
        fields = {k: _scrub(k, v) for k, v in fields.items()}
    payload.update(fields)

    try:
        print(json.dumps(payload, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        # Logging never raises into callers
        pass
