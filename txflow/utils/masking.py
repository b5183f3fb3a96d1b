def mask_phone_number(phone: str) -> str:
    """Keep the first 3 and last 2 characters, e.g. 0912345678 -> 091*****78."""
    phone = (phone or "").strip()
    if len(phone) <= 4:
        return phone
    return f"{phone[:3]}{'*' * (len(phone) - 5)}{phone[-2:]}"


def looks_masked(phone: str) -> bool:
    return "*" in (phone or "")
