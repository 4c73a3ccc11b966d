import re

_PHONE_RE = re.compile(r"^\+7\d{10}$")


def normalize_phone(phone: str) -> str:
    """
    Приводит номер к виду +7XXXXXXXXXX.
      9161234567   -> +79161234567
      79161234567  -> +79161234567
      89161234567  -> +79161234567
      +7 (916) 123-45-67 -> +79161234567
    """
    if not phone:
        raise ValueError("Phone number is required")

    digits = re.sub(r"\D", "", phone)

    if len(digits) == 10:
        normalized = "+7" + digits
    elif len(digits) == 11:
        if digits.startswith("7"):
            normalized = "+" + digits
        elif digits.startswith("8"):
            normalized = "+7" + digits[1:]
        else:
            raise ValueError(f"Invalid phone format: must start with 7 or 8 (got {digits})")
    else:
        raise ValueError(f"Invalid phone length: expected 10 or 11 digits (got {len(digits)})")

    if not _PHONE_RE.match(normalized):
        raise ValueError(f"Phone normalization failed: {normalized}")
    return normalized
