import re

PHONE_PLACEHOLDER = "***-***-****"
_NON_DIGIT_RE = re.compile(r"\D")


def mask_email(email: str) -> str:
    """Keep the first character of the local part and the whole domain."""
    local, separator, domain = email.partition("@")
    if not separator or not local or not domain:
        return email
    return f"{local[0]}***@{domain}"


def mask_phone(phone: str | None) -> str:
    if not phone:
        return PHONE_PLACEHOLDER
    digits = _NON_DIGIT_RE.sub("", phone)
    if len(digits) < 4:
        return PHONE_PLACEHOLDER
    return f"***-***-{digits[-4:]}"
