import re
from typing import Optional

SIERRA_LEONE_CODE = "232"


def normalize_phone_number(phone: Optional[str]) -> Optional[str]:
    """Normalise a patient-entered number to E.164, assuming Sierra Leone.

    ``076123456`` and ``76123456`` style local numbers get the +232 prefix;
    numbers that already carry a country code are returned stripped of
    separators.
    """
    if not phone:
        return None

    cleaned = re.sub(r"[\s\-()]", "", phone.strip())
    if cleaned.startswith("+"):
        return cleaned
    if re.fullmatch(rf"{SIERRA_LEONE_CODE}\d{{8,9}}", cleaned):
        return f"+{cleaned}"
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    if re.fullmatch(r"\d{8,9}", cleaned):
        return f"+{SIERRA_LEONE_CODE}{cleaned}"
    return cleaned
