# libs/phone.py
import re

COUNTRY_CODE = "254"

_NON_DIGIT = re.compile(r"\D")


def format_phone_number(phone: str) -> str:
    """
    Chuẩn hoá số điện thoại Kenya về dạng 254XXXXXXXXX (không có dấu +).
    "0712345678" -> "254712345678", "+254 712 345 678" -> "254712345678",
    "712345678" -> "254712345678".
    """
    cleaned = _NON_DIGIT.sub("", phone or "")

    if cleaned.startswith("0"):
        cleaned = COUNTRY_CODE + cleaned[1:]

    if not cleaned.startswith(COUNTRY_CODE):
        cleaned = COUNTRY_CODE + cleaned

    return cleaned


def is_valid_msisdn(phone: str) -> bool:
    return bool(re.fullmatch(r"254\d{9}", phone or ""))
