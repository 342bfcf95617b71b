"""
INVOICE BASIS: OCR PAYMENT REFERENCE

Generates Swedish OCR payment references with a modulus-10 (Luhn) check
digit, and verifies them with the same algorithm.
"""

import re
import logging

logger = logging.getLogger(__name__)

NON_DIGITS = re.compile(r"[^0-9]")
PROJECT_SUFFIX_LENGTH = 4
PROJECT_SUFFIX_FALLBACK = "0000"


def _digits(value: str) -> str:
    return NON_DIGITS.sub("", value or "")


def calculate_mod10_check_digit(digits: str) -> int:
    """
    Luhn check digit for a string of digits.

    Weights alternate 2, 1, 2, ... starting from the rightmost digit;
    products above 9 contribute the sum of their digits.
    """
    total = 0
    for position, char in enumerate(reversed(digits)):
        product = int(char) * (2 if position % 2 == 0 else 1)
        if product > 9:
            product -= 9
        total += product
    return (10 - (total % 10)) % 10


def generate_ocr_reference(seed: str) -> str:
    """
    Append a mod-10 check digit to the digits of the seed.

    Non-digit characters (series prefixes, dashes) are dropped first.
    """
    digits = _digits(seed)
    if not digits:
        raise ValueError(f"OCR seed '{seed}' contains no digits")
    return f"{digits}{calculate_mod10_check_digit(digits)}"


def is_valid_ocr_reference(reference: str) -> bool:
    """Verify the trailing check digit of an OCR reference."""
    if not reference or not reference.isdigit() or len(reference) < 2:
        return False
    body, check = reference[:-1], int(reference[-1])
    return calculate_mod10_check_digit(body) == check


def build_ocr_seed(invoice_number: str, project_id: str) -> str:
    """
    Seed for a generated reference: the invoice number followed by the last
    four digits found in the project id ('0000' when it has none).
    """
    suffix = _digits(str(project_id))[-PROJECT_SUFFIX_LENGTH:] or PROJECT_SUFFIX_FALLBACK
    return f"{invoice_number}{suffix}"
