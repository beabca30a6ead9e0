import random
import re
from datetime import datetime
from typing import Any, Dict, Optional
from material_store.models.base import now_local

# TMP-<CATEGORY>-<YYYYMMDD>-<NNNN>, e.g. TMP-SMN-20240115-4829
INTERNAL_PATTERN = re.compile(r"^TMP-[A-Z0-9]{1,5}-\d{8}-\d{4}$")
EAN8_PATTERN = re.compile(r"^\d{8}$")
EAN13_PATTERN = re.compile(r"^\d{13}$")


def category_code(name: Optional[str]) -> str:
    return name[:3] if name else "GEN"


def generate_barcode(code: str = "GEN", today: Optional[datetime] = None) -> str:
    code = re.sub(r"[^A-Z0-9]", "", (code or "GEN").upper())[:5] or "GEN"
    today = today or now_local()
    return f"TMP-{code}-{today.strftime('%Y%m%d')}-{random.randint(1000, 9999)}"


def validate_barcode(barcode: Any) -> Dict[str, Any]:
    if not barcode or not isinstance(barcode, str):
        return {"valid": False, "format": None, "message": "Barcode must not be empty"}

    value = barcode.strip()

    if value.startswith("TMP-"):
        if INTERNAL_PATTERN.match(value):
            return {"valid": True, "format": "INTERNAL", "message": "Valid internal barcode"}
        return {"valid": False, "format": None, "message": "Invalid internal barcode (TMP-XXX-YYYYMMDD-NNNN)"}

    if EAN8_PATTERN.match(value):
        return {"valid": True, "format": "EAN-8", "message": "Valid EAN-8 barcode"}
    if EAN13_PATTERN.match(value):
        return {"valid": True, "format": "EAN-13", "message": "Valid EAN-13 barcode"}

    if 3 <= len(value) <= 50:
        return {"valid": True, "format": "CUSTOM", "message": "Valid custom barcode"}

    return {"valid": False, "format": None, "message": "Invalid barcode (3 to 50 characters)"}
