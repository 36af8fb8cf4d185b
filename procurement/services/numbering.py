import secrets
from datetime import datetime

PR_PREFIX = "PR"
PO_PREFIX = "PO"
IAR_PREFIX = "IAR"
DV_PREFIX = "DV"


def generate_document_number(prefix: str) -> str:
    """``<PREFIX>-<UTC timestamp>-<4 hex>``; the unique column catches collisions."""
    stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
    return f"{prefix}-{stamp}-{secrets.token_hex(2).upper()}"
