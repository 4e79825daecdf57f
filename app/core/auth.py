"""
Request authentication.

Operators authenticate with a bearer token from OPERATOR_API_TOKENS. CSV
uploads additionally accept the scoped IMPORT_API_TOKEN (bearer or
X-Import-Token header) so unattended jobs never hold operator rights.
"""

import logging
import secrets
from typing import Iterable, Optional

from fastapi import Header

from app.core.config import config
from app.core.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

OPERATOR = "operator"
IMPORT_TOKEN = "import_token"


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _matches(candidate: Optional[str], accepted: Iterable[str]) -> bool:
    if not candidate:
        return False
    # Compare against every token so timing does not reveal which one is close
    found = False
    for token in accepted:
        if token and secrets.compare_digest(candidate.encode(), token.encode()):
            found = True
    return found


async def require_operator(authorization: Optional[str] = Header(None)) -> str:
    if _matches(_bearer(authorization), config.operator_tokens):
        return OPERATOR
    logger.info("Rejected request without a valid operator token")
    raise UnauthorizedError("Operator authentication required")


async def require_upload_credential(
    authorization: Optional[str] = Header(None),
    x_import_token: Optional[str] = Header(None),
) -> str:
    """Who is uploading: an operator or the scoped import credential."""
    bearer = _bearer(authorization)
    if _matches(bearer, config.operator_tokens):
        return OPERATOR
    import_tokens = [config.import_api_token] if config.import_api_token else []
    if _matches(x_import_token, import_tokens) or _matches(bearer, import_tokens):
        return IMPORT_TOKEN
    logger.info("Rejected upload without a valid operator or import token")
    raise UnauthorizedError("Operator session or import token required")
