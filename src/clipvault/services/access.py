import hmac
from typing import Optional

from clipvault.errors import AccessDenied


class AccessGate:

    def __init__(self, admin_key: str) -> None:
        self._admin_key = admin_key

    def allows(self, provided: Optional[str]) -> bool:
        if not provided or not self._admin_key:
            return False
        return hmac.compare_digest(provided.encode("utf-8"), self._admin_key.encode("utf-8"))

    def require(self, provided: Optional[str]) -> None:
        if not self.allows(provided):
            raise AccessDenied()
