"""Record dataclass for cached idempotent responses."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from expense_idempotency.utils import ensure_datetime


@dataclass
class IdempotencyRecord:
    """The cached outcome of the first successful request for a key.

    Attributes:
        key: Lower-cased idempotency key (canonical UUID text)
        response: Exact JSON text of the response body
        status_code: Status of the original response
        created_at: When the request was first processed successfully
        expires_at: After this instant the record is logically dead
        fingerprint: Digest of the request payload, if one was supplied
        status: "pending" only for claims taken before the operation ran
    """

    key: str
    response: str | None
    status_code: int
    created_at: datetime
    expires_at: datetime
    fingerprint: str | None = None
    status: Literal["pending", "completed"] = "completed"

    def to_dict(self) -> dict[str, object]:
        """Convert record to dictionary for serialization."""
        return {
            "key": self.key,
            "response": self.response,
            "status_code": self.status_code,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "fingerprint": self.fingerprint,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "IdempotencyRecord":
        """Create record from dictionary."""
        status = data.get("status", "completed")
        if status not in ("pending", "completed"):
            raise ValueError(f"Invalid status: {status}")

        response = data.get("response")
        fingerprint = data.get("fingerprint")

        return cls(
            key=str(data["key"]),
            response=str(response) if response is not None else None,
            status_code=int(data["status_code"]),  # type: ignore[arg-type]
            created_at=ensure_datetime(data["created_at"]),
            expires_at=ensure_datetime(data["expires_at"]),
            fingerprint=str(fingerprint) if fingerprint else None,
            status=status,  # type: ignore[arg-type]
        )

    def is_expired(self, now: datetime) -> bool:
        """Check whether the record is past its expiry at ``now``."""
        return now > self.expires_at
