from __future__ import annotations

import logging
from dataclasses import dataclass

from .transport import BackendError, RoundTransport

logger = logging.getLogger("MewCompanion")


@dataclass(slots=True, frozen=True)
class FailureNotice:
    title: str
    message: str


class RetryCoordinator:
    """
    One-shot retry path for a failed first message.

    Each failure notice allows exactly one retry. Retrying consumes the notice
    whatever the outcome, so a failed retry is never offered again until the
    backend reports a new first-message failure.
    """

    def __init__(self, transport: RoundTransport) -> None:
        self._transport = transport
        self._notice: FailureNotice | None = None

    @property
    def notice(self) -> FailureNotice | None:
        return self._notice

    @property
    def retry_available(self) -> bool:
        return self._notice is not None

    def notice_failure(self, title: str, message: str) -> FailureNotice:
        self._notice = FailureNotice(title=str(title or ""), message=str(message or ""))
        logger.info("[Retry] First message failed: %s", self._notice.title)
        return self._notice

    def dismiss(self) -> None:
        self._notice = None

    def retry(self) -> int | None:
        """Resend the last failed input; return the new round id or None on failure."""
        if self._notice is None:
            return None
        self._notice = None
        try:
            ack = self._transport.retry_last()
        except BackendError as exc:
            logger.warning("[Retry] Retry request failed: %s", exc)
            return None
        if not ack.ok or not ack.resent or ack.round_id is None:
            logger.warning(
                "[Retry] Retry refused: ok=%s resent=%s round_id=%s",
                ack.ok,
                ack.resent,
                ack.round_id,
            )
            return None
        logger.info("[Retry] Last input resent as round_id=%s", ack.round_id)
        return int(ack.round_id)
