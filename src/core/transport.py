from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class BackendError(RuntimeError):
    """Raised by a transport when a round could not be started."""


@dataclass(slots=True, frozen=True)
class OpenAIConfig:
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None

    def is_empty(self) -> bool:
        return self.api_key is None and self.base_url is None and self.model is None


@dataclass(slots=True, frozen=True)
class HeadlessConfig:
    working_directory: str | None = None
    approval_mode: str | None = None

    def is_empty(self) -> bool:
        return self.working_directory is None and self.approval_mode is None


@dataclass(slots=True, frozen=True)
class SubmitAck:
    ok: bool
    round_id: int


@dataclass(slots=True, frozen=True)
class RetryAck:
    ok: bool
    resent: bool
    round_id: int | None = None


class RoundTransport(Protocol):
    """Outbound requests the chat controller issues to the text backend."""

    def submit_round(
        self,
        text: str,
        openai_config: OpenAIConfig | None = None,
        headless_config: HeadlessConfig | None = None,
    ) -> SubmitAck: ...

    def retry_last(self) -> RetryAck: ...
