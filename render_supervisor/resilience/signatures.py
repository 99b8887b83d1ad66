"""
Error Signature Tracker

Fingerprints backend failures and counts how often a new failure repeats
recent ones. The counts are one of two independent inputs into the circuit
breaker's transition function (the other is the mount-cycle guard).

Two signatures are:
    identical: same message, same kind, same stack prefix
    similar:   same kind, and one message's leading characters occur
               inside the other message

Identical implies similar, so the similar count is never below the
identical count.
"""

import traceback
from dataclasses import dataclass
from typing import Iterable, Optional

from render_supervisor.core.config import Settings, get_settings
from render_supervisor.models.domain import ErrorKind, ErrorSignature


def format_stack(error: BaseException) -> str:
    """Return the formatted traceback of an exception, or "" if it has none."""
    if error.__traceback__ is None:
        return ""
    return "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )


@dataclass(frozen=True)
class SignatureMatch:
    """Repeat counts of one signature within the recent-history window."""

    identical: int = 0
    similar: int = 0


class ErrorSignatureTracker:
    """
    Builds and compares error signatures.

    The tracker holds no history of its own: each breaker keeps a bounded
    deque of signatures and hands it to count_matches().

    Attributes:
        window_seconds: Only signatures younger than this are counted
        stack_prefix_chars: Stack characters compared for identity
        stored_stack_chars: Stack characters kept in a signature
        similar_prefix_chars: Message prefix length used for similarity
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        self.window_seconds = settings.signature_window_seconds
        self.stack_prefix_chars = settings.stack_prefix_chars
        self.stored_stack_chars = settings.stored_stack_chars
        self.similar_prefix_chars = settings.similar_prefix_chars

    def build(
        self,
        message: str,
        kind: ErrorKind,
        now: float,
        stack: str = "",
        context_stack: str = "",
    ) -> ErrorSignature:
        """
        Create an immutable signature with bounded stack prefixes.

        Args:
            message: Failure message
            kind: Classified ErrorKind
            now: Clock reading of the failure
            stack: Failure stack trace
            context_stack: Host component stack, if any

        Returns:
            ErrorSignature
        """
        return ErrorSignature(
            message=message,
            stack_prefix=stack[: self.stored_stack_chars],
            kind=kind,
            timestamp=now,
            context_stack_prefix=context_stack[: self.stored_stack_chars],
        )

    def identical(self, a: ErrorSignature, b: ErrorSignature) -> bool:
        """Equal message, equal kind, equal stack prefix."""
        n = self.stack_prefix_chars
        return (
            a.message == b.message
            and a.kind == b.kind
            and a.stack_prefix[:n] == b.stack_prefix[:n]
        )

    def similar(self, a: ErrorSignature, b: ErrorSignature) -> bool:
        """Same kind, and one message's prefix is a substring of the other."""
        if a.kind != b.kind:
            return False
        n = self.similar_prefix_chars
        return a.message[:n] in b.message or b.message[:n] in a.message

    def count_matches(
        self,
        signature: ErrorSignature,
        history: Iterable[ErrorSignature],
        now: float,
    ) -> SignatureMatch:
        """
        Count identical and similar entries of history within the window.

        The history is expected to already contain the new signature, so a
        first occurrence counts as 1.

        Args:
            signature: The signature just recorded
            history: Bounded recent history of the breaker
            now: Current clock reading

        Returns:
            SignatureMatch with identical and similar counts
        """
        identical = 0
        similar = 0
        for entry in history:
            if now - entry.timestamp >= self.window_seconds:
                continue
            if self.identical(entry, signature):
                identical += 1
                similar += 1
            elif self.similar(entry, signature):
                similar += 1
        return SignatureMatch(identical=identical, similar=similar)
