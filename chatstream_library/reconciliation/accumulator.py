"""Streaming text accumulator.

Appends chunk text to the right message while keeping arrival order relative
to tool parts. Accumulated chunks (the replay sent to a reconnecting client)
never shorten local content: the longer text wins, and when local text is a
prefix of the replay only the missing suffix is appended.
"""

import logging

from chatstream_library.errors import ReconciliationInconsistencyError
from chatstream_library.models.transcript import Message
from chatstream_library.models.transcript import Role

from .transcript import Transcript

logger = logging.getLogger(__name__)


class StreamingTextAccumulator:
    """Applies chunk text to a transcript."""

    def __init__(self: "StreamingTextAccumulator", strict: bool = False) -> None:
        """Initialize accumulator.

        Args:
            strict: Raise ReconciliationInconsistencyError on equal-length divergence
        """
        self.strict = strict

    def apply_live(self: "StreamingTextAccumulator", transcript: Transcript, message_id: str, chunk: str) -> Message:
        """Append a live chunk.

        An unknown id adopts a synthesized, text-empty assistant message when
        one exists; otherwise a new assistant message is created.

        Returns:
            The message the chunk was applied to
        """
        message = transcript.find(message_id)
        if message is None:
            message = self.adopt_synthesized(transcript, message_id)
        if message is None:
            message = transcript.add(Message(id=message_id, role=Role.ASSISTANT))
            logger.debug(f"Created assistant message {message_id} from live chunk")

        message.append_text(chunk)
        return message

    def apply_accumulated(
        self: "StreamingTextAccumulator",
        transcript: Transcript,
        message_id: str,
        text: str,
    ) -> Message:
        """Apply an accumulated replay chunk.

        Applying the same replay twice leaves the transcript unchanged.

        Returns:
            The message the replay was applied to
        """
        message = transcript.find(message_id)
        if message is None:
            message = transcript.last_empty_assistant()
            if message is not None:
                logger.debug(f"Adopting id {message_id} onto empty assistant message {message.id}")
                message.id = message_id
                message.synthesized = False
        if message is None:
            message = transcript.add(Message(id=message_id, role=Role.ASSISTANT))
            logger.debug(f"Created assistant message {message_id} from accumulated chunk")

        self.reconcile_text(message, text)
        return message

    def reconcile_text(
        self: "StreamingTextAccumulator",
        message: Message,
        text: str,
        authoritative: bool = False,
    ) -> None:
        """Bring a message's text in line with server text.

        Args:
            message: Message to update
            text: Server-side text for the message
            authoritative: Server text replaces local text regardless of length
        """
        local = message.content
        if local == text:
            return

        if text.startswith(local):
            message.append_text(text[len(local) :])
            return

        if authoritative:
            message.replace_text(text)
            return

        if len(text) > len(local):
            logger.info(f"Replacing diverged text of {message.id} with longer server text")
            message.replace_text(text)
        elif len(text) == len(local):
            logger.error(f"Equal-length divergence for message {message.id}; keeping local text")
            if self.strict:
                raise ReconciliationInconsistencyError(message.id, local, text)
        else:
            logger.debug(f"Keeping local text of {message.id} ({len(local)} > {len(text)} chars)")

    @staticmethod
    def adopt_synthesized(transcript: Transcript, message_id: str) -> Message | None:
        candidate = transcript.last_assistant()
        if candidate is None or not candidate.synthesized or candidate.content:
            return None
        logger.debug(f"Adopting server id {message_id} onto synthesized message {candidate.id}")
        candidate.id = message_id
        candidate.synthesized = False
        return candidate
