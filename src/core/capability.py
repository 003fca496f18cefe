"""Capability enumeration used for routing.

Each capability has a stable string identifier (used in the routing table and
in persisted user preferences) and a human-readable display name.
"""

from __future__ import annotations

from enum import Enum


class Capability(str, Enum):
    """Kinds of AI operation a provider may support."""

    TEXT_GENERATION = "text_generation"
    IMAGE_GENERATION = "image_generation"
    IMAGE_ANALYSIS = "image_analysis"
    AUDIO_GENERATION = "audio_generation"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    EMBEDDING_GENERATION = "embedding_generation"
    CODE_GENERATION = "code_generation"
    FUNCTION_CALLING = "function_calling"
    REALTIME_CONVERSATION = "realtime_conversation"
    DOCUMENT_ANALYSIS = "document_analysis"

    @property
    def identifier(self) -> str:
        return self.value

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def from_identifier(cls, identifier: str) -> Capability | None:
        """Parse a routing-table identifier, returning None when unknown.

        Accepts snake_case identifiers as well as the camelCase spelling used
        by older configuration files (``textGeneration``).
        """
        normalized = _camel_to_snake(identifier.strip())
        try:
            return cls(normalized)
        except ValueError:
            return None


_DISPLAY_NAMES: dict[Capability, str] = {
    Capability.TEXT_GENERATION: "Text Generation",
    Capability.IMAGE_GENERATION: "Image Generation",
    Capability.IMAGE_ANALYSIS: "Image Analysis",
    Capability.AUDIO_GENERATION: "Audio Generation",
    Capability.AUDIO_TRANSCRIPTION: "Audio Transcription",
    Capability.EMBEDDING_GENERATION: "Embedding Generation",
    Capability.CODE_GENERATION: "Code Generation",
    Capability.FUNCTION_CALLING: "Function Calling",
    Capability.REALTIME_CONVERSATION: "Realtime Conversation",
    Capability.DOCUMENT_ANALYSIS: "Document Analysis",
}


def _camel_to_snake(value: str) -> str:
    chars: list[str] = []
    for i, ch in enumerate(value):
        if ch.isupper() and i > 0:
            chars.append("_")
        chars.append(ch.lower())
    return "".join(chars)
