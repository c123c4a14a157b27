"""Privacy module — keeping personal data out of transcripts and replies."""

from agentgate.privacy.redaction import PIIRedactor, redact_pii

__all__ = ["PIIRedactor", "redact_pii"]
