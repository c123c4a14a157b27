from agentgate.api.claude import DEFAULT_SYSTEM_PROMPT, ClaudeBackend, ClaudeBackendInitError, ProviderError

__all__ = ["ClaudeBackend", "ClaudeBackendInitError", "DEFAULT_SYSTEM_PROMPT", "ProviderError"]
