from agentgate.auth.directory import AgentDirectory, SQLiteAgentDirectory
from agentgate.auth.gate import AuthError, AuthGate, extract_credential
from agentgate.auth.ratelimit import RateLimiter, RateLimitStore, SQLiteRateLimitStore, rate_limit_headers

__all__ = [
    "AgentDirectory",
    "AuthError",
    "AuthGate",
    "RateLimitStore",
    "RateLimiter",
    "SQLiteAgentDirectory",
    "SQLiteRateLimitStore",
    "extract_credential",
    "rate_limit_headers",
]
