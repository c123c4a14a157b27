"""
AgentGate — execution core for automated agent callers.

Authenticates an agent credential, runs a bounded model/tool conversation for
one command, authorizes every tool call against the agent's capabilities,
filters content in both directions, recalls similar past exchanges, and emits
an audit trail for every security-relevant step.

Layers (bottom to top):
    1. Privacy (PII redaction)
    2. Safety (content filters, destructive-action gate)
    3. Tools (catalog, capability table, execution delegate)
    4. Auth (credential directory, shared rate limiter, gate)
    5. Memory (embeddings, similarity store)
    6. Audit (non-blocking event sink)
    7. Harness (bounded conversation loop)
    8. Agent executor + HTTP gateway
"""

__version__ = "0.1.0"
