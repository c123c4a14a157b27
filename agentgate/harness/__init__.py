"""Agent harness — the loop and the content policy around it."""
from agentgate.harness.loop import ConversationLoop, LoopResult
from agentgate.harness.safety import SafetyFilter

__all__ = ["ConversationLoop", "LoopResult", "SafetyFilter"]
