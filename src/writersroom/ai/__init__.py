"""Model adapter contract, reply schema and prompt construction."""

from .adapters import ModelAdapter, ModelReply, StructuredCall
from .reply_schema import TOOL_NAME, AgentReply, ReplyParseError

__all__ = ["ModelAdapter", "ModelReply", "StructuredCall", "TOOL_NAME", "AgentReply", "ReplyParseError"]
