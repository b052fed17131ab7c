"""Resilient multi-model request router."""

from modelrouter.router import ModelRouter, estimate_tokens

__all__ = ["ModelRouter", "estimate_tokens"]
__version__ = "0.1.0"
