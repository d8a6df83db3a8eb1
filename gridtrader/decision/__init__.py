"""
Decision package.

Decision payload models, the context builder and the providers that turn a
context into a decision batch.
"""

from gridtrader.decision.context import GridContextBuilder
from gridtrader.decision.http_client import DecisionProvider, HttpDecisionClient, StaticDecisionProvider
from gridtrader.decision.models import Decision, FullDecision, GridAction, GridContext

__all__ = [
    "Decision",
    "DecisionProvider",
    "FullDecision",
    "GridAction",
    "GridContext",
    "GridContextBuilder",
    "HttpDecisionClient",
    "StaticDecisionProvider",
]
