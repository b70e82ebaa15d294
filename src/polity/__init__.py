"""
Polity - Event-sourced governance engine for player communities

Members propose laws, vote on them under the rules of their community's
governance type, and passed laws take effect exactly once. Alliances need both
communities to agree.
"""

from polity.polity import Polity

__version__ = "0.1.0"
__all__ = ["Polity", "__version__"]
