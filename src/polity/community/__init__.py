"""
Community Module - The collaborators around the governance engine

Ports the engine depends on (membership, mutations, notifications) and their
reference implementations.
"""

from polity.community.notifications import LogNotifier
from polity.community.ports import CommunityMutations, MembershipDirectory, Notifier

__all__ = [
    "CommunityMutations",
    "MembershipDirectory",
    "Notifier",
    "LogNotifier",
]
