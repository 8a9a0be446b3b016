"""Per-workspace messaging policy."""

from msgguard.policies.models import GuardMode, MessagingPolicy, PolicyUpdate, default_policy
from msgguard.policies.policy_store import PolicyStore

__all__ = ["GuardMode", "MessagingPolicy", "PolicyUpdate", "PolicyStore", "default_policy"]
