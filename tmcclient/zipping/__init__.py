from tmcclient.zipping.archiver import RecursiveZipper, zip_project_sources
from tmcclient.zipping.policies import InclusionPolicy, PolicyKind, make_policy, policy_for

__all__ = [
    "InclusionPolicy",
    "PolicyKind",
    "RecursiveZipper",
    "make_policy",
    "policy_for",
    "zip_project_sources",
]
