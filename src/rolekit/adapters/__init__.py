"""Bridges from rolekit permissions to rule-based and policy-based authorization."""

from rolekit.adapters.policy import PermissionPolicyMixin
from rolekit.adapters.rules import ALL, RuleLoaderMixin

__all__ = ["ALL", "PermissionPolicyMixin", "RuleLoaderMixin"]
