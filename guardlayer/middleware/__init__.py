"""
中间件模块
"""
from .identity import IdentityMiddleware, parse_role_ids

__all__ = ["IdentityMiddleware", "parse_role_ids"]
