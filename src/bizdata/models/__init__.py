from .user import ROLE_ADMIN, ROLE_USER, ROLES, User

__all__ = ["ROLE_ADMIN", "ROLE_USER", "ROLES", "User"]
