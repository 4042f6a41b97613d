"""
User role definitions and API request quotas
"""
from typing import Dict, Any, Optional
from enum import Enum

# Sentinel quota value meaning "no limit"
UNLIMITED = -1


class UserRole(str, Enum):
    ADMIN = "admin"
    SUBADMIN = "subadmin"
    USER = "user"


ROLE_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    "admin": {
        "role": UserRole.ADMIN,
        "level": 5,
        "name": "Administrator",
        "daily_api_quota": UNLIMITED,
        "monthly_api_quota": UNLIMITED,
        "can_manage_api_quota": True,
    },
    "subadmin": {
        "role": UserRole.SUBADMIN,
        "level": 4,
        "name": "Sub-administrator",
        "daily_api_quota": 10000,
        "monthly_api_quota": 300000,
        "can_manage_api_quota": False,
    },
    "user_level_5": {
        "role": UserRole.USER,
        "level": 5,
        "name": "Level 5",
        "daily_api_quota": 5000,
        "monthly_api_quota": 150000,
        "can_manage_api_quota": False,
    },
    "user_level_4": {
        "role": UserRole.USER,
        "level": 4,
        "name": "Level 4",
        "daily_api_quota": 3000,
        "monthly_api_quota": 90000,
        "can_manage_api_quota": False,
    },
    "user_level_3": {
        "role": UserRole.USER,
        "level": 3,
        "name": "Level 3",
        "daily_api_quota": 2000,
        "monthly_api_quota": 60000,
        "can_manage_api_quota": False,
    },
    "user_level_2": {
        "role": UserRole.USER,
        "level": 2,
        "name": "Level 2",
        "daily_api_quota": 1000,
        "monthly_api_quota": 30000,
        "can_manage_api_quota": False,
    },
    "user_level_1": {
        "role": UserRole.USER,
        "level": 1,
        "name": "Level 1",
        "daily_api_quota": 500,
        "monthly_api_quota": 15000,
        "can_manage_api_quota": False,
    },
}


def get_role_key(role: Optional[str], level: Optional[int]) -> str:
    if role == UserRole.ADMIN.value:
        return "admin"
    if role == UserRole.SUBADMIN.value:
        return "subadmin"
    return f"user_level_{level or 1}"


def get_role_definition(role: Optional[str], level: Optional[int]) -> Dict[str, Any]:
    """Role definition for a user; unknown combinations get the entry-level quota"""
    return ROLE_DEFINITIONS.get(get_role_key(role, level), ROLE_DEFINITIONS["user_level_1"])
