"""
Role permissions configuration - single source of truth for what each role may do
"""

from typing import Dict, List, Any

# Capability strings are "<resource>:<action>"; "*" grants everything.
# Admin-only: cases:assign, lawyers:approve, payments:process_refund,
# payments:process_payout, payments:summary, fines:manage, plans:manage,
# users:manage_quota.
ROLE_PERMISSIONS: Dict[str, Dict[str, Any]] = {
    "user": {
        "capabilities": [
            "cases:create",
            "cases:read_own",
            "cases:rate",
            "cases:attach_document",
            "payments:create",
            "payments:read_own",
            "payments:request_refund",
            "invoices:read_own",
            "messages:send",
            "lawyers:register",
            "business:manage_own",
        ],
        "description": "Defendant submitting and paying for traffic cases"
    },
    "lawyer": {
        "capabilities": [
            "cases:read_own",
            "cases:update_status",
            "cases:attach_document",
            "payments:read_own",
            "invoices:read_own",
            "messages:send",
            "lawyers:manage_profile",
        ],
        "description": "Approved or pending lawyer working assigned cases"
    },
    "support": {
        "capabilities": [
            "cases:read_own",
            "cases:read_all",
            "messages:send",
            "messages:read_all",
        ],
        "description": "Customer support with read access to cases and chats"
    },
    "business_support": {
        "capabilities": [
            "payments:read_all",
            "invoices:create",
            "invoices:read_all",
            "business:manage_own",
            "business:read_all",
            "billing:retry",
        ],
        "description": "Finance and B2B account support"
    },
    "admin": {
        "capabilities": ["*"],
        "description": "Platform administrator - full access"
    },
}


def get_role_permissions(role: str) -> Dict[str, Any]:
    """Get permissions for a role, or an empty dict for unknown roles"""
    return ROLE_PERMISSIONS.get(role, {})


def is_valid_role(role: str) -> bool:
    """Check if role exists in configuration"""
    return role in ROLE_PERMISSIONS


def has_capability(role: str, capability: str) -> bool:
    """Check if role grants a capability"""
    capabilities = get_role_permissions(role).get("capabilities", [])
    return "*" in capabilities or capability in capabilities


def get_available_roles() -> List[str]:
    """Get list of all configured roles"""
    return list(ROLE_PERMISSIONS.keys())
