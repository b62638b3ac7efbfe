"""
rogrouper.constants — Shared Constants
=======================================

Collection names and Roblox endpoint roots.  Import from here instead of
spelling URLs or collection names inline.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Document store collections
# ---------------------------------------------------------------------------
class Collections:
    GROUP_AUTOMATION = "groupAutomation"
    AUDIT_LOGS = "auditLogs"
    PENDING_BOT_JOINS = "pendingBotJoins"
    SITE_CONFIG = "siteConfig"
    GROUP_ACCESS = "groupAccess"
    ORGANIZATIONS = "organizations"
    AWARDS = "awards"
    USER_AWARDS = "userAwards"


SITE_ADMINS_DOC_ID = "admins"


# ---------------------------------------------------------------------------
# Roblox API roots
# ---------------------------------------------------------------------------
ROBLOX_OAUTH = "https://apis.roblox.com/oauth/v1"
ROBLOX_GROUPS = "https://groups.roblox.com/v1"
ROBLOX_USERS = "https://users.roblox.com/v1"
ROBLOX_THUMBNAILS = "https://thumbnails.roblox.com/v1"

ROBLOX_OAUTH_SCOPES = "openid profile group:read group:write"

# Page sizes accepted by the group members endpoint
MEMBER_PAGE_SIZES: frozenset[int] = frozenset({10, 25, 50, 100})
DEFAULT_MEMBER_PAGE_SIZE = 50

USER_SEARCH_MIN_LENGTH = 2
USER_SEARCH_LIMIT = 10

# Roblox ranks run 0-255; 255 is the owner.  Members at or above
# MANAGER_RANK get the full dashboard for a group without an access grant.
OWNER_RANK = 255
MANAGER_RANK = 254

GROUP_ICON_SIZE = "150x150"
