"""
tests/test_group_access.py — Per-Group Access Grant Tests
==========================================================
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import run

from rogrouper.constants import SITE_ADMINS_DOC_ID, Collections
from rogrouper.database.documents import get_document, set_document
from rogrouper.services import group_access_service
from rogrouper.services.group_access_service import (
    GroupAccessConflictError,
    GroupAccessDenied,
    GroupAccessError,
    accessible_group_ids,
    apply_access_action,
    default_permissions,
    empty_access,
    full_permissions,
    permissions_for,
    update_access,
)

GROUPS = "https://groups.roblox.com/v1"
OWNER = "500"
USER = "600"


def _access(**overrides):
    return {**empty_access(55, OWNER, 1), **overrides}


def _role(role_id, rank):
    return {"id": role_id, "name": f"Role {role_id}", "rank": rank}


class TestPermissionsFor:
    def test_site_admin_has_everything(self):
        resolved = permissions_for(None, USER, None, site_admin=True)
        assert resolved == {"hasAccess": True, "permissions": full_permissions(), "isFullAccess": True}

    def test_manager_rank_needs_no_grant(self):
        assert permissions_for(None, USER, _role(9, 254), site_admin=False)["isFullAccess"] is True

    def test_no_document_no_access(self):
        resolved = permissions_for(None, USER, _role(9, 100), site_admin=False)
        assert resolved == {"hasAccess": False, "permissions": default_permissions(), "isFullAccess": False}

    def test_admin_role_beats_allowed_user(self):
        access = _access(
            adminRoles=[{"roleId": 9, "roleName": "Officer", "rank": 100}],
            allowedUsers=[{"robloxId": USER, "permissions": {"canKick": True}}],
        )
        assert permissions_for(access, USER, _role(9, 100), site_admin=False)["isFullAccess"] is True

    def test_allowed_user_beats_allowed_role(self):
        access = _access(
            allowedUsers=[{"robloxId": USER, "permissions": {"canKick": True}}],
            allowedRoles=[{"roleId": 9, "permissions": {"canSuspend": True}}],
        )
        resolved = permissions_for(access, USER, _role(9, 100), site_admin=False)
        assert resolved["hasAccess"] is True
        assert resolved["isFullAccess"] is False
        assert resolved["permissions"]["canKick"] is True
        assert resolved["permissions"]["canSuspend"] is False

    def test_allowed_role(self):
        access = _access(allowedRoles=[{"roleId": 9, "permissions": {"canViewAuditLog": True}}])
        resolved = permissions_for(access, USER, _role(9, 10), site_admin=False)
        assert resolved["permissions"] == {**default_permissions(), "canViewAuditLog": True}

    def test_unrelated_member(self):
        access = _access(allowedRoles=[{"roleId": 9, "permissions": {}}])
        assert permissions_for(access, USER, _role(8, 10), site_admin=False)["hasAccess"] is False


class TestApplyAction:
    def test_add_allowed_user_once(self):
        body = {"action": "addAllowedUser", "robloxId": 600, "username": "bob", "permissions": {"canKick": True}}
        once = apply_access_action(_access(), body, OWNER, 5)
        twice = apply_access_action(once, body, OWNER, 6)
        assert len(twice["allowedUsers"]) == 1
        entry = twice["allowedUsers"][0]
        assert entry["robloxId"] == "600"
        assert entry["addedBy"] == OWNER
        assert entry["permissions"] == {**default_permissions(), "canKick": True}
        assert twice["updatedAt"] == 6

    def test_unknown_permission_keys_dropped(self):
        body = {"action": "addAllowedRole", "roleId": 3, "permissions": {"canExplode": True}}
        updated = apply_access_action(_access(), body, OWNER, 5)
        assert updated["allowedRoles"][0]["permissions"] == default_permissions()

    def test_update_permissions_merges(self):
        access = _access(allowedRoles=[{"roleId": 3, "permissions": {**default_permissions(), "canKick": True}}])
        body = {"action": "updateRolePermissions", "roleId": 3, "permissions": {"canSuspend": True}}
        perms = apply_access_action(access, body, OWNER, 5)["allowedRoles"][0]["permissions"]
        assert perms["canKick"] is True
        assert perms["canSuspend"] is True

    def test_remove_admin_role(self):
        access = _access(adminRoles=[{"roleId": 3}, {"roleId": 4}])
        updated = apply_access_action(access, {"action": "removeAdminRole", "roleId": 3}, OWNER, 5)
        assert updated["adminRoles"] == [{"roleId": 4}]
        assert access["adminRoles"] == [{"roleId": 3}, {"roleId": 4}]

    def test_unknown_action(self):
        with pytest.raises(GroupAccessError):
            apply_access_action(_access(), {"action": "grantEverything"}, OWNER, 5)

    def test_missing_id(self):
        with pytest.raises(GroupAccessError):
            apply_access_action(_access(), {"action": "addAdminUser"}, OWNER, 5)


class TestAccessibleGroups:
    def test_user_and_role_grants(self, db_engine):
        set_document(db_engine, Collections.GROUP_ACCESS, "55", _access(allowedUsers=[{"robloxId": USER}]))
        set_document(db_engine, Collections.GROUP_ACCESS, "66", _access(adminRoles=[{"roleId": 9}]))
        set_document(db_engine, Collections.GROUP_ACCESS, "77", _access(allowedRoles=[{"roleId": 9}]))
        memberships = [{"group": {"id": 66}, "role": _role(9, 10)}]
        assert sorted(accessible_group_ids(db_engine, USER, memberships)) == [55, 66]


class TestUpdateAccess:
    @pytest.fixture
    def roblox(self, fake_roblox, roblox_client):
        fake_roblox.on("GET", f"{GROUPS}/groups/55", json={"id": 55, "owner": {"id": int(OWNER)}})
        fake_roblox.on("GET", f"{GROUPS}/users/{USER}/groups/roles", json={"data": []})
        fake_roblox.on("GET", f"{GROUPS}/users/{OWNER}/groups/roles", json={"data": []})
        return roblox_client

    def test_owner_creates_document(self, db_engine, roblox):
        result = run(update_access(db_engine, roblox, 55, OWNER, {"action": "addAdminRole", "roleId": 3}, now_ms=9))
        assert result["permissions"] == {"canManage": True, "isOwner": True, "isSiteAdmin": False}
        stored = get_document(db_engine, Collections.GROUP_ACCESS, "55")
        assert stored["ownerId"] == OWNER
        assert stored["adminRoles"] == [{"roleId": 3, "roleName": None, "rank": None}]

    def test_stranger_cannot_create(self, db_engine, roblox):
        with pytest.raises(GroupAccessDenied, match="Only group owner can set up access"):
            run(update_access(db_engine, roblox, 55, USER, {"action": "addAllowedRole", "roleId": 3}))
        assert get_document(db_engine, Collections.GROUP_ACCESS, "55") is None

    def test_access_admin_edits_allowed_but_not_admins(self, db_engine, roblox):
        set_document(db_engine, Collections.GROUP_ACCESS, "55", _access(adminUsers=[{"robloxId": USER}]))
        with pytest.raises(GroupAccessDenied, match="Only group owner or site admin"):
            run(update_access(db_engine, roblox, 55, USER, {"action": "addAdminUser", "robloxId": "7"}))
        run(update_access(db_engine, roblox, 55, USER, {"action": "addAllowedRole", "roleId": 3}))
        assert get_document(db_engine, Collections.GROUP_ACCESS, "55")["allowedRoles"][0]["roleId"] == 3

    def test_plain_member_is_refused(self, db_engine, roblox):
        set_document(db_engine, Collections.GROUP_ACCESS, "55", _access())
        with pytest.raises(GroupAccessDenied, match="Insufficient permissions"):
            run(update_access(db_engine, roblox, 55, USER, {"action": "addAllowedRole", "roleId": 3}))

    def test_site_admin_who_is_not_owner(self, db_engine, roblox):
        set_document(db_engine, Collections.SITE_CONFIG, SITE_ADMINS_DOC_ID, {"admins": [{"robloxId": USER}]})
        result = run(update_access(db_engine, roblox, 55, USER, {"action": "addAdminUser", "robloxId": "7"}))
        assert result["permissions"]["isSiteAdmin"] is True
        assert result["access"]["adminUsers"][0]["robloxId"] == "7"

    def test_gives_up_after_repeated_conflicts(self, db_engine, roblox):
        with patch.object(group_access_service, "compare_and_set_document", return_value=False):
            with pytest.raises(GroupAccessConflictError):
                run(update_access(db_engine, roblox, 55, OWNER, {"action": "addAdminRole", "roleId": 3}))
