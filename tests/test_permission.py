import pytest

from nostrkv.permission import (
    AuthSetting,
    Permission,
    PermissionDenied,
    verify_permission,
)

LOCAL = "127.0.0.1"
OTHER = "127.0.0.2"


def _allowed(permission, pubkey, event_pubkey, ip):
    try:
        verify_permission(permission, pubkey, event_pubkey, ip)
    except PermissionDenied:
        return False
    return True


@pytest.mark.parametrize(
    "permission, pubkey, event_pubkey, ip, expected",
    [
        (Permission(ip_whitelist=[LOCAL]), None, None, LOCAL, True),
        (Permission(ip_whitelist=[LOCAL]), None, None, OTHER, False),
        (Permission(ip_blacklist=[LOCAL]), None, None, LOCAL, False),
        (Permission(ip_blacklist=[LOCAL]), None, None, OTHER, True),
        (Permission(pubkey_whitelist=["xx"]), "xx", None, LOCAL, True),
        (Permission(pubkey_whitelist=["xx"]), "xxxx", None, LOCAL, False),
        (Permission(pubkey_blacklist=["xx"]), "xx", None, LOCAL, False),
        (Permission(pubkey_blacklist=["xx"]), "xxxx", None, LOCAL, True),
        (Permission(event_pubkey_whitelist=["xx"]), None, "xx", LOCAL, True),
        (Permission(event_pubkey_whitelist=["xx"]), None, "xxxx", LOCAL, False),
        (Permission(event_pubkey_blacklist=["xx"]), None, "xx", LOCAL, False),
        (Permission(event_pubkey_blacklist=["xx"]), None, "xxxx", LOCAL, True),
    ],
)
def test_verify_cases(permission, pubkey, event_pubkey, ip, expected):
    assert _allowed(permission, pubkey, event_pubkey, ip) is expected


def test_no_permission_allows_everything():
    assert verify_permission(None, None, "xx", OTHER) is None
    with pytest.raises(PermissionDenied):
        verify_permission(Permission(ip_whitelist=[LOCAL]), None, "xx", OTHER)


def test_empty_permission_allows_everything():
    assert _allowed(Permission(), None, "xx", LOCAL) is True


@pytest.mark.parametrize(
    "permission, pubkey, event_pubkey, ip, reason",
    [
        (Permission(ip_whitelist=[LOCAL]), None, None, OTHER, "ip not in whitelist"),
        (Permission(ip_blacklist=[LOCAL]), None, None, LOCAL, "ip in blacklist"),
        (
            Permission(event_pubkey_whitelist=["xx"]),
            None,
            "yy",
            LOCAL,
            "event author pubkey not in whitelist",
        ),
        (
            Permission(event_pubkey_blacklist=["xx"]),
            None,
            "xx",
            LOCAL,
            "event author pubkey in blacklist",
        ),
        (Permission(pubkey_whitelist=["xx"]), "yy", None, LOCAL, "pubkey not in whitelist"),
        (Permission(pubkey_blacklist=["xx"]), "xx", None, LOCAL, "pubkey in blacklist"),
        (Permission(pubkey_whitelist=["xx"]), None, None, LOCAL, "NIP-42 auth required"),
        (Permission(pubkey_blacklist=["xx"]), None, None, LOCAL, "NIP-42 auth required"),
    ],
)
def test_denial_reasons(permission, pubkey, event_pubkey, ip, reason):
    with pytest.raises(PermissionDenied) as info:
        verify_permission(permission, pubkey, event_pubkey, ip)
    assert info.value.reason == reason
    assert str(info.value) == reason


def test_ip_checked_before_pubkey():
    permission = Permission(ip_whitelist=[LOCAL], pubkey_whitelist=["xx"])
    with pytest.raises(PermissionDenied) as info:
        verify_permission(permission, None, None, OTHER)
    assert info.value.reason == "ip not in whitelist"


def test_event_list_ignored_without_event_pubkey():
    permission = Permission(event_pubkey_whitelist=["xx"])
    assert _allowed(permission, "yy", None, LOCAL) is True


def test_permission_from_dict():
    permission = Permission.from_dict(
        {"ip_whitelist": [LOCAL], "pubkey_blacklist": ["xx"], "unknown": 1}
    )
    assert permission.ip_whitelist == frozenset({LOCAL})
    assert permission.pubkey_blacklist == frozenset({"xx"})
    assert permission.pubkey_whitelist is None


def test_permission_from_dict_rejects_non_list():
    with pytest.raises(ValueError):
        Permission.from_dict({"ip_whitelist": LOCAL})


def test_auth_setting_defaults():
    setting = AuthSetting.from_dict({})
    assert setting == AuthSetting(enabled=False, req=None, event=None)


def test_auth_setting_from_dict():
    setting = AuthSetting.from_dict(
        {
            "enabled": True,
            "req": {"pubkey_whitelist": ["abc"]},
            "event": {"pubkey_whitelist": ["abc"]},
        }
    )
    assert setting.enabled is True
    assert setting.req == Permission(pubkey_whitelist=["abc"])
    assert setting.event.pubkey_whitelist == frozenset({"abc"})
    with pytest.raises(PermissionDenied):
        verify_permission(setting.req, None, None, LOCAL)
    assert _allowed(setting.event, "abc", "abc", LOCAL) is True


def test_auth_setting_rejects_bad_enabled():
    with pytest.raises(ValueError):
        AuthSetting.from_dict({"enabled": "yes"})