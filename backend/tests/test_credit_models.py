"""
Tests for record normalization, registry parsing, identity and roles.
"""
from datetime import datetime, timezone

import pytest

from toolbox.models.apps import AppConfig, DEFAULT_APPS
from toolbox.models.credits import (
    BalanceRecord,
    CreditSnapshot,
    legacy_names_for,
    normalize_balance_document,
)
from toolbox.models.identity import CallerIdentity
from toolbox.roles import Permission, Role, get_effective_role, has_permission


class TestNormalizeBalanceDocument:

    def test_maps_legacy_names(self):
        reset = datetime(2024, 1, 1, tzinfo=timezone.utc)
        doc = {
            "_id": "abc",
            "appId": "paco",
            "uid": "u1",
            "credits": 10,
            "totalUsedThisMonth": 40,
            "lastResetAt": reset,
            "createdAt": reset,
            "role": "user",
        }

        normalized = normalize_balance_document(doc)

        assert normalized == {
            "app_id": "paco",
            "user_id": "u1",
            "balance": 10,
            "used_this_period": 40,
            "period_reset_at": reset,
            "created_at": reset,
            "role": "user",
        }

    def test_canonical_name_wins(self):
        normalized = normalize_balance_document({"balance": 3, "credits": 99})

        assert normalized["balance"] == 3

    @pytest.mark.parametrize("stored,expected", [
        (None, "user"),
        ("admin", "administrator"),
        ("administrator", "administrator"),
        ("owner", "user"),
        (5, "user"),
    ])
    def test_role_normalization(self, stored, expected):
        doc = {} if stored is None else {"role": stored}

        assert normalize_balance_document(doc)["role"] == expected

    def test_legacy_names_for_changed_fields(self):
        assert sorted(legacy_names_for({"balance": 1, "used_this_period": 2})) == [
            "credits",
            "totalUsedThisMonth",
        ]
        assert legacy_names_for({"role": "user"}) == []


class TestBalanceRecord:

    def test_public_view_uses_camel_case_and_skips_absent_fields(self):
        record = BalanceRecord(app_id="labels", user_id="u1")

        assert record.to_public() == {"appId": "labels", "userId": "u1", "role": "user"}
        assert record.has_credits is False

    def test_from_document_fills_key_fields(self):
        record = BalanceRecord.from_document({"credits": 4}, app_id="paco", user_id="u1")

        assert record.app_id == "paco"
        assert record.user_id == "u1"
        assert record.has_credits is True

    def test_server_stamped_fields_depend_on_credit_system(self):
        assert BalanceRecord(app_id="paco", user_id="u1", balance=5).server_timestamp_fields() == [
            "created_at",
            "period_reset_at",
        ]
        assert BalanceRecord(app_id="labels", user_id="u1").server_timestamp_fields() == ["created_at"]

    def test_snapshot_defaults(self):
        snapshot = CreditSnapshot.from_record(BalanceRecord(app_id="labels", user_id="u1"))

        assert snapshot.balance == 0
        assert snapshot.used_this_period == 0
        assert snapshot.period_reset_at is None
        assert snapshot.role == "user"


class TestAppConfig:

    def test_from_document_accepts_camel_case_names(self):
        config = AppConfig.from_document(
            {"_id": 1, "hasCredits": True, "monthlyAllotment": 20, "appName": "Paco"},
            app_id="paco",
        )

        assert config.app_id == "paco"
        assert config.app_name == "Paco"
        assert config.has_credits is True
        assert config.monthly_allotment == 20

    def test_missing_allotment_defaults_to_zero(self):
        config = AppConfig.from_document({"app_id": "x", "has_credits": True, "monthly_allotment": None})

        assert config.monthly_allotment == 0

    def test_default_registry(self):
        by_id = {app.app_id: app for app in DEFAULT_APPS}

        assert by_id["paco"].monthly_allotment == 50
        assert by_id["translate"].monthly_allotment == 1000
        assert all(app.has_credits for app in DEFAULT_APPS)


class TestRoles:

    def test_supervisor_claim_must_be_true(self):
        assert CallerIdentity(uid="a", claims={"supervisor": True}).is_supervisor is True
        assert CallerIdentity(uid="a", claims={"supervisor": "true"}).is_supervisor is False
        assert CallerIdentity(uid="a").is_supervisor is False

    @pytest.mark.parametrize("claim,app_role,expected", [
        (True, None, Role.SUPERVISOR),
        (True, "user", Role.SUPERVISOR),
        (False, "administrator", Role.ADMIN),
        (False, "admin", Role.ADMIN),
        (False, "user", Role.USER),
        (False, None, Role.USER),
        ("true", None, Role.USER),
    ])
    def test_effective_role(self, claim, app_role, expected):
        assert get_effective_role(claim, app_role) == expected

    def test_permission_matrix(self):
        assert has_permission(Role.USER, Permission.CREDITS_VIEW_OWN)
        assert not has_permission(Role.USER, Permission.CREDITS_VIEW_ALL)
        assert has_permission(Role.ADMIN, Permission.CREDITS_VIEW_ALL)
        assert not has_permission(Role.ADMIN, Permission.CREDITS_MODIFY)
        assert not has_permission(Role.ADMIN, Permission.ROLES_ASSIGN)
        assert has_permission(Role.SUPERVISOR, Permission.CREDITS_MODIFY)
        assert has_permission(Role.SUPERVISOR, Permission.ROLES_ASSIGN)
