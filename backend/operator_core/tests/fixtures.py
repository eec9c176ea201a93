"""Operator console users and authenticated clients."""

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient

User = get_user_model()


def _operator(username: str, role: str):
    group, _ = Group.objects.get_or_create(name=role)
    user = User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="pass123",
        is_staff=True,
    )
    user.groups.add(group)
    return user


@pytest.fixture
def operator_admin_user():
    return _operator("op-admin", "operator_admin")


@pytest.fixture
def operator_finance_user():
    return _operator("op-finance", "operator_finance")


@pytest.fixture
def operator_support_user():
    return _operator("op-support", "operator_support")


def _client_for(user) -> APIClient:
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def operator_admin_client(operator_admin_user):
    return _client_for(operator_admin_user)


@pytest.fixture
def operator_finance_client(operator_finance_user):
    return _client_for(operator_finance_user)


@pytest.fixture
def operator_support_client(operator_support_user):
    return _client_for(operator_support_user)


@pytest.fixture
def db_setting_factory():
    from operator_settings.models import DbSetting

    def _create(*, key="TEST_KEY", value_json=1, value_type="int", **kwargs):
        return DbSetting.objects.create(
            key=key,
            value_json=value_json,
            value_type=value_type,
            **kwargs,
        )

    return _create
