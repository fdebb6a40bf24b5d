"""Tests for secrets and their encryption in state."""

import json

import pytest

from ..config import AppOptions
from ..errors import SecretDecryptionError, SecretPasswordError
from ..state import memory_store
from .registry import ResourceRegistry
from .resource import LifecyclePhase
from .runtime import create_app, finalize, run
from .secret import Secret, decrypt, encrypt
from .serde import deserialize, props_equal, serialize

PASSWORD = "correct horse battery staple"


class TestSecret:
    """Test cases for the Secret wrapper and encryption helpers."""

    def test_value_is_masked(self):
        secret = Secret("hunter2")

        assert "hunter2" not in repr(secret)
        assert "hunter2" not in str(secret)
        assert "hunter2" not in f"{secret}"
        assert secret.unencrypted == "hunter2"

    def test_equality(self):
        assert Secret("a") == Secret("a")
        assert Secret("a") != Secret("b")
        assert Secret("a") != "a"
        assert len({Secret("a"), Secret("a")}) == 1

    def test_non_string_rejected(self):
        with pytest.raises(TypeError):
            Secret(42)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "sk-123")
        assert Secret.env("API_KEY") == Secret("sk-123")

        monkeypatch.delenv("API_KEY")
        assert Secret.env("API_KEY", "fallback") == Secret("fallback")
        with pytest.raises(KeyError):
            Secret.env("API_KEY")

    def test_encrypt_decrypt(self):
        payload = encrypt("hunter2", PASSWORD)

        assert payload["version"] == "v1"
        assert "hunter2" not in json.dumps(payload)
        assert payload["token"].startswith("gAAAAA")
        assert decrypt(payload, PASSWORD) == "hunter2"

    def test_fresh_salt_per_encryption(self):
        first = encrypt("hunter2", PASSWORD)
        second = encrypt("hunter2", PASSWORD)

        assert first["salt"] != second["salt"]
        assert first["token"] != second["token"]

    def test_wrong_password(self):
        payload = encrypt("hunter2", PASSWORD)
        with pytest.raises(SecretDecryptionError):
            decrypt(payload, "wrong")

    def test_missing_password(self):
        with pytest.raises(SecretPasswordError):
            encrypt("hunter2", None)
        with pytest.raises(SecretPasswordError):
            decrypt({"version": "v1", "salt": "", "token": ""}, "")

    def test_unknown_format(self):
        with pytest.raises(SecretDecryptionError):
            decrypt("legacy-string", PASSWORD)


class TestSecretSerde:
    """Test cases for secrets nested in props."""

    def test_serialized_form_hides_value(self):
        data = serialize({"db": {"password": Secret("hunter2")}, "port": 5432}, PASSWORD)

        assert set(data["db"]["password"]) == {"@secret"}
        assert "hunter2" not in json.dumps(data)
        assert deserialize(data, PASSWORD) == {"db": {"password": Secret("hunter2")}, "port": 5432}

    def test_serialize_without_password(self):
        with pytest.raises(SecretPasswordError):
            serialize({"token": Secret("x")})

    def test_props_equal_across_encryptions(self):
        stored = serialize({"token": Secret("x")}, PASSWORD)
        again = serialize({"token": Secret("x")}, PASSWORD)
        changed = serialize({"token": Secret("y")}, PASSWORD)

        assert stored != again
        assert props_equal(stored, again, PASSWORD)
        assert not props_equal(stored, changed, PASSWORD)

    def test_props_equal_with_wrong_password(self):
        stored = serialize({"token": Secret("x")}, PASSWORD)
        again = serialize({"token": Secret("x")}, PASSWORD)

        assert not props_equal(stored, again, "wrong")


class Stack:
    """A registry plus shared state, for running several deployments."""

    def __init__(self, tmp_path):
        self.registry = ResourceRegistry()
        self.tables = {}
        self.tmp_path = tmp_path

    async def deploy(self, program, **overrides):
        values = {"stage": "test", "state_backend": "memory", "dot_dir": self.tmp_path, "password": PASSWORD}
        values.update(overrides)
        stage = create_app("app", AppOptions(**values), registry=self.registry, state_store=memory_store(self.tables))
        try:
            return await run(stage, program)
        finally:
            await finalize(stage.root)

    def record(self, id):
        return self.tables.get("app/test", {}).get(id)


@pytest.fixture
def stack(tmp_path):
    return Stack(tmp_path)


@pytest.mark.asyncio
class TestSecretsInState:
    """Test cases for secrets flowing through apply and destroy."""

    async def test_state_never_holds_clear_text(self, stack):
        seen = []

        @stack.registry.resource("test::Database")
        async def Database(ctx, id, props):
            seen.append((ctx.phase, props["password"], ctx.props))
            if ctx.phase == LifecyclePhase.DELETE:
                return ctx.destroy()
            return {"dsn": Secret(f"postgres://admin:{props['password'].unencrypted}@db")}

        async def program(scope):
            return await Database("db", {"password": Secret("hunter2")})

        output = await stack.deploy(program)
        await stack.deploy(program)

        assert output["dsn"] == Secret("postgres://admin:hunter2@db")
        record = stack.record("db")
        assert "hunter2" not in record.to_json()
        assert set(record.props["password"]) == {"@secret"}

        phase, value, prior = seen[1]
        assert phase == LifecyclePhase.UPDATE
        assert value == Secret("hunter2")
        assert prior == {"password": Secret("hunter2")}

        async def nothing(scope):
            return None

        await stack.deploy(nothing)
        assert seen[-1][0] == LifecyclePhase.DELETE
        assert seen[-1][1] == Secret("hunter2")
        assert stack.record("db") is None

    async def test_unchanged_secret_is_skipped(self, stack):
        calls = []

        @stack.registry.resource("test::Token", skip_unchanged=True)
        async def Token(ctx, id, props):
            calls.append(ctx.phase)
            return {}

        def program_for(value):
            async def program(scope):
                return await Token("t", {"value": Secret(value)})
            return program

        await stack.deploy(program_for("a"))
        await stack.deploy(program_for("a"))
        assert calls == [LifecyclePhase.CREATE]

        await stack.deploy(program_for("b"))
        assert calls == [LifecyclePhase.CREATE, LifecyclePhase.UPDATE]

    async def test_secret_without_password_fails(self, stack):
        @stack.registry.resource("test::Token")
        async def Token(ctx, id, props):
            return {}

        async def program(scope):
            return await Token("t", {"value": Secret("a")})

        with pytest.raises(SecretPasswordError):
            await stack.deploy(program, password=None)
