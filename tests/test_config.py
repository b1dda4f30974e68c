from __future__ import annotations

import pytest

from osm2arango.config import (
    ArangoConnectionConfig,
    parse_positive_number,
    read_arango_env_file,
    resolve_arango_connection_config,
)
from osm2arango.exceptions import ConfigError

BASE_ENV = {"ARANGO_DB": "osm", "ARANGO_PASS": "secret"}


class TestResolveArangoConnectionConfig:
    def test_defaults(self):
        conn = resolve_arango_connection_config(BASE_ENV)
        assert conn == ArangoConnectionConfig(
            url="http://127.0.0.1:8529",
            database="osm",
            username="root",
            password="secret",
            import_transport="driver",
        )

    def test_environment(self):
        env = {
            **BASE_ENV,
            "ARANGO_URL": "http://db:8529",
            "ARANGO_USER": "loader",
            "ARANGO_IMPORT_TRANSPORT": "curl",
        }
        conn = resolve_arango_connection_config(env)
        assert conn.url == "http://db:8529"
        assert conn.username == "loader"
        assert conn.import_transport == "curl"

    def test_overrides_win(self):
        conn = resolve_arango_connection_config(
            BASE_ENV, database="other", password="pw", import_transport="http"
        )
        assert conn.database == "other"
        assert conn.password == "pw"
        assert conn.import_transport == "http"

    def test_missing_database(self):
        with pytest.raises(ConfigError, match="Missing ArangoDB database. Set ARANGO_DB"):
            resolve_arango_connection_config({"ARANGO_PASS": "secret"})

    def test_missing_password(self):
        with pytest.raises(ConfigError, match="Missing ArangoDB password. Set ARANGO_PASS"):
            resolve_arango_connection_config({"ARANGO_DB": "osm"})

    def test_unknown_transport(self):
        with pytest.raises(ConfigError, match="import_transport"):
            resolve_arango_connection_config({**BASE_ENV, "ARANGO_IMPORT_TRANSPORT": "grpc"})


class TestArangoConnectionConfig:
    def test_password_is_redacted(self):
        conn = resolve_arango_connection_config(BASE_ENV)
        assert "secret" not in str(conn)
        assert "secret" not in repr(conn)
        assert "****" in str(conn)

    def test_for_database(self):
        conn = resolve_arango_connection_config(BASE_ENV)
        system = conn.for_database("_system")
        assert system.database == "_system"
        assert system.password == "secret"
        assert conn.database == "osm"

    def test_from_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# ArangoDB\n"
            "\n"
            "ARANGO_URL='http://file:8529'\n"
            'ARANGO_DB="from_file"\n'
            "ARANGO_PASS=file_pass\n"
            "not a variable\n"
        )
        conn = ArangoConnectionConfig.from_env_file(env_file, env={"ARANGO_DB": "from_env"})
        assert conn.url == "http://file:8529"
        assert conn.database == "from_env"
        assert conn.password == "file_pass"

    def test_from_env_file_overrides(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("ARANGO_DB=osm\nARANGO_PASS=secret\n")
        conn = ArangoConnectionConfig.from_env_file(env_file, env={}, username="loader")
        assert conn.username == "loader"

    def test_missing_env_file_falls_back_to_env(self, tmp_path):
        conn = ArangoConnectionConfig.from_env_file(tmp_path / "missing.env", env=BASE_ENV)
        assert conn.database == "osm"


class TestReadArangoEnvFile:
    def test_only_connection_variables_are_read(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "POSTGRES_PASSWORD=pg\n"
            "ARANGO_USER=loader\n"
            "# ARANGO_PASS=commented\n"
            "PATH=/tmp\n"
        )
        assert read_arango_env_file(env_file) == {"ARANGO_USER": "loader"}

    def test_export_prefix_and_quotes(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "export ARANGO_DB=\"osm\"\n"
            "export  ARANGO_IMPORT_TRANSPORT = http\n"
            "ARANGO_PASS='a=b'\n"
            "ARANGO_URL=\"\n"
        )
        assert read_arango_env_file(env_file) == {
            "ARANGO_DB": "osm",
            "ARANGO_IMPORT_TRANSPORT": "http",
            "ARANGO_PASS": "a=b",
            "ARANGO_URL": "\"",
        }

    def test_missing_file(self, tmp_path):
        assert read_arango_env_file(tmp_path / "missing.env") == {}

    def test_from_env_file_ignores_unrelated_keys(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("HOME=/nowhere\nARANGO_DB=osm\nARANGO_PASS=secret\n")
        conn = ArangoConnectionConfig.from_env_file(env_file, env={})
        assert conn.database == "osm"
        assert "HOME" not in read_arango_env_file(env_file)


class TestParsePositiveNumber:
    def test_default_when_missing(self):
        assert parse_positive_number(None, "chunk-mb", 8) == 8

    def test_parses_strings(self):
        assert parse_positive_number("0.5", "chunk-mb", 8) == 0.5

    @pytest.mark.parametrize("raw", ["0", "-1", "abc", "inf", "nan"])
    def test_invalid(self, raw):
        with pytest.raises(ConfigError, match=f"Invalid --chunk-mb value: {raw}"):
            parse_positive_number(raw, "chunk-mb", 8)
