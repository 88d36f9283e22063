"""
Tests for assetgate_core.config: TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - The [organizations] index table
  - Environment variable overrides (precedence over TOML)
  - validate_config rejections
  - Missing TOML files
"""

from __future__ import annotations

import os
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from assetgate_core.config import (
    CAConfig,
    FabricConfig,
    GatewayConfig,
    LoggingConfig,
    ServerConfig,
    _merge,
    load_config,
    validate_config,
)


def _write_toml(content: str) -> str:
    fd, path = tempfile.mkstemp(suffix=".toml")
    with os.fdopen(fd, "w") as f:
        f.write(textwrap.dedent(content))
    return path


# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_server_defaults(self):
        s = ServerConfig()
        self.assertEqual(s.port, 4000)
        self.assertEqual(s.error_mode, "flat")
        self.assertEqual(s.api_key, "")
        self.assertEqual(s.rate_limit_rpm, 0)
        self.assertEqual(s.max_body_bytes, 1_048_576)

    def test_fabric_defaults(self):
        f = FabricConfig()
        self.assertEqual(f.channel_name, "mychannel")
        self.assertEqual(f.chaincode_name, "basic")
        self.assertEqual(f.wallet_path, "wallet")
        self.assertTrue(f.discovery_enabled)
        self.assertEqual(f.submit_timeout_seconds, 0.0)
        self.assertEqual(f.backend, "fabric")

    def test_ca_defaults(self):
        c = CAConfig()
        self.assertEqual(c.admin_id, "admin")
        self.assertEqual(c.affiliation.format(index=1), "org1.department1")

    def test_logging_defaults(self):
        lg = LoggingConfig()
        self.assertEqual(lg.level, "INFO")
        self.assertEqual(lg.format, "human")
        self.assertIsNone(lg.file)

    def test_top_level_sections_are_independent(self):
        a, b = GatewayConfig(), GatewayConfig()
        a.server.cors_origins.append("https://x")
        self.assertEqual(b.server.cors_origins, [])


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

class TestLoadToml(unittest.TestCase):

    def test_missing_file_gives_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config("/nonexistent/assetgate.toml")
        self.assertEqual(cfg.server.port, 4000)

    def test_none_path_gives_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config(None)
        self.assertEqual(cfg.fabric.channel_name, "mychannel")

    def test_sections_merged(self):
        path = _write_toml("""
            [server]
            port = 4100
            error-mode = "detailed"

            [fabric]
            channel_name = "assets"
            chaincode_name = "parts"
            backend = "memory"

            [ca]
            admin_id = "ca-admin"
        """)
        try:
            with patch.dict(os.environ, {}, clear=True):
                cfg = load_config(path)
        finally:
            os.unlink(path)
        self.assertEqual(cfg.server.port, 4100)
        self.assertEqual(cfg.server.error_mode, "detailed")
        self.assertEqual(cfg.fabric.channel_name, "assets")
        self.assertEqual(cfg.fabric.chaincode_name, "parts")
        self.assertEqual(cfg.fabric.backend, "memory")
        self.assertEqual(cfg.ca.admin_id, "ca-admin")

    def test_organizations_table(self):
        path = _write_toml("""
            [organizations]
            Org1MSP = 1
            SupplierMSP = 3
        """)
        try:
            with patch.dict(os.environ, {}, clear=True):
                cfg = load_config(path)
        finally:
            os.unlink(path)
        self.assertEqual(cfg.organizations.index, {"Org1MSP": 1, "SupplierMSP": 3})

    def test_unknown_keys_ignored(self):
        s = ServerConfig()
        _merge(s, {"no_such_key": 1, "port": 5000})
        self.assertEqual(s.port, 5000)
        self.assertFalse(hasattr(s, "no_such_key"))


# ═══════════════════════════════════════════════════════════════════
#  Environment overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):

    def test_env_beats_toml(self):
        path = _write_toml("""
            [server]
            port = 4100
        """)
        try:
            with patch.dict(os.environ, {"ASSETGATE_PORT": "4200"}, clear=True):
                cfg = load_config(path)
        finally:
            os.unlink(path)
        self.assertEqual(cfg.server.port, 4200)

    def test_fabric_env(self):
        env = {
            "ASSETGATE_CHANNEL": "c1",
            "ASSETGATE_CHAINCODE": "cc1",
            "ASSETGATE_WALLET_PATH": "/tmp/w",
            "ASSETGATE_PROFILES_DIR": "/tmp/p",
            "ASSETGATE_BACKEND": "MEMORY",
            "ASSETGATE_DISCOVERY": "false",
        }
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        self.assertEqual(cfg.fabric.channel_name, "c1")
        self.assertEqual(cfg.fabric.chaincode_name, "cc1")
        self.assertEqual(cfg.fabric.wallet_path, "/tmp/w")
        self.assertEqual(cfg.fabric.profiles_dir, "/tmp/p")
        self.assertEqual(cfg.fabric.backend, "memory")
        self.assertFalse(cfg.fabric.discovery_enabled)

    def test_cors_origins_split(self):
        with patch.dict(os.environ, {"ASSETGATE_CORS_ORIGINS": "https://a, https://b,"}, clear=True):
            cfg = load_config()
        self.assertEqual(cfg.server.cors_origins, ["https://a", "https://b"])

    def test_log_level_uppercased(self):
        with patch.dict(os.environ, {"ASSETGATE_LOG_LEVEL": "debug"}, clear=True):
            cfg = load_config()
        self.assertEqual(cfg.logging.level, "DEBUG")


# ═══════════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════════

class TestValidate(unittest.TestCase):

    def test_bad_error_mode(self):
        cfg = GatewayConfig()
        cfg.server.error_mode = "verbose"
        with self.assertRaises(ValueError):
            validate_config(cfg)

    def test_bad_backend(self):
        with patch.dict(os.environ, {"ASSETGATE_BACKEND": "ethereum"}, clear=True):
            with self.assertRaises(ValueError):
                load_config()

    def test_pattern_needs_index(self):
        cfg = GatewayConfig()
        cfg.fabric.profile_pattern = "connection.json"
        with self.assertRaises(ValueError):
            validate_config(cfg)

    def test_negative_timeout(self):
        cfg = GatewayConfig()
        cfg.fabric.submit_timeout_seconds = -1
        with self.assertRaises(ValueError):
            validate_config(cfg)

    def test_empty_channel(self):
        cfg = GatewayConfig()
        cfg.fabric.channel_name = ""
        with self.assertRaises(ValueError):
            validate_config(cfg)


if __name__ == "__main__":
    unittest.main()
