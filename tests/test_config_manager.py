"""Tests for configuration management."""

import json
import os
import tempfile
import unittest
from unittest import mock

import yaml

from bank_notifier.utils.config_manager import ConfigManager
from bank_notifier.models.core import NotifierConfig


class TestConfigManager(unittest.TestCase):
    """Test cases for ConfigManager"""

    def setUp(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, 'test_config.json')
        self.env = mock.patch.dict(os.environ, {}, clear=False)
        self.env.start()
        for name in ('GMAIL_CLIENT_ID', 'GMAIL_CLIENT_SECRET', 'GMAIL_REFRESH_TOKEN',
                     'BANK_NOTIFIER_DB', 'POLL_INTERVAL_SECONDS'):
            os.environ.pop(name, None)

    def tearDown(self):
        """Clean up test fixtures"""
        import shutil
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, data):
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(data, f)

    def test_default_config_loading(self):
        """Test loading default configuration when no file exists"""
        manager = ConfigManager(config_path="nonexistent_file.json")
        config = manager.load_config()

        self.assertIsInstance(config, NotifierConfig)
        self.assertEqual(config.database_path, "data/bank_notifier.db")
        self.assertEqual(config.poll_interval_seconds, 10)
        self.assertEqual(config.sender_domains, ["cake.vn"])
        self.assertEqual(config.history_page_size, 100)
        self.assertEqual(config.retention_days, 30)
        self.assertIsNone(config.gmail_refresh_token)
        self.assertIn('maGiaoDich', config.field_labels)

    def test_config_file_loading(self):
        """Test loading configuration from JSON file"""
        self.write_config({
            "database_path": "custom.db",
            "poll_interval_seconds": 30,
            "sender_domains": ["bank.example"],
            "content_keywords": ["transfer"],
            "field_labels": {"maGiaoDich": ["Reference"]},
            "gmail_refresh_token": "token-from-file"
        })

        manager = ConfigManager(config_path=self.config_file)
        config = manager.load_config()

        self.assertEqual(config.database_path, "custom.db")
        self.assertEqual(config.poll_interval_seconds, 30)
        self.assertEqual(config.sender_domains, ["bank.example"])
        self.assertEqual(config.content_keywords, ["transfer"])
        self.assertEqual(config.field_labels['maGiaoDich'], ["Reference"])
        self.assertIn('soTien', config.field_labels)
        self.assertEqual(config.gmail_refresh_token, "token-from-file")

    def test_yaml_config_loading(self):
        """Test loading configuration from YAML file"""
        yaml_file = os.path.join(self.temp_dir, 'config.yml')
        with open(yaml_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump({"retention_days": 7, "log_directory": "var/log"}, f)

        config = ConfigManager(config_path=yaml_file).load_config()

        self.assertEqual(config.retention_days, 7)
        self.assertEqual(config.log_directory, "var/log")

    def test_invalid_config_falls_back_to_defaults(self):
        """Test that invalid values are rejected as a whole"""
        invalid_configs = [
            {"database_path": ""},
            {"poll_interval_seconds": -1},
            {"poll_interval_seconds": "fast"},
            {"history_page_size": 1.5},
            {"sender_domains": "cake.vn"},
            {"field_labels": {"unknownField": ["x"]}},
            {"field_labels": {"maGiaoDich": "Reference"}},
        ]

        for invalid in invalid_configs:
            self.write_config(invalid)
            config = ConfigManager(config_path=self.config_file).load_config()
            self.assertEqual(config.database_path, "data/bank_notifier.db", invalid)
            self.assertEqual(config.poll_interval_seconds, 10, invalid)
            self.assertEqual(config.sender_domains, ["cake.vn"], invalid)

    def test_malformed_json_falls_back_to_defaults(self):
        with open(self.config_file, 'w', encoding='utf-8') as f:
            f.write("{not json")

        config = ConfigManager(config_path=self.config_file).load_config()

        self.assertEqual(config.database_path, "data/bank_notifier.db")

    def test_environment_overrides(self):
        """Test environment variables take precedence over the file"""
        self.write_config({"database_path": "file.db", "gmail_client_id": "file-id"})
        os.environ['BANK_NOTIFIER_DB'] = 'env.db'
        os.environ['GMAIL_CLIENT_ID'] = 'env-id'
        os.environ['POLL_INTERVAL_SECONDS'] = '2.5'

        config = ConfigManager(config_path=self.config_file).load_config()

        self.assertEqual(config.database_path, "env.db")
        self.assertEqual(config.gmail_client_id, "env-id")
        self.assertEqual(config.poll_interval_seconds, 2.5)

    def test_invalid_environment_value_is_ignored(self):
        os.environ['POLL_INTERVAL_SECONDS'] = 'soon'

        config = ConfigManager(config_path="nonexistent_file.json").load_config()

        self.assertEqual(config.poll_interval_seconds, 10)

    def test_environment_can_be_disabled(self):
        os.environ['BANK_NOTIFIER_DB'] = 'env.db'

        config = ConfigManager(config_path="nonexistent_file.json", use_environment=False).load_config()

        self.assertEqual(config.database_path, "data/bank_notifier.db")

    def test_config_caching(self):
        """Test configuration caching"""
        self.write_config({"retention_days": 5})
        manager = ConfigManager(config_path=self.config_file)

        config1 = manager.load_config()
        config2 = manager.load_config()
        self.assertIs(config1, config2)

        config3 = manager.load_config(force_reload=True)
        self.assertIsNot(config1, config3)

    def test_save_config_template(self):
        """Test saving configuration template"""
        template_file = os.path.join(self.temp_dir, 'template.json')
        manager = ConfigManager()
        manager.save_config_template(template_file)

        with open(template_file, 'r', encoding='utf-8') as f:
            template = json.load(f)

        self.assertEqual(template['sender_domains'], ["cake.vn"])
        self.assertIn('maGiaoDich', template['field_labels'])

        # The template itself must load cleanly
        config = ConfigManager(config_path=template_file).load_config()
        self.assertEqual(config.poll_interval_seconds, 10)

    def test_save_yaml_template(self):
        template_file = os.path.join(self.temp_dir, 'template.yml')
        ConfigManager().save_config_template(template_file)

        with open(template_file, 'r', encoding='utf-8') as f:
            template = yaml.safe_load(f)

        self.assertEqual(template['history_page_size'], 100)

    def test_update_and_reset(self):
        manager = ConfigManager(config_path="nonexistent_file.json")
        manager.update_config({"retention_days": 3, "not_a_key": 1})

        self.assertEqual(manager.load_config().retention_days, 3)
        self.assertFalse(hasattr(manager.load_config(), 'not_a_key'))

        manager.reset_config()
        self.assertEqual(manager.load_config().retention_days, 30)

    def test_missing_credentials(self):
        self.write_config({"gmail_client_id": "id"})

        manager = ConfigManager(config_path=self.config_file)

        self.assertEqual(manager.get_missing_credentials(), ['gmail_client_secret', 'gmail_refresh_token'])


if __name__ == '__main__':
    unittest.main()
