import os
import tempfile
import unittest

import yaml

from hash_archive.utils.config import ConfigManager, load_config, get_config


class TestConfigManager(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, 'config.yaml')

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, data):
        with open(self.path, 'w') as file:
            yaml.safe_dump(data, file)

    def test_missing_file_uses_defaults(self):
        config = ConfigManager(self.path).load_config()

        self.assertEqual(config.archive.max_workers, 10)
        self.assertEqual(config.archive.max_redirects, 5)
        self.assertEqual(config.archive.freshness_ttl, 86400)
        self.assertEqual(config.database.pool_size, 16)
        self.assertEqual(config.server.port_tls, 443)
        self.assertFalse(config.monitoring.metrics_enabled)

    def test_sections_override_defaults(self):
        self.write({
            'archive': {'max_workers': 3, 'freshness_ttl': 60},
            'database': {'path': '/tmp/other.db'},
            'server': {'port_raw': 8080},
        })
        config = ConfigManager(self.path).load_config()

        self.assertEqual(config.archive.max_workers, 3)
        self.assertEqual(config.archive.freshness_ttl, 60)
        self.assertEqual(config.archive.max_redirects, 5)
        self.assertEqual(config.database.path, '/tmp/other.db')
        self.assertEqual(config.server.port_raw, 8080)

    def test_unknown_keys_are_ignored(self):
        self.write({'archive': {'max_workers': 2, 'follow_links': True}})
        with self.assertLogs(level='WARNING'):
            config = ConfigManager(self.path).load_config()
        self.assertEqual(config.archive.max_workers, 2)

    def test_invalid_values(self):
        for section, values in [('archive', {'max_workers': 0}),
                                ('archive', {'max_redirects': -1}),
                                ('archive', {'user_agent': ''}),
                                ('database', {'pool_size': 0})]:
            with self.subTest(section=section, values=values):
                self.write({section: values})
                with self.assertRaises(ValueError):
                    ConfigManager(self.path).load_config()

    def test_section_must_be_mapping(self):
        self.write({'archive': ['not', 'a', 'mapping']})
        with self.assertRaises(ValueError):
            ConfigManager(self.path).load_config()

    def test_global_config(self):
        self.write({'archive': {'history_limit': 5}})
        config = load_config(self.path)
        self.assertIs(get_config(), config)
        self.assertEqual(get_config().archive.history_limit, 5)


if __name__ == '__main__':
    unittest.main()
