"""Tests for configuration loading, validation and CLI merging."""

import argparse
import unittest

import pytest

from yuque_exporter.config_loader import ConfigLoader, get_nested, source_config_from

VALID_YAML = """
yuque:
  id: handbook
  name: Team Handbook
  token: ${YUQUE_TEST_TOKEN}
  group_login: team
  book_slug: handbook
export:
  formats: [json, html]
"""


def valid_config(**export):
    config = ConfigLoader.with_defaults({
        'yuque': {'id': 'kb', 'token': 't', 'group_login': 'team', 'book_slug': 'handbook'},
    })
    config['export'].update(export)
    return config


class TestLoad:

    def test_load_substitutes_env_and_fills_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv('YUQUE_TEST_TOKEN', 'secret')
        path = tmp_path / 'config.yaml'
        path.write_text(VALID_YAML, encoding='utf-8')

        config = ConfigLoader.load(str(path))

        assert config['yuque']['token'] == 'secret'
        assert config['export']['formats'] == ['json', 'html']
        assert config['export']['max_concurrent_downloads'] == 5
        assert config['storage']['root'] == './data'
        ConfigLoader.validate(config)

    def test_unset_env_var_fails_validation(self, tmp_path, monkeypatch):
        monkeypatch.delenv('YUQUE_TEST_TOKEN', raising=False)
        path = tmp_path / 'config.yaml'
        path.write_text(VALID_YAML, encoding='utf-8')

        config = ConfigLoader.load(str(path))

        with pytest.raises(ValueError, match='YUQUE_TEST_TOKEN'):
            ConfigLoader.validate(config)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load(str(tmp_path / 'absent.yaml'))

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('- just\n- a list\n', encoding='utf-8')

        with pytest.raises(ValueError):
            ConfigLoader.load(str(path))

    def test_defaults_are_not_shared(self):
        first = ConfigLoader.with_defaults({})
        first['export']['formats'].append('extra')

        assert 'extra' not in ConfigLoader.with_defaults({})['export']['formats']


class TestValidate:

    def test_valid(self):
        ConfigLoader.validate(valid_config())

    @pytest.mark.parametrize('field', ['id', 'token', 'group_login', 'book_slug'])
    def test_required_fields(self, field):
        config = valid_config()
        config['yuque'][field] = ''

        with pytest.raises(ValueError, match=f'yuque.{field}'):
            ConfigLoader.validate(config)

    def test_source_id_characters(self):
        config = valid_config()
        config['yuque']['id'] = 'bad/id'

        with pytest.raises(ValueError, match='yuque.id'):
            ConfigLoader.validate(config)

    def test_base_url_scheme(self):
        config = valid_config()
        config['yuque']['base_url'] = 'ftp://yuque.com'

        with pytest.raises(ValueError, match='http or https'):
            ConfigLoader.validate(config)

    @pytest.mark.parametrize('export, message', [
        ({'formats': []}, 'non-empty'),
        ({'formats': ['json', 'epub']}, 'export.formats'),
        ({'render_timeout': 0}, 'render_timeout'),
        ({'max_concurrent_downloads': 0}, 'max_concurrent_downloads'),
        ({'embed_images': 'yes'}, 'embed_images'),
    ])
    def test_export_values(self, export, message):
        with pytest.raises(ValueError, match=message):
            ConfigLoader.validate(valid_config(**export))

    def test_negative_retries(self):
        config = valid_config()
        config['advanced']['max_retries'] = -1

        with pytest.raises(ValueError, match='max_retries'):
            ConfigLoader.validate(config)


class TestMergeWithArgs(unittest.TestCase):

    def test_cli_overrides(self):
        args = argparse.Namespace(
            data_dir='/tmp/out',
            formats='json, pdf',
            token='cli-token',
            no_embed_images=True,
            no_progress=True,
            log_file='export.log',
            log_level='DEBUG',
        )

        merged = ConfigLoader.merge_with_args(valid_config(), args)

        self.assertEqual(merged['storage']['root'], '/tmp/out')
        self.assertEqual(merged['export']['formats'], ['json', 'pdf'])
        self.assertEqual(merged['yuque']['token'], 'cli-token')
        self.assertFalse(merged['export']['embed_images'])
        self.assertFalse(merged['export']['progress_bars'])
        self.assertEqual(merged['logging'], {'level': 'DEBUG', 'file': 'export.log'})

    def test_absent_args_keep_config(self):
        config = valid_config()
        merged = ConfigLoader.merge_with_args(config, argparse.Namespace())

        self.assertEqual(merged, config)
        self.assertIsNot(merged, config)


class TestHelpers(unittest.TestCase):

    def test_get_nested(self):
        config = {'a': {'b': {'c': 1}}}
        self.assertEqual(get_nested(config, 'a.b.c'), 1)
        self.assertEqual(get_nested(config, 'a.x', 'fallback'), 'fallback')
        self.assertIsNone(get_nested(config, 'a.b.c.d'))

    def test_source_config_from(self):
        source = source_config_from(valid_config())

        self.assertEqual(source.id, 'kb')
        self.assertEqual(source.name, 'kb')
        self.assertEqual(source.base_url, 'https://www.yuque.com')
        self.assertEqual(source.token, 't')
