import logging
import re

import pytest
from click.testing import CliRunner

from capolicy.cli import cli_root


@pytest.fixture(scope="function", autouse=True)
def cli_runner():
    runner = CliRunner()
    with runner.isolated_filesystem():
        yield runner
    # the CLI attaches a handler bound to the runner's output streams
    logging.getLogger('capolicy').handlers.clear()


def _invoke(cli_runner, config_file, data_dir, *args):
    return cli_runner.invoke(
        cli_root,
        ['--config', str(config_file), '--ca-root', str(data_dir), *args],
    )


def test_version(cli_runner):
    result = cli_runner.invoke(cli_root, ['--version'])
    m = re.match(r"^capolicy, version \d+\.\d+\.\d+", result.output)
    assert m is not None


def test_list(cli_runner, config_file, data_dir):
    result = _invoke(cli_runner, config_file, data_dir, 'list', 'testing')
    assert not result.exit_code, result.output
    assert 'root-ca: server, subca, ocsp' in result.output
    assert 'bundle-ca: (no profiles)' in result.output
    assert 'engine-ca: empty' in result.output


def test_list_default_config(cli_runner, config_file, data_dir):
    with open('capolicy.yml', 'w') as outf:
        outf.write(config_file.read_text())
    result = cli_runner.invoke(
        cli_root, ['--ca-root', str(data_dir), 'list', 'testing']
    )
    assert not result.exit_code, result.output
    assert 'root-ca: server, subca, ocsp' in result.output


def test_show(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'show', 'testing', 'root-ca',
        '--at-time', '2026-01-01T12:00:00+00:00'
    )
    assert not result.exit_code, result.output
    output = result.output
    assert 'CA certificate: ' in output and 'Root CA' in output
    assert 'Private key: yes' in output
    assert 'OCSP chain length: 2' in output
    assert (
        'CRL validity: 2026-01-01T11:00:00+00:00 - 2026-01-02T12:00:00+00:00'
        in output
    )
    assert (
        'OCSP validity: 2026-01-01T11:59:00+00:00 - 2026-01-02T00:00:00+00:00'
        in output
    )
    assert 'Profile server: default digest SHA256, allowed SHA384, SHA256' \
        in output
    assert 'Profile subca: default digest SHA512, allowed SHA512' in output


def test_show_default_ocsp(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'show', 'testing', 'bundle-ca'
    )
    assert not result.exit_code, result.output
    assert 'OCSP responder: CA certificate' in result.output
    assert 'OCSP chain length: 0' in result.output


def test_show_unknown_ca(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'show', 'testing', 'other-ca'
    )
    assert result.exit_code == 1
    assert "There is no CA named 'other-ca'" in result.output


def test_check_subject(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'check-subject', 'testing',
        'root-ca', 'server', 'C=BE', 'O=Acme', 'CN=www.example.com'
    )
    assert not result.exit_code, result.output
    assert result.output.strip().splitlines()[-1] == \
        '/O=Acme/CN=www.example.com'


def test_check_subject_violation(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'check-subject', 'testing',
        'root-ca', 'server', 'O=Acme'
    )
    assert result.exit_code == 1
    assert 'Policy violation: This profile requires you supply CN' \
        in result.output


def test_check_subject_no_policy(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'check-subject', 'testing',
        'root-ca', 'subca', 'CN=Sub CA'
    )
    assert not result.exit_code, result.output
    assert "Profile 'subca' has no subject item policy." in result.output


def test_check_subject_unknown_profile(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'check-subject', 'testing',
        'root-ca', 'client', 'CN=Alice'
    )
    assert result.exit_code == 1
    assert "Lookup problem: unknown profile 'client'" in result.output


def test_check_subject_bad_attribute(cli_runner, config_file, data_dir):
    result = _invoke(
        cli_runner, config_file, data_dir, 'check-subject', 'testing',
        'root-ca', 'server', 'CN'
    )
    assert result.exit_code == 2
    assert 'NAME=VALUE' in result.output


def test_missing_config(cli_runner, data_dir):
    result = cli_runner.invoke(
        cli_root, ['--config', 'nonexistent.yml', 'list', 'testing']
    )
    assert result.exit_code == 1
    assert 'I/O Error processing config from nonexistent.yml' \
        in result.output


def test_config_problem(cli_runner, data_dir):
    with open('broken.yml', 'w') as outf:
        outf.write('testing:\n  my-ca:\n    ca_cert:\n      key: ca.key.pem\n')
    result = cli_runner.invoke(
        cli_root,
        ['--config', 'broken.yml', '--ca-root', str(data_dir),
         'list', 'testing']
    )
    assert result.exit_code == 1
    assert 'Configuration problem: You must supply a cert with key' \
        in result.output
