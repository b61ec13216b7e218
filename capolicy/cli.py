import logging
from contextlib import contextmanager
from datetime import datetime

import click
import tzlocal
from dateutil.parser import parse as parse_dt

from .ca_config import CAConfig, CAConfigPool
from .common import ConfigurationError, ObjectNotFoundError, PolicyViolation
from .version import __version__

DEFAULT_CONFIG_FILE = 'capolicy.yml'
logger = logging.getLogger(__name__)


def _log_config():
    _logger = logging.getLogger('capolicy')
    _logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    handler.setFormatter(formatter)
    _logger.addHandler(handler)


@contextmanager
def exception_manager():
    msg = exc = None
    try:
        yield
    except click.ClickException:
        raise
    except ConfigurationError as e:
        msg = f"Configuration problem: {str(e)}"
        exc = e
    except PolicyViolation as e:
        msg = f"Policy violation: {str(e)}"
        exc = e
    except ObjectNotFoundError as e:
        msg = f"Lookup problem: {str(e)}"
        exc = e

    if exc is not None:
        logger.error(msg, exc_info=exc)
        raise click.ClickException(msg)


def _load_pool(ctx, conf_name) -> CAConfigPool:
    config = ctx.obj['config'] or DEFAULT_CONFIG_FILE
    try:
        return CAConfigPool.from_file(
            conf_name, config, ca_root_path=ctx.obj['ca_root']
        )
    except IOError as e:
        raise click.ClickException(
            f"I/O Error processing config from {config}: {e}",
        ) from e


def _get_ca(ctx, conf_name, ca_name) -> CAConfig:
    ca_config = _load_pool(ctx, conf_name)[ca_name]
    if ca_config is None:
        raise click.ClickException(
            f"There is no CA named '{ca_name}' in '{conf_name}'."
        )
    return ca_config


def _parse_attribute(value):
    name, sep, attr_value = value.partition('=')
    if not sep or not name:
        raise click.BadParameter(
            f"Subject attributes must look like NAME=VALUE, not '{value}'"
        )
    return name, attr_value


@click.group()
@click.version_option(prog_name='capolicy', version=__version__)
@click.option('--config',
              help=('YAML file to load configuration from '
                    f'[default: {DEFAULT_CONFIG_FILE}]'),
              required=False, type=click.Path(readable=True, dir_okay=False))
@click.option('--ca-root',
              help='root folder for relative paths in the configuration '
                   '[default: current directory]',
              required=False, type=click.Path(readable=True, file_okay=False))
@click.pass_context
def cli_root(ctx, config, ca_root):
    _log_config()
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['ca_root'] = ca_root


@cli_root.command(name='list', help='list the CAs in a configuration')
@click.pass_context
@click.argument('conf_name', type=str, metavar='CONF_NAME')
@exception_manager()
def list_cas(ctx, conf_name):
    pool = _load_pool(ctx, conf_name)
    for ca_name in pool.names():
        ca_config = pool[ca_name]
        profiles = ', '.join(ca_config.profile_names()) or '(no profiles)'
        click.echo(f"{ca_name}: {profiles}")


@cli_root.command(help='show the settings of a single CA')
@click.pass_context
@click.argument('conf_name', type=str, metavar='CONF_NAME')
@click.argument('ca_name', type=str, metavar='CA_NAME')
@click.option('--at-time', required=False, type=str,
              help=('ISO 8601 timestamp at which to compute CRL and OCSP '
                    'validity windows [default: now]'))
@exception_manager()
def show(ctx, conf_name, ca_name, at_time):
    ca_config = _get_ca(ctx, conf_name, ca_name)
    if at_time is None:
        at_time = datetime.now(tz=tzlocal.get_localzone())
    else:
        at_time = parse_dt(at_time)

    ca_cert = ca_config.ca_cert
    click.echo(f"CA certificate: {ca_cert.subject.human_friendly}")
    click.echo(f"Private key: {'yes' if ca_cert.has_private_key else 'no'}")
    if ca_config.has_explicit_ocsp_cert:
        click.echo(
            f"OCSP responder: {ca_config.ocsp_cert.subject.human_friendly}"
        )
    else:
        click.echo("OCSP responder: CA certificate")
    click.echo(f"OCSP chain length: {len(ca_config.ocsp_chain)}")

    this_update, next_update = ca_config.crl_window(at_time)
    click.echo(
        f"CRL validity: {this_update.isoformat()} - "
        f"{next_update.isoformat()}"
    )
    this_update, next_update = ca_config.ocsp_window(at_time)
    click.echo(
        f"OCSP validity: {this_update.isoformat()} - "
        f"{next_update.isoformat()}"
    )
    for name in ca_config.profile_names():
        profile = ca_config.profile(name)
        click.echo(
            f"Profile {name}: default digest {profile.default_md}, "
            f"allowed {', '.join(profile.allowed_mds)}"
        )


@cli_root.command(name='check-subject',
                  help='filter a subject through a profile\'s subject policy')
@click.pass_context
@click.argument('conf_name', type=str, metavar='CONF_NAME')
@click.argument('ca_name', type=str, metavar='CA_NAME')
@click.argument('profile_name', type=str, metavar='PROFILE')
@click.argument('attributes', type=str, nargs=-1, metavar='NAME=VALUE...')
@exception_manager()
def check_subject(ctx, conf_name, ca_name, profile_name, attributes):
    subject = [_parse_attribute(a) for a in attributes]
    profile = _get_ca(ctx, conf_name, ca_name).profile(profile_name)
    policy = profile.subject_item_policy
    if policy is None:
        click.echo(
            f"Profile '{profile_name}' has no subject item policy."
        )
        return
    filtered = policy.validate_subject(subject)
    click.echo(str(filtered))
