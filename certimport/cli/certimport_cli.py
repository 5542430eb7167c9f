#!/usr/bin/env python3
"""
certimport - command line interface
Import certificates into a certificate store, reconciling alias conflicts
and asking for confirmation before the store is changed.
"""

import sys
from typing import List

import click

from certimport import __version__
from certimport.config import load_config, setup_logging
from certimport.core.errors import CertImportError, UsageError
from certimport.core.import_manager import ImportManager, ImportOptions
from certimport.stores import StoreBackend

EXIT_FAILURE = 1

CONTEXT_SETTINGS = {'help_option_names': ['-h', '--help']}


class InlineValueCommand(click.Command):
    """
    Command whose password options take a value only in ``--opt=VALUE`` form.

    A bare ``--password`` never consumes the next argument, so
    ``certimport --password bundle.p12`` marks ``bundle.p12`` as protected.
    """

    inline_values = {
        '--password': '--password-value',
        '--store-password': '--store-password-value',
        '--dcm-password': '--store-password-value',
    }

    def parse_args(self, ctx: click.Context, args: List[str]) -> List[str]:
        rewritten = []
        for i, arg in enumerate(args):
            if arg == '--':
                rewritten.extend(args[i:])
                break
            name, sep, value = arg.partition('=')
            if sep and name in self.inline_values:
                rewritten.extend([name, self.inline_values[name], value])
            else:
                rewritten.append(arg)
        return super().parse_args(ctx, rewritten)


def _fail(ctx: click.Context, message: str, show_usage: bool = False) -> None:
    click.secho(f"ERROR: {message}", fg='bright_red', err=True)
    if show_usage:
        click.echo(ctx.get_help(), err=True)
    ctx.exit(EXIT_FAILURE)


@click.command(cls=InlineValueCommand, context_settings=CONTEXT_SETTINGS)
@click.argument('files', nargs=-1, type=click.Path(dir_okay=False))
@click.option('--yes', '-y', 'yes_mode', is_flag=True, help='Do not ask for confirmation')
@click.option('--password', 'password_flag', is_flag=True,
              help='The input file is password protected; use --password=PASSWORD to give it inline')
@click.option('--password-value', 'password', default=None, hidden=True)
@click.option('--target', '--dcm-store', 'target', default=None, metavar='system|PATH',
              help="Target certificate store, or 'system' for the system store (default)")
@click.option('--store-password', '--dcm-password', 'store_password_flag', is_flag=True,
              help='Prompt for the certificate store password; use --store-password=PASSWORD '
                   'to give it inline')
@click.option('--store-password-value', 'store_password', default=None, hidden=True)
@click.option('--fetch-from', 'fetch_from', multiple=True, metavar='HOST[:PORT]',
              help='Fetch CA certificate(s) from the given host and port (default 443)')
@click.option('--ca-only', is_flag=True, help='Only import CA certificates')
@click.option('--cert', 'alias', default=None, metavar='ID',
              help='Recommend a certificate alias for the imported certificate')
@click.option('--installed-certs', is_flag=True,
              help='Import all certificates installed on this system, for instance '
                   'the ca-certificates package')
@click.option('--backend', type=click.Choice([b.value for b in StoreBackend]), default=None,
              help='Certificate store backend (default from configuration)')
@click.option('--config', '-c', 'config_path', default=None, help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.version_option(__version__, prog_name='certimport')
@click.pass_context
def cli(ctx, files, yes_mode, password_flag, password, target, store_password_flag, store_password,
        fetch_from, ca_only, alias, installed_certs, backend, config_path, verbose):
    """Import certificates into a certificate store.

    FILES may be PEM, DER, PKCS#7, PKCS#12 or JKS files.
    """
    try:
        config = load_config(config_path)
    except UsageError as e:
        _fail(ctx, str(e))
    setup_logging(config, verbose)

    options = ImportOptions(
        yes_mode=yes_mode,
        password_protected=password_flag or password is not None,
        password=password or None,
        target=target,
        store_password=store_password or None,
        prompt_store_password=store_password_flag and not store_password,
        ca_only=ca_only,
        alias=alias,
        installed_certs=installed_certs,
        backend=backend,
        files=list(files),
        fetch_from=list(fetch_from),
    )

    manager = ImportManager(config)
    try:
        result = manager.run(options)
    except UsageError as e:
        _fail(ctx, str(e), show_usage=True)
    except CertImportError as e:
        _fail(ctx, str(e))
    except click.Abort:
        _fail(ctx, "User canceled")

    for line in result.report.format_lines():
        click.echo(line)
    click.secho("SUCCESS!!!", fg='green')


def main(argv=None) -> None:
    """Console entry point; every failure exits with the same status."""
    try:
        rv = cli.main(args=argv, prog_name='certimport', standalone_mode=False)
    except click.UsageError as e:
        click.secho(f"ERROR: {e.format_message()}", fg='bright_red', err=True)
        if e.ctx is not None:
            click.echo(e.ctx.get_help(), err=True)
        sys.exit(EXIT_FAILURE)
    except click.ClickException as e:
        e.show()
        sys.exit(EXIT_FAILURE)
    except click.Abort:
        click.secho("ERROR: User canceled", fg='bright_red', err=True)
        sys.exit(EXIT_FAILURE)
    sys.exit(rv if isinstance(rv, int) else 0)


if __name__ == '__main__':
    main()
