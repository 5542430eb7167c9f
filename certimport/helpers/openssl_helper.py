"""
OpenSSL Helper
Fetches peer certificates from a live TLS endpoint by driving
``openssl s_client``.
"""

import logging
import subprocess
from typing import Dict, List, Tuple

import click

from certimport.core.errors import FetchError, UserCanceled

CERTIFICATE_END_MARKER = 'END CERTIFICATE'
DEFAULT_TLS_PORT = 443


def split_host_port(target: str) -> Tuple[str, int]:
    """
    Split ``host[:port]``; IPv6 literals must be bracketed (``[::1]:8443``).

    Raises:
        FetchError: if the port is not a number
    """
    target = target.strip()
    if target.startswith('['):
        host, _, rest = target[1:].partition(']')
        port_str = rest[1:] if rest.startswith(':') else ''
    elif target.count(':') == 1:
        host, _, port_str = target.partition(':')
    else:
        host, port_str = target, ''

    if not host:
        raise FetchError(f"No hostname in '{target}'")
    if not port_str:
        return host, DEFAULT_TLS_PORT
    try:
        port = int(port_str)
    except ValueError:
        raise FetchError(f"Invalid port in '{target}'")
    if not 0 < port < 65536:
        raise FetchError(f"Invalid port in '{target}'")
    return host, port


class OpenSSLHelper:
    """Helper class for OpenSSL operations"""

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        tools = self.config.get('tools', {})
        self.openssl_path = tools.get('openssl', 'openssl')
        self.timeout = tools.get('fetch_timeout', 30)

    def show_peer_certificates(self, hostname: str, port: int = DEFAULT_TLS_PORT) -> Dict:
        """
        Run ``openssl s_client -showcerts`` against a server

        Args:
            hostname: Server hostname
            port: Server port (default 443)

        Returns:
            Dictionary with exit status, stdout and stderr lines
        """
        connect = f'[{hostname}]:{port}' if ':' in hostname else f'{hostname}:{port}'
        cmd = [
            self.openssl_path, 's_client',
            '-connect', connect,
            '-servername', hostname,
            '-showcerts'
        ]
        self.logger.debug(f"Running {' '.join(cmd)}")

        try:
            # Empty stdin makes s_client exit after the handshake
            result = subprocess.run(
                cmd,
                input='',
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise FetchError(f"OpenSSL not found: {self.openssl_path}")
        except subprocess.TimeoutExpired:
            raise FetchError(f"Connection to {connect} timed out")

        return {
            'returncode': result.returncode,
            'stdout': result.stdout.splitlines(),
            'stderr': result.stderr.splitlines(),
        }

    def fetch_certificates(self, target: str, confirm, temp_files) -> str:
        """
        Fetch the certificate chain offered by ``target`` into a temp file.

        The s_client output is shown to the operator, who must trust it
        before anything is written.

        Args:
            target: ``host[:port]``
            confirm: Confirmation capability ``confirm(prompt, default)``
            temp_files: TempFileScope owning the output file

        Returns:
            Path of the PEM file holding the fetched output

        Raises:
            FetchError: on non-zero exit status or no certificate in the output
            UserCanceled: if the operator does not trust the certificates
        """
        hostname, port = split_host_port(target)
        result = self.show_peer_certificates(hostname, port)

        if result['returncode'] != 0:
            self._echo_errors(result['stderr'])
            raise FetchError(f"Error extracting trusted certificates from {hostname}:{port}")

        fetched = False
        for line in result['stdout']:
            if CERTIFICATE_END_MARKER in line:
                fetched = True
            click.secho(line, fg='cyan')
        if not fetched:
            self._echo_errors(result['stderr'])
            raise FetchError(f"Error extracting trusted certificates from {hostname}:{port}")

        if not confirm("Do you trust the certificate(s) listed above?", False):
            raise UserCanceled()

        output = '\n'.join(result['stdout']) + '\n'
        path = temp_files.create(f'{hostname}_{port}.pem', output)
        self.logger.info(f"Saved certificates from {hostname}:{port} to {path}")
        return str(path)

    def _echo_errors(self, lines: List[str]) -> None:
        for line in lines:
            click.secho(line, fg='red', err=True)
