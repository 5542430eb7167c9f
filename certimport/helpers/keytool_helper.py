"""
Keytool Helper
Wraps the JDK ``keytool`` binary for reading and updating Java keystores
(JKS, JCEKS, PKCS12 cacerts).
"""

import logging
import os
import subprocess
from typing import Dict, List, Optional, Tuple

ALIAS_PREFIX = 'Alias name:'
PEM_BEGIN = '-----BEGIN CERTIFICATE-----'
PEM_END = '-----END CERTIFICATE-----'
STOREPASS_ENV_VAR = 'CERTIMPORT_KEYTOOL_STOREPASS'


class KeytoolError(Exception):
    """keytool exited with a failure status"""

    def __init__(self, message: str, output: str = ''):
        super().__init__(message)
        self.output = output


def parse_rfc_listing(output: str) -> List[Tuple[str, str]]:
    """
    Parse ``keytool -list -rfc`` output.

    Returns:
        (alias, pem) pairs; for key entries only the first certificate of the
        chain is returned, as that is the certificate stored at the alias
    """
    entries = []
    alias = None
    current: List[str] = []
    in_cert = False

    for line in output.splitlines():
        stripped = line.strip()
        if stripped.startswith(ALIAS_PREFIX):
            alias = stripped[len(ALIAS_PREFIX):].strip()
            in_cert = False
        elif PEM_BEGIN in stripped:
            in_cert = True
            current = [PEM_BEGIN]
        elif PEM_END in stripped and in_cert:
            current.append(PEM_END)
            in_cert = False
            if alias is not None:
                entries.append((alias, '\n'.join(current) + '\n'))
                alias = None
        elif in_cert:
            current.append(stripped)

    return entries


class KeytoolHelper:
    """Helper class for keytool operations"""

    def __init__(self, config: Dict = None):
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        tools = self.config.get('tools', {})
        self.keytool_path = tools.get('keytool', 'keytool')
        self.timeout = tools.get('keytool_timeout', 60)

    def _run(self, args: List[str], password: Optional[str] = None) -> str:
        cmd = [self.keytool_path] + args
        env = None
        if password is not None:
            # Kept out of argv; keytool reads it from the environment
            cmd.extend(['-storepass:env', STOREPASS_ENV_VAR])
            env = dict(os.environ, **{STOREPASS_ENV_VAR: password})
        self.logger.debug(f"Running {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                input='\n',
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            raise KeytoolError(f"keytool not found: {self.keytool_path}")
        except subprocess.TimeoutExpired:
            raise KeytoolError(f"keytool timed out after {self.timeout} seconds")

        output = result.stdout + result.stderr
        if result.returncode != 0:
            message = output.strip().splitlines()[-1] if output.strip() else f"exit status {result.returncode}"
            raise KeytoolError(f"keytool failed: {message}", output)
        return result.stdout

    def list_certificates(self, keystore_path: str, password: Optional[str] = None,
                          store_type: Optional[str] = None) -> List[Tuple[str, str]]:
        """
        List every alias of a keystore with its certificate in PEM form

        Args:
            keystore_path: Path to the keystore
            password: Keystore password (integrity is not checked without it)
            store_type: Explicit store type (JKS, JCEKS, PKCS12)

        Returns:
            List of (alias, pem) pairs
        """
        args = ['-list', '-rfc', '-keystore', keystore_path]
        if store_type:
            args.extend(['-storetype', store_type])
        return parse_rfc_listing(self._run(args, password))

    def import_certificate(self, keystore_path: str, password: str, alias: str, cert_path: str) -> None:
        """Add a trusted certificate entry, creating the keystore if needed"""
        args = [
            '-importcert', '-noprompt',
            '-trustcacerts',
            '-keystore', keystore_path,
            '-alias', alias,
            '-file', cert_path,
        ]
        self._run(args, password)

    def delete_entry(self, keystore_path: str, password: str, alias: str) -> None:
        """Remove an alias from a keystore"""
        self._run(['-delete', '-keystore', keystore_path, '-alias', alias], password)
