"""
Temporary File Scope
Run-scoped registry for temporary artefacts (fetched certificates, exported
keystores). Everything registered is removed when the scope closes, whatever
the exit path.
"""

import atexit
import logging
import os
import re
import shutil
import signal
import tempfile
import weakref
from pathlib import Path
from typing import List, Optional, Union

_open_scopes: 'weakref.WeakSet[TempFileScope]' = weakref.WeakSet()


def _sweep_open_scopes():
    for scope in list(_open_scopes):
        scope.cleanup()


atexit.register(_sweep_open_scopes)


def _terminate(signum, frame):
    # SIGTERM becomes SystemExit so ``with`` blocks and atexit hooks still run
    raise SystemExit(128 + signum)


class TempFileScope:
    """
    Owns the temporary files and directories created during one run.

    Usage::

        with TempFileScope() as temp_files:
            path = temp_files.create('example.com.pem', data)
            ...
        # path is gone here
    """

    def __init__(self, prefix: str = 'certimport-', handle_sigterm: bool = False):
        self.logger = logging.getLogger(__name__)
        self.prefix = prefix
        self.handle_sigterm = handle_sigterm
        self._paths: List[Path] = []
        self._directory: Optional[Path] = None
        self._previous_handler = None
        self.closed = False

    def __enter__(self) -> 'TempFileScope':
        _open_scopes.add(self)
        if self.handle_sigterm:
            self._previous_handler = signal.signal(signal.SIGTERM, _terminate)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        try:
            self.cleanup()
        finally:
            if self.handle_sigterm and self._previous_handler is not None:
                signal.signal(signal.SIGTERM, self._previous_handler)
                self._previous_handler = None
        return False

    @property
    def directory(self) -> Path:
        """Private directory holding this scope's files (created lazily)."""
        if self.closed:
            raise RuntimeError("Temporary file scope already closed")
        if self._directory is None:
            self._directory = Path(tempfile.mkdtemp(prefix=self.prefix))
            _open_scopes.add(self)
        return self._directory

    def create(self, name: str, data: Union[bytes, str, None] = None) -> Path:
        """
        Create a temporary file inside the scope.

        Args:
            name: File name hint, sanitised for the filesystem
            data: Optional initial content

        Returns:
            Path of the new file
        """
        safe_name = re.sub(r'[^A-Za-z0-9._-]', '_', name) or 'tmp'
        fd, raw_path = tempfile.mkstemp(suffix=f'-{safe_name}', dir=self.directory)
        path = Path(raw_path)
        with os.fdopen(fd, 'wb') as f:
            if isinstance(data, str):
                data = data.encode('utf-8')
            if data:
                f.write(data)
        os.chmod(path, 0o600)
        self._paths.append(path)
        self.logger.debug(f"Created temporary file {path}")
        return path

    def reserve(self, name: str) -> Path:
        """Path for a file an external tool will create (not created here)."""
        safe_name = re.sub(r'[^A-Za-z0-9._-]', '_', name) or 'tmp'
        path = self.directory / f"{len(self._paths)}-{safe_name}"
        self._paths.append(path)
        return path

    def register(self, path: Union[str, Path]) -> Path:
        """Track a file created elsewhere so it is removed with the scope."""
        path = Path(path)
        self._paths.append(path)
        return path

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    def cleanup(self) -> None:
        """Remove every registered file. Safe to call more than once."""
        while self._paths:
            path = self._paths.pop()
            try:
                path.unlink()
                self.logger.debug(f"Removed temporary file {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                self.logger.warning(f"Could not remove temporary file {path}: {e}")
        if self._directory is not None:
            shutil.rmtree(self._directory, ignore_errors=True)
            self._directory = None
        self.closed = True
        _open_scopes.discard(self)
