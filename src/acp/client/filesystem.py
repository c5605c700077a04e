"""Local filesystem provider backing ``fs/read_text_file`` and ``fs/write_text_file``."""

import logging
import os

import anyio

from acp.shared.exceptions import AcpError

logger = logging.getLogger(__name__)


def require_absolute(path: str, what: str = "Path") -> anyio.Path:
    if not os.path.isabs(path):
        raise AcpError.invalid_params(f"{what} must be absolute: {path}", data={"path": path})
    return anyio.Path(path)


class LocalFileSystem:
    """Reads and writes UTF-8 text files on the local disk.

    Missing files map to ResourceNotFound and OS permission errors to
    PermissionDenied.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    async def read_text_file(self, path: str) -> str:
        file_path = require_absolute(path)
        try:
            return await file_path.read_text(encoding=self.encoding)
        except PermissionError:
            raise AcpError.permission_denied(f"Permission denied: {path}", data={"path": path})
        except UnicodeDecodeError:
            raise AcpError.invalid_params(f"Not a {self.encoding} text file: {path}", data={"path": path})
        except OSError as e:
            logger.debug("Failed to read %s: %s", path, e)
            raise AcpError.resource_not_found(f"File not found: {path}", data={"path": path})

    async def write_text_file(self, path: str, content: str) -> None:
        file_path = require_absolute(path)
        try:
            await file_path.write_text(content, encoding=self.encoding)
        except FileNotFoundError:
            raise AcpError.resource_not_found(f"Parent directory does not exist: {path}", data={"path": path})
        except OSError as e:
            logger.debug("Failed to write %s: %s", path, e)
            raise AcpError.permission_denied(f"Cannot write {path}: {e.strerror or e}", data={"path": path})
