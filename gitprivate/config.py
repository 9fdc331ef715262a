import logging
import pathlib
import typing

import attr

from .utils import GitPrivateException, NotInitialized, TOOL_NAME, read_from_file_or_stdin

log = logging.getLogger(__name__)

DEFAULT_STATE_DIR = '.gitprivate'
STATE_DIR_VARIABLE = 'GIT_PRIVATE_DIR'
PRIVATE_KEY_VARIABLE = 'GIT_PRIVATE_KEY'
PRIVATE_KEY_FILE_VARIABLE = 'GIT_PRIVATE_KEYFILE'


@attr.s(frozen=True, kw_only=True)
class Config:
    """
    Everything an operation needs to know about its surroundings.

    Built once from command line options and environment variables, then
    passed down explicitly.
    """

    root: pathlib.Path = attr.ib(converter=pathlib.Path)
    state_dir_name: str = attr.ib(default=DEFAULT_STATE_DIR)
    private_key: typing.Optional[str] = attr.ib(default=None)
    private_key_file: typing.Optional[pathlib.Path] = attr.ib(
        default=None, converter=attr.converters.optional(pathlib.Path))

    @property
    def state_dir(self) -> pathlib.Path:
        path = pathlib.Path(self.state_dir_name)
        if path.is_absolute():
            return path
        return self.root / path

    @property
    def keys_file(self) -> pathlib.Path:
        return self.state_dir / 'keys.dat'

    @property
    def paths_file(self) -> pathlib.Path:
        return self.state_dir / 'paths.json'

    @property
    def initialized(self) -> bool:
        return self.state_dir.is_dir()

    def ensure_initialized(self) -> None:
        if not self.initialized:
            raise NotInitialized(f"not initialized, run '{TOOL_NAME} init'")

    def private_key_text(self, keyfile: typing.Optional[str] = None) -> str:
        """
        Find private key material.

        An explicit key file ('-' for stdin) wins over the inline key, which
        wins over the key file named by the environment.
        """
        if keyfile:
            log.debug(f"Reading private key from {keyfile}")
            try:
                return read_from_file_or_stdin(keyfile)
            except OSError as error:
                raise GitPrivateException(f"failed to load key from {keyfile!r}: {error}")
        if self.private_key:
            return self.private_key
        if self.private_key_file:
            log.debug(f"Reading private key from {self.private_key_file}")
            try:
                return self.private_key_file.read_text()
            except OSError as error:
                raise GitPrivateException(
                    f"failed to read private key file {str(self.private_key_file)!r}: {error}")
        raise GitPrivateException(
            f"no private key provided, use --keyfile or the environment variables "
            f"{PRIVATE_KEY_VARIABLE} or {PRIVATE_KEY_FILE_VARIABLE}")

    def state_dir_pattern(self) -> typing.Optional[str]:
        """The .gitignore negation keeping the state directory tracked."""
        try:
            relative = self.state_dir.relative_to(self.root)
        except ValueError:
            log.debug(f"State directory {self.state_dir} is outside {self.root}")
            return None
        return f"!/{relative.as_posix()}/"
