import contextlib
import io
import logging
import os
import sys
import termios
import typing

import click

log = logging.getLogger(__name__)


@contextlib.contextmanager
def restored_terminal(stream: typing.Optional[typing.IO] = None) -> typing.Iterator[None]:
    """
    Save the terminal state of a stream and put it back on the way out.

    Covers normal exit, errors and interrupts, so a cancelled hidden prompt
    never leaves the terminal without echo.
    """
    stream = stream if stream is not None else sys.stdin
    state = None
    fd = -1
    try:
        fd = stream.fileno()
        if os.isatty(fd):
            state = termios.tcgetattr(fd)
    except (AttributeError, ValueError, io.UnsupportedOperation, termios.error):
        log.debug("Input is not a terminal, nothing to restore")

    try:
        yield
    finally:
        if state is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, state)


def read_passphrase(prompt: str = "Enter passphrase", confirm: bool = False) -> str:
    with restored_terminal():
        return click.prompt(
            prompt,
            default='',
            show_default=False,
            hide_input=True,
            confirmation_prompt=confirm,
            err=True)
