import logging

import pytest

import xctovscode


@pytest.fixture(autouse=True)
def reset_logger():
    """main() binds a handler to the captured streams of the running test."""
    yield
    for handler in list(xctovscode.logger.handlers):
        xctovscode.logger.removeHandler(handler)
    xctovscode.logger.setLevel(logging.NOTSET)
    xctovscode.logger.propagate = True
