import pytest

from partflow import logging as partflow_logging


@pytest.fixture(params=["asyncio", "trio"])
def anyio_backend(request):
    return request.param


@pytest.fixture(autouse=True)
def clean_logger():
    partflow_logging.logger.bind_logger(None)
    yield
    partflow_logging.logger.bind_logger(None)
