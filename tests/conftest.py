import pathlib

import pytest

TEST_DATA_PATH = pathlib.Path(__file__).parent.absolute() / 'data'

DUMMY_PASSWORD = 'secret'


@pytest.fixture
def data_dir():
    return TEST_DATA_PATH


@pytest.fixture
def config_file():
    return TEST_DATA_PATH / 'capolicy.yml'
