"""Root pytest configuration for fildeal tests."""
import pytest

from fildeal.client import DealClient, DealRequest
from fildeal.keystore import KeystoreCustodian
from fildeal.secp256k1 import load_private_key
from fildeal.settings import Settings
from tests.fakes.fake_chain import FakeChainReader
from tests.helpers.samples import CONTRACT, GATEWAY_URL, PAYLOAD_CID, make_piece_cid


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


# Set up test environment variables
@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Automatically set up test environment variables."""
    monkeypatch.setenv("FILDEAL_GATEWAY_URL", GATEWAY_URL)
    for name in ("FILDEAL_GATEWAY_TOKEN", "FILDEAL_NETWORK", "FILDEAL_RPC_TIMEOUT",
                 "FILDEAL_DEAL_TIMEOUT", "FILDEAL_MAX_FRAME_SIZE", "FILDEAL_KEYSTORE"):
        monkeypatch.delenv(name, raising=False)
    # Keep rich output free of escape codes
    for name in ("FORCE_COLOR", "TTY_COMPATIBLE"):
        monkeypatch.delenv(name, raising=False)


# Standardized test fixtures
@pytest.fixture
def settings():
    """Standard test settings."""
    return Settings(gateway_url=GATEWAY_URL, deal_timeout_s=5.0)


@pytest.fixture
def chain():
    """Fake chain reader: head 1000, collateral minimum 100, actor f01234."""
    return FakeChainReader()


@pytest.fixture
def keystore():
    """Keystore custodian holding one deterministic key."""
    custodian = KeystoreCustodian()
    custodian.add_key(load_private_key(bytes(range(32))))
    return custodian


@pytest.fixture
def piece_cid():
    return make_piece_cid()


@pytest.fixture
def deal_request(piece_cid):
    """Online deal request with default epochs and derived collateral."""
    return DealRequest(
        provider="f01000",
        piece_cid=str(piece_cid),
        piece_size=2048,
        payload_cid=PAYLOAD_CID,
        contract=CONTRACT,
        http_url="https://data.example.com/piece.car",
        car_size=1500,
    )


@pytest.fixture
def deal_client(chain, keystore, settings):
    return DealClient(chain=chain, custodian=keystore, settings=settings)


@pytest.fixture
def prepared_deal(deal_client, deal_request):
    """Signed online deal ready to negotiate."""
    return deal_client.prepare(deal_request)
