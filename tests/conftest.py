import os
import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import linkdrop`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from eth_account import Account  # noqa: E402

from linkdrop.config import ConfigManager  # noqa: E402
from linkdrop.events import EventSink  # noqa: E402
from linkdrop.token import InMemoryERC20, InMemoryERC721, NativeLedger  # noqa: E402

# Fixed keys so failures reproduce
OWNER_KEY = "0x" + "11" * 32
VERIFIER_KEY = "0x" + "22" * 32
RELAYER_KEY = "0x" + "33" * 32
RECEIVER_KEY = "0x" + "44" * 32
REFERRAL_KEY = "0x" + "55" * 32
LINK_KEY = "0x" + "66" * 32
STRANGER_KEY = "0x" + "77" * 32

CLAIM_AMOUNT = 10
REFERRAL_AMOUNT = 1
INITIAL_SUPPLY = 1000


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless LINKDROP_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('LINKDROP_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set LINKDROP_RUN_SLOW=1 to enable'))


@pytest.fixture
def owner():
    return Account.from_key(OWNER_KEY)


@pytest.fixture
def verifier():
    return Account.from_key(VERIFIER_KEY)


@pytest.fixture
def relayer():
    return Account.from_key(RELAYER_KEY)


@pytest.fixture
def receiver():
    return Account.from_key(RECEIVER_KEY)


@pytest.fixture
def referral():
    return Account.from_key(REFERRAL_KEY)


@pytest.fixture
def link_account():
    return Account.from_key(LINK_KEY)


@pytest.fixture
def stranger():
    return Account.from_key(STRANGER_KEY)


@pytest.fixture
def sink():
    return EventSink()


@pytest.fixture
def native():
    return NativeLedger()


@pytest.fixture
def token(owner, sink):
    return InMemoryERC20(owner.address, INITIAL_SUPPLY, sink=sink)


@pytest.fixture
def nft(owner, sink):
    return InMemoryERC721(owner.address, token_ids=range(1, 6), sink=sink)


@pytest.fixture
def erc20_campaign(token, owner, verifier, native, sink):
    from linkdrop.campaign import LinkdropERC20

    campaign = LinkdropERC20(
        token,
        claim_amount=CLAIM_AMOUNT,
        referral_amount=REFERRAL_AMOUNT,
        claim_amount_native=0,
        verification_address=verifier.address,
        owner=owner.address,
        native=native,
        sink=sink,
    )
    token.approve(owner.address, campaign.address, INITIAL_SUPPLY)
    return campaign


@pytest.fixture
def erc721_campaign(nft, owner, verifier, native, sink):
    from linkdrop.campaign import LinkdropERC721

    campaign = LinkdropERC721(
        nft,
        claim_amount_native=0,
        verification_address=verifier.address,
        owner=owner.address,
        native=native,
        sink=sink,
    )
    nft.set_approval_for_all(owner.address, campaign.address, True)
    return campaign


@pytest.fixture
def clean_config(monkeypatch, tmp_path):
    """A fresh ConfigManager with no LINKDROP_* environment and an empty home."""
    for key in list(os.environ):
        if key.startswith("LINKDROP_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    ConfigManager.reset()
    yield ConfigManager()
    ConfigManager.reset()
