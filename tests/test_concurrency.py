"""
Concurrent redemption tests.

Many relays racing on one campaign: at most one success per link key and
exact fund conservation across every link.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from eth_account import Account

from linkdrop.campaign import LinkdropERC20
from linkdrop.hardening import AlreadyClaimedError
from linkdrop.signing import create_link
from linkdrop.token import InMemoryERC20


def _race(fn, workers):
    barrier = threading.Barrier(workers)

    def attempt(i):
        barrier.wait()
        try:
            fn(i)
            return "ok"
        except AlreadyClaimedError:
            return "claimed"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(attempt, range(workers)))


class TestRedemptionRace:

    def test_same_link_redeems_once(self, erc20_campaign, token, verifier, receiver):
        link = create_link(verifier.key)
        receiver_signature = link.sign_receiver(receiver.address)
        relays = [Account.create().address for _ in range(12)]

        results = _race(
            lambda i: erc20_campaign.withdraw(
                relays[i],
                receiver.address,
                link.referral_address,
                link.address,
                link.verification_signature,
                receiver_signature,
            ),
            workers=12,
        )

        assert results.count("ok") == 1
        assert results.count("claimed") == 11
        assert token.balance_of(receiver.address) == 10

    def test_distinct_links_all_redeem(self, owner, verifier, receiver, referral):
        token = InMemoryERC20(owner.address, 10_000)
        campaign = LinkdropERC20(token, 10, 1, 0, verifier.address, owner.address)
        token.approve(owner.address, campaign.address, 10_000)
        links = [create_link(verifier.key, referral.address) for _ in range(20)]

        results = _race(
            lambda i: campaign.withdraw(
                receiver.address,
                receiver.address,
                links[i].referral_address,
                links[i].address,
                links[i].verification_signature,
                links[i].sign_receiver(receiver.address),
            ),
            workers=20,
        )

        assert results.count("ok") == 20
        assert token.balance_of(receiver.address) == 20 * 9
        assert token.balance_of(referral.address) == 20 * 1
        assert token.balance_of(owner.address) == 10_000 - 200

    @pytest.mark.slow
    def test_many_rounds_conserve_funds(self, owner, verifier, receiver):
        token = InMemoryERC20(owner.address, 100_000)
        campaign = LinkdropERC20(token, 10, 1, 0, verifier.address, owner.address)
        token.approve(owner.address, campaign.address, 100_000)

        for _ in range(25):
            link = create_link(verifier.key)
            signature = link.sign_receiver(receiver.address)
            results = _race(
                lambda i: campaign.withdraw(
                    receiver.address,
                    receiver.address,
                    link.referral_address,
                    link.address,
                    link.verification_signature,
                    signature,
                ),
                workers=8,
            )
            assert results.count("ok") == 1

        assert token.balance_of(receiver.address) == 25 * 10
        assert token.balance_of(owner.address) + token.balance_of(receiver.address) == 100_000
