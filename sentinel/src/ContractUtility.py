"""ContractUtility: Web3 initialization and contract ABI loading."""

import json
import os
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder


class ContractUtility:
    """Utility for Web3 connection and contract ABI loading.

    :ivar network: Network RPC URL.
    :ivar w3: Configured Web3 instance, signing with the local account if given.
    :ivar account: Local signing account, or None for read-only access.
    """

    # Well-known RPC endpoints; any other value is used as the URL itself.
    NETWORKS = {
        "sepolia": "https://ethereum-sepolia-rpc.publicnode.com",
        "localnet": "http://localhost:8545",
    }

    def __init__(self, network_name: str, private_key: str | None = None) -> None:
        """Initialize the contract utility.

        :param network_name: Network name or RPC URL to connect to.
        :param private_key: Optional hex private key used to sign transactions.
        """
        # RPC_URL env var overrides the default for the network
        self.network = os.environ.get("RPC_URL") or self.NETWORKS.get(
            network_name, network_name
        )

        self.w3 = Web3(Web3.HTTPProvider(self.network))
        self.account: LocalAccount | None = None
        if private_key:
            self.account = Account.from_key(private_key)
            self.w3.middleware_onion.add(
                SignAndSendRawMiddlewareBuilder.build(self.account)
            )
            self.w3.eth.default_account = self.account.address

    @staticmethod
    def get_contract_abi(contract_name: str) -> list:
        """Load the ABI of a contract from the bundled contracts folder.

        :param contract_name: Name of the contract (e.g., "AutoSentinel").
        :returns: Contract ABI.
        """
        output_path = (
            Path(__file__).parent.parent / "contracts" / f"{contract_name}.json"
        ).resolve()

        with open(output_path, "r") as file:
            contract_data = json.load(file)

        return contract_data["abi"]
