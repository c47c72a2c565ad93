import logging
from decimal import Decimal

from web3 import Web3

from proofgate.config import (
    CHAIN_RPC_URL,
    CLAIM_TOKEN_CONTRACT,
    CLAIM_TOKEN_DECIMALS,
    RPC_TIMEOUT_SECS,
    TREASURY_PRIVATE_KEY,
)
from proofgate.disburse.base import Disburser, DisbursementError

logger = logging.getLogger(__name__)

ERC20_TRANSFER_ABI = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    }
]


class Web3Disburser(Disburser):
    """
    ERC-20 transfer from the treasury account.
    """

    def __init__(self):
        if not CLAIM_TOKEN_CONTRACT:
            raise RuntimeError("CLAIM_TOKEN_CONTRACT is not set")
        if not TREASURY_PRIVATE_KEY:
            raise RuntimeError("TREASURY_PRIVATE_KEY is not set")

        self.w3 = Web3(Web3.HTTPProvider(CHAIN_RPC_URL, request_kwargs={"timeout": RPC_TIMEOUT_SECS}))
        self.account = self.w3.eth.account.from_key(TREASURY_PRIVATE_KEY)
        self.token = self.w3.eth.contract(
            address=Web3.to_checksum_address(CLAIM_TOKEN_CONTRACT),
            abi=ERC20_TRANSFER_ABI,
        )

    @property
    def name(self) -> str:
        return "web3"

    def disburse(self, recipient: str, amount: str) -> str:
        try:
            units = int(Decimal(amount) * (10 ** CLAIM_TOKEN_DECIMALS))
            tx = self.token.functions.transfer(
                Web3.to_checksum_address(recipient), units
            ).build_transaction(
                {
                    "from": self.account.address,
                    "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                    "chainId": self.w3.eth.chain_id,
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise DisbursementError(f"token transfer failed: {e}") from e

        logger.info("sent %s tokens to %s", amount, recipient)
        return Web3.to_hex(tx_hash)
