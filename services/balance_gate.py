"""
Balance Gate - advisory balance lookups before an escrow is created.

Reads ERC-20 balances (or the chain's native balance) through web3.py over the
configured JSON-RPC endpoint. Results may be stale and are never consulted at
confirmation time. Any transport or RPC failure surfaces as
CollaboratorUnavailableError rather than being reported as an insufficient
balance.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import aiohttp
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.exceptions import Web3Exception

from config import Config
from services.escrow_errors import CollaboratorUnavailableError, ValidationError
from utils.escrow_input_validation import is_valid_settlement_address, parse_amount

logger = logging.getLogger(__name__)

NATIVE_ASSET_IDS = {"native", "eth", "0x0000000000000000000000000000000000000000"}
NATIVE_DECIMALS = 18

# Minimal ERC20 ABI: only the reads the gate needs
ERC20_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass
class BalanceCheck:
    """Outcome of an advisory balance check"""
    balance: Decimal
    sufficient: bool
    shortfall: Decimal


class BalanceGate:
    """web3-backed balance lookups for settlement addresses"""

    def __init__(self, rpc_url: Optional[str] = None, timeout: Optional[int] = None, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url if rpc_url is not None else Config.BALANCE_RPC_URL
        self.timeout = timeout or Config.BALANCE_RPC_TIMEOUT
        self.w3 = w3

        if self.w3 is None and self.rpc_url:
            self.w3 = AsyncWeb3(AsyncHTTPProvider(
                self.rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout)},
            ))
        if self.w3 is None:
            logger.warning("BALANCE_RPC_URL not configured - balance checks will be unavailable")

    async def check_balance(self, holder_address: str, asset_id: str, amount: Any) -> BalanceCheck:
        """
        Report whether ``holder_address`` holds at least ``amount`` of ``asset_id``.

        Returns:
            BalanceCheck with the current balance, sufficiency and any shortfall
        """
        errors = {}
        if not is_valid_settlement_address(holder_address):
            errors["holder_address"] = "Invalid wallet address format"
        if not self._is_native(asset_id) and not is_valid_settlement_address(asset_id):
            errors["asset_id"] = "Asset must be a token contract address or 'native'"
        parsed_amount, amount_error = parse_amount(amount)
        if amount_error:
            errors["amount"] = amount_error
        if errors:
            raise ValidationError(errors)

        balance = await self.get_balance(holder_address, asset_id)
        shortfall = max(parsed_amount - balance, Decimal("0"))
        result = BalanceCheck(balance=balance, sufficient=shortfall == 0, shortfall=shortfall)

        logger.info(
            f"💰 BALANCE_CHECK: holder={holder_address[:10]}... asset={asset_id} "
            f"required={parsed_amount} sufficient={result.sufficient}"
        )
        return result

    async def get_balance(self, holder_address: str, asset_id: str) -> Decimal:
        """Current holdings of ``holder_address`` in whole-token units"""
        if self.w3 is None:
            raise CollaboratorUnavailableError(
                "Balance RPC endpoint is not configured", collaborator="balance_gate"
            )

        holder = Web3.to_checksum_address(holder_address)
        try:
            if self._is_native(asset_id):
                wei = await self.w3.eth.get_balance(holder)
                return Decimal(wei).scaleb(-NATIVE_DECIMALS)

            token = self.w3.eth.contract(address=Web3.to_checksum_address(asset_id), abi=ERC20_ABI)
            raw_balance, decimals = await asyncio.gather(
                token.functions.balanceOf(holder).call(),
                token.functions.decimals().call(),
            )
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"❌ BALANCE_RPC_FAILED: asset={asset_id}: {e}")
            raise CollaboratorUnavailableError(
                f"Balance lookup failed: {e}", collaborator="balance_gate"
            ) from e

        return Decimal(raw_balance).scaleb(-decimals)

    @staticmethod
    def _is_native(asset_id: Optional[str]) -> bool:
        return isinstance(asset_id, str) and asset_id.lower() in NATIVE_ASSET_IDS
