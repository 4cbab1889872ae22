"""Static network metadata and the per-network token allow-list."""
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from payoova.exceptions import UnsupportedNetworkError
from payoova.models.wallet import Network
from payoova.services.amounts import NATIVE_DECIMALS


@dataclass(frozen=True)
class TokenConfig:
    """An ERC-20 contract the platform knows about."""
    symbol: str
    address: str
    decimals: int
    coin_id: str


@dataclass(frozen=True)
class NetworkConfig:
    """Chain parameters for one network."""
    network: Network
    name: str
    chain_id: int
    native_symbol: str
    coin_id: str
    explorer_url: str
    is_testnet: bool = False
    tokens: Tuple[TokenConfig, ...] = field(default_factory=tuple)
    native_decimals: int = NATIVE_DECIMALS

    def token_by_address(self, address: str) -> Optional[TokenConfig]:
        address = address.lower()
        for token in self.tokens:
            if token.address.lower() == address:
                return token
        return None

    def token_by_symbol(self, symbol: str) -> Optional[TokenConfig]:
        symbol = symbol.upper()
        for token in self.tokens:
            if token.symbol == symbol:
                return token
        return None

    def is_native_symbol(self, symbol: str) -> bool:
        return symbol.upper() in (self.native_symbol, "NATIVE")

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


_USDT = "tether"
_USDC = "usd-coin"
_LINK = "chainlink"

NETWORKS: Dict[Network, NetworkConfig] = {
    Network.ETHEREUM: NetworkConfig(
        network=Network.ETHEREUM,
        name="Ethereum Mainnet",
        chain_id=1,
        native_symbol="ETH",
        coin_id="ethereum",
        explorer_url="https://etherscan.io",
        tokens=(
            TokenConfig("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6, _USDT),
            TokenConfig("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6, _USDC),
            TokenConfig("LINK", "0x514910771AF9Ca656af840dff83E8264EcF986CA", 18, _LINK),
        ),
    ),
    Network.POLYGON: NetworkConfig(
        network=Network.POLYGON,
        name="Polygon",
        chain_id=137,
        native_symbol="MATIC",
        coin_id="matic-network",
        explorer_url="https://polygonscan.com",
        tokens=(
            TokenConfig("USDT", "0xc2132D05D31c914a87C6611C10748AEb04B58e8F", 6, _USDT),
            TokenConfig("USDC", "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", 6, _USDC),
            TokenConfig("LINK", "0x53E0bca35eC356BD5ddDFebbD1Fc0fD03FaBad39", 18, _LINK),
        ),
    ),
    Network.BSC: NetworkConfig(
        network=Network.BSC,
        name="BNB Smart Chain",
        chain_id=56,
        native_symbol="BNB",
        coin_id="binancecoin",
        explorer_url="https://bscscan.com",
        tokens=(
            TokenConfig("USDC", "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18, _USDC),
            TokenConfig("USDT", "0x55d398326f99059fF775485246999027B3197955", 18, _USDT),
            TokenConfig("BUSD", "0xe9e7CEA3DedcA5984780Bafc599bD69ADd087D56", 18, "binance-usd"),
        ),
    ),
    Network.SEPOLIA: NetworkConfig(
        network=Network.SEPOLIA,
        name="Sepolia Testnet",
        chain_id=11155111,
        native_symbol="ETH",
        coin_id="ethereum",
        explorer_url="https://sepolia.etherscan.io",
        is_testnet=True,
    ),
    Network.MUMBAI: NetworkConfig(
        network=Network.MUMBAI,
        name="Polygon Mumbai Testnet",
        chain_id=80001,
        native_symbol="MATIC",
        coin_id="matic-network",
        explorer_url="https://mumbai.polygonscan.com",
        is_testnet=True,
    ),
}

_ALIASES = {
    "eth": Network.ETHEREUM,
    "mainnet": Network.ETHEREUM,
    "matic": Network.POLYGON,
    "bnb": Network.BSC,
    "binance": Network.BSC,
    "binance-smart-chain": Network.BSC,
}


def parse_network(value: Union[str, Network]) -> Network:
    """Resolve a network name or alias."""
    if isinstance(value, Network):
        return value
    key = (value or "").strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return Network(key)
    except ValueError:
        raise UnsupportedNetworkError(f"Unsupported network {value!r}")
