"""
Address Registry

Static lookup tables:
- monitored addresses -> owner name
- exchange deposit (address, destination tag) -> exchange name

Shared exchange hot wallets serve many customers, so an address alone does
not identify a deposit; the destination tag disambiguates.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class ExchangeAddressEntry:
    address: str
    exchange_name: str
    destination_tag: Optional[str]


MONITORED_WALLETS: Dict[str, List[str]] = {
    "Arthur Britto": [
        "rUzSNPtxrmeSTpnjsvaTuQvF2SQFPFSvLn",
        "rQKZSMgmBJvv3FvWj1vuGjUXnegTqJc25z",
        "rsXNUCJkXeyFuGHyfRnuWPita2ns32upBD",
        "ragKXjY7cBTXUus32sYHZVfkY46Nt2Q829",
        "rsF9cc6gniHLTR2Jng29ng21ez7L9PpmPt",
        "rJ5EJYsW6Vkeruj1LAmQYq3VP7QUQKBH1W",
        "rGRGYWLmSvPuhKm4rQV287PpJUgTB1VeD7",
        "rLHVsKqC72M8FXPfEwSyYkufezZJvNZuDY",
        "rEbKBkgKSQgm5x8PycZc5VjdCVTmqYfcY1",
        "rG2eEaeiJou6cVQ3KtX7XMNwGhuW99xmHP",
    ],
    "Chris Larsen": [
        "r476293LUcDqtjiSGJ5Dh44J1xBCDWeX3",
        "r44CNwMWyJf4MEA1eHVMLPTkZ1LSv4Bzrv",
        "rD6tdgGHG7hwGTA6P39aE7W89fbqxXRjzk",
        "rDfrrrBJZshSQDvfT2kmL9oUBdish52unH",
        "rhREXVHV938ToGkdJQ9NCYEY4x8kSEtjna",
        "rPoJNiCk7XSFLR28nH2hAbkYqjtMC3hK2k",
        "raorBmbzraA6TooLQ6kGWRSx1HQq7d4gzS",
        "rJNLz3A1qPKfWCtJLPhmMZAfBkutC2Qojm",
    ],
}

EXCHANGE_ADDRESSES: List[ExchangeAddressEntry] = [
    ExchangeAddressEntry("rDfrrrBJZshSQDvfT2kmL9oUBdish52unH", "Binance", "101391685"),
    ExchangeAddressEntry("rLNaPoKeeBjZe2qs6x52yVPZpZ8td4dc6w", "Bitfinex", "570654850"),
    ExchangeAddressEntry("rLHVsKqC72M8FXPfEwSyYkufezZJvNZuDY", "Bitstamp", "1234567890"),
    ExchangeAddressEntry("rDfrrrBJZshSQDvfT2kmL9oUBdish52unH", "Binance", "101391686"),
    ExchangeAddressEntry("rLNaPoKeeBjZe2qs6x52yVPZpZ8td4dc6w", "Bitfinex", "570654851"),
    ExchangeAddressEntry("rLHVsKqC72M8FXPfEwSyYkufezZJvNZuDY", "Bitstamp", "1234567891"),
]


def normalize_tag(destination_tag) -> Optional[str]:
    """Destination tags arrive as int or str; compare them as decimal strings"""
    if destination_tag is None or destination_tag == "":
        return None
    try:
        return str(int(destination_tag))
    except (TypeError, ValueError):
        return str(destination_tag).strip()


class AddressRegistry:
    """Pure lookup over owner and exchange tables"""

    def __init__(
        self,
        owners: Optional[Dict[str, Iterable[str]]] = None,
        exchanges: Optional[Iterable[ExchangeAddressEntry]] = None,
    ):
        owners = MONITORED_WALLETS if owners is None else owners
        exchanges = EXCHANGE_ADDRESSES if exchanges is None else exchanges

        self._owner_by_address: Dict[str, str] = {
            address: owner
            for owner, addresses in owners.items()
            for address in addresses
        }
        self._exchanges: Dict[Tuple[str, Optional[str]], ExchangeAddressEntry] = {
            (entry.address, normalize_tag(entry.destination_tag)): entry
            for entry in exchanges
        }
        self._exchange_addresses = {entry.address for entry in self._exchanges.values()}

    def owner_of(self, address: str) -> Optional[str]:
        return self._owner_by_address.get(address)

    def exchange_for(self, address: Optional[str], destination_tag=None) -> Optional[ExchangeAddressEntry]:
        """Exact (address, destination_tag) match"""
        if not address:
            return None
        return self._exchanges.get((address, normalize_tag(destination_tag)))

    def is_exchange_address(self, address: Optional[str]) -> bool:
        return address in self._exchange_addresses

    def monitored_wallets(self) -> List[Tuple[str, str]]:
        """(address, owner_name) pairs for onboarding"""
        return sorted(self._owner_by_address.items(), key=lambda item: (item[1], item[0]))


default_registry = AddressRegistry()
