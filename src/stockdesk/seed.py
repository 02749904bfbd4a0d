"""Static seed dataset used in demo mode and by data resets.

Records are storage-native (snake_case, no identifiers) so they can be fed
straight into any :class:`~stockdesk.gateways.RemoteGateway`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence


SEED_PRODUCTS: Sequence[Mapping[str, Any]] = (
    {
        "name": "Lunettes de soleil Aviateur",
        "category": "Accessoires > Lunettes",
        "supplier": "SunStyle",
        "buy_price": "35.00",
        "sell_price": "89.99",
        "stock": 80,
        "image_url": "https://placehold.co/400x400/e0f2fe/083344/Sunglasses",
        "created_at": "2024-01-10T09:00:00+00:00",
    },
    {
        "name": "Montre Chronographe Noire",
        "category": "Accessoires > Montres",
        "supplier": "TimeKeeper",
        "buy_price": "75.00",
        "sell_price": "199.99",
        "stock": 45,
        "image_url": "https://placehold.co/400x400/e0f2fe/083344/Watch",
        "created_at": "2024-01-11T09:00:00+00:00",
    },
    {
        "name": "Sacoche en cuir",
        "category": "Maroquinerie > Sacoches & Porte feuille",
        "supplier": "UrbanGear",
        "buy_price": "40.00",
        "sell_price": "99.99",
        "stock": 0,
        "image_url": "https://placehold.co/400x400/e0f2fe/083344/Bag",
        "created_at": "2024-01-12T09:00:00+00:00",
    },
    {
        "name": "Casquette de Baseball",
        "category": "Accessoires > Casquette",
        "supplier": "HeadWear",
        "buy_price": "10.00",
        "sell_price": "24.99",
        "stock": 120,
        "image_url": "https://placehold.co/400x400/e0f2fe/083344/Cap",
        "created_at": "2024-01-13T09:00:00+00:00",
    },
    {
        "name": "Ceinture en cuir",
        "category": "Maroquinerie > Ceintures",
        "supplier": "LeatherGoods",
        "buy_price": "15.00",
        "sell_price": "39.99",
        "stock": 40,
        "created_at": "2024-01-14T09:00:00+00:00",
    },
    {
        "name": "Bonnet Laine",
        "category": "Accessoires > Bonnets",
        "supplier": "WarmKnits",
        "buy_price": "7.00",
        "sell_price": "19.99",
        "stock": 4,
        "created_at": "2024-01-15T09:00:00+00:00",
    },
)


def seed_records() -> Dict[str, List[Dict[str, Any]]]:
    """Return fresh, mutable copies of the seed records keyed by table name."""

    return {"products": [dict(record) for record in SEED_PRODUCTS]}
