"""
Marketplace Metrics

Prometheus metrics for sales, auctions and fee collection. Metrics are
recorded only after an operation commits, so reverted calls never count.
"""

from prometheus_client import REGISTRY, Counter, Gauge


class MarketMetrics:
    """Metrics for piMarket settlement."""

    def __init__(self, registry=None):
        self.registry = registry or REGISTRY

        self.listings_total = Counter(
            'pimarket_listings_total',
            'Total number of listings opened',
            ['sale_type'],
            registry=self.registry
        )

        self.settlements_total = Counter(
            'pimarket_settlements_total',
            'Total number of listings closed',
            ['outcome'],
            registry=self.registry
        )

        self.sale_volume = Counter(
            'pimarket_sale_volume_total',
            'Total settled sale value in native units',
            ['sale_type'],
            registry=self.registry
        )

        self.royalties_paid = Counter(
            'pimarket_royalties_paid_total',
            'Total royalties paid in native units',
            registry=self.registry
        )

        self.fees_collected = Counter(
            'pimarket_fees_collected_total',
            'Total platform fees collected in native units',
            registry=self.registry
        )

        self.bids_total = Counter(
            'pimarket_bids_total',
            'Total number of bids placed',
            registry=self.registry
        )

        self.escrow_balance = Gauge(
            'pimarket_escrow_balance',
            'Native currency held in marketplace escrow',
            registry=self.registry
        )

    def record_listing(self, sale_type: str) -> None:
        self.listings_total.labels(sale_type=sale_type).inc()

    def record_settlement(
        self,
        sale_type: str,
        amount: int,
        royalty_amount: int,
        fee_amount: int,
    ) -> None:
        self.settlements_total.labels(outcome="sold").inc()
        self.sale_volume.labels(sale_type=sale_type).inc(amount)
        self.royalties_paid.inc(royalty_amount)
        self.fees_collected.inc(fee_amount)

    def record_cancellation(self) -> None:
        self.settlements_total.labels(outcome="cancelled").inc()

    def record_bid(self) -> None:
        self.bids_total.inc()

    def set_escrow(self, balance: int) -> None:
        self.escrow_balance.set(balance)
