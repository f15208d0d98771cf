"""
Scenario runner.

Runs a scripted sequence of marketplace operations against a freshly
deployed chain. Scenarios are plain mappings (usually loaded from YAML):

    deployer: alice
    fee_receiver: feeReceiver
    funding:
      bob: 100000
    steps:
      - {op: mint_erc20, to: validator, amount: 1000}
      - {op: mint_nft, caller: alice, to: alice, uri: URI1,
         royalties: [[royaltyReceiver, 500]]}
      - {op: buy_nft, caller: bob, sale_id: 1, value: 5000}
      - {op: cancel_sale, caller: bob, sale_id: 1, expect_error: NOT_OWNER}

Account names are mapped to deterministic addresses. A step with
``expect_error`` must fail with that reason code; any other failure stops
the run.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

import yaml
from prometheus_client import CollectorRegistry

from .config import MarketConfig
from .deployment import Deployment, deploy_marketplace
from .exceptions import ConfigurationError, MarketError
from .market_metrics import MarketMetrics

logger = logging.getLogger(__name__)


def account_address(name: str) -> str:
    """Deterministic address for a named scenario account."""
    if name.startswith("0x") and len(name) == 42:
        return name.lower()
    return "0x" + hashlib.sha3_256(name.encode()).digest()[-20:].hex()


@dataclass
class StepResult:
    index: int
    op: str
    result: Any = None
    error: str | None = None


@dataclass
class ScenarioReport:
    """Outcome of a scenario run."""

    deployment: Deployment
    accounts: dict[str, str]
    steps: list[StepResult] = field(default_factory=list)

    def native_balances(self) -> dict[str, int]:
        chain = self.deployment.chain
        return {name: chain.balance_of(address) for name, address in self.accounts.items()}

    def token_balances(self) -> dict[str, int]:
        erc20 = self.deployment.sample_erc20
        return {name: erc20.balance_of(address) for name, address in self.accounts.items()}

    def nft_owners(self) -> dict[int, str]:
        by_address = {address: name for name, address in self.accounts.items()}
        by_address[self.deployment.pi_market.address] = "piMarket"
        nft = self.deployment.pi_nft
        return {
            token_id: by_address.get(owner, owner)
            for token_id, owner in sorted(nft.owners.items())
        }


class ScenarioRunner:
    """Executes scenario steps against one deployment."""

    def __init__(self, scenario: dict, config: MarketConfig | None = None) -> None:
        self.scenario = scenario
        self.accounts: dict[str, str] = {}

        config = config or MarketConfig.from_env()
        fee_receiver = scenario.get("fee_receiver")
        if fee_receiver:
            config = replace(config, fee_receiver=self.address(fee_receiver))

        deployer = self.address(scenario.get("deployer", "deployer"))
        self.registry = CollectorRegistry()
        self.deployment = deploy_marketplace(
            deployer, config=config, metrics=MarketMetrics(self.registry)
        )

        for name, amount in (scenario.get("funding") or {}).items():
            self.deployment.chain.fund(self.address(name), int(amount))

        self._ops: dict[str, Callable[[dict], Any]] = {
            "mint_erc20": self._mint_erc20,
            "approve_erc20": self._approve_erc20,
            "mint_nft": self._mint_nft,
            "add_erc20": self._add_erc20,
            "transfer_erc20": self._transfer_erc20,
            "approve_nft": self._approve_nft,
            "sell_nft": self._sell_nft,
            "buy_nft": self._buy_nft,
            "cancel_sale": self._cancel_sale,
            "edit_sale_price": self._edit_sale_price,
            "sell_nft_by_bid": self._sell_nft_by_bid,
            "bid": self._bid,
            "execute_bid_order": self._execute_bid_order,
            "withdraw_bid_money": self._withdraw_bid_money,
            "advance_time": self._advance_time,
        }

    @classmethod
    def from_file(cls, path: str | Path, config: MarketConfig | None = None) -> "ScenarioRunner":
        with open(path, encoding="utf-8") as handle:
            scenario = yaml.safe_load(handle) or {}
        if not isinstance(scenario, dict):
            raise ConfigurationError(f"Scenario file {path} must contain a mapping")
        return cls(scenario, config=config)

    def address(self, name: str) -> str:
        if name not in self.accounts:
            self.accounts[name] = account_address(name)
        return self.accounts[name]

    def run(self) -> ScenarioReport:
        report = ScenarioReport(deployment=self.deployment, accounts=self.accounts)
        for index, step in enumerate(self.scenario.get("steps") or []):
            op = step.get("op")
            handler = self._ops.get(op)
            if handler is None:
                raise ConfigurationError(f"Step {index}: unknown op {op!r}")

            expected = step.get("expect_error")
            try:
                result = handler(step)
            except MarketError as exc:
                if expected != exc.reason:
                    raise
                report.steps.append(StepResult(index=index, op=op, error=exc.reason))
                continue

            if expected:
                raise ConfigurationError(
                    f"Step {index} ({op}) succeeded but expected {expected}"
                )
            report.steps.append(StepResult(index=index, op=op, result=result))

        logger.info(
            "Scenario finished",
            extra={"event": "scenario.finished", "steps": len(report.steps)},
        )
        return report

    # ==================== Operations ====================

    def _mint_erc20(self, step: dict) -> Any:
        erc20 = self.deployment.sample_erc20
        return erc20.mint(self.deployment.deployer, self.address(step["to"]), step["amount"])

    def _approve_erc20(self, step: dict) -> Any:
        erc20 = self.deployment.sample_erc20
        spender = step.get("spender")
        spender_address = self.address(spender) if spender else self.deployment.pi_nft.address
        return erc20.approve(self.address(step["caller"]), spender_address, step["amount"])

    def _mint_nft(self, step: dict) -> Any:
        royalties = [(self.address(name), bps) for name, bps in step.get("royalties") or []]
        return self.deployment.pi_nft.mint_nft(
            self.address(step["caller"]),
            self.address(step.get("to", step["caller"])),
            step.get("uri", ""),
            royalties,
        )

    def _add_erc20(self, step: dict) -> Any:
        caller = self.address(step["caller"])
        return self.deployment.pi_nft.add_erc20(
            caller,
            self.address(step.get("from", step["caller"])),
            step["token_id"],
            self.deployment.sample_erc20.address,
            step["amount"],
        )

    def _transfer_erc20(self, step: dict) -> Any:
        return self.deployment.pi_nft.transfer_erc20(
            self.address(step["caller"]),
            step["token_id"],
            self.address(step["to"]),
            self.deployment.sample_erc20.address,
            step["amount"],
        )

    def _approve_nft(self, step: dict) -> Any:
        spender = step.get("spender")
        spender_address = self.address(spender) if spender else self.deployment.pi_market.address
        return self.deployment.pi_nft.approve(
            self.address(step["caller"]), spender_address, step["token_id"]
        )

    def _sell_nft(self, step: dict) -> Any:
        return self.deployment.pi_market.sell_nft(
            self.address(step["caller"]),
            self.deployment.pi_nft.address,
            step["token_id"],
            step["price"],
        )

    def _buy_nft(self, step: dict) -> Any:
        return self.deployment.pi_market.buy_nft(
            self.address(step["caller"]), step["sale_id"], step["value"]
        )

    def _cancel_sale(self, step: dict) -> Any:
        return self.deployment.pi_market.cancel_sale(
            self.address(step["caller"]), step["sale_id"]
        )

    def _edit_sale_price(self, step: dict) -> Any:
        return self.deployment.pi_market.edit_sale_price(
            self.address(step["caller"]), step["sale_id"], step["price"]
        )

    def _sell_nft_by_bid(self, step: dict) -> Any:
        return self.deployment.pi_market.sell_nft_by_bid(
            self.address(step["caller"]),
            self.deployment.pi_nft.address,
            step["token_id"],
            step["price"],
            step["duration"],
        )

    def _bid(self, step: dict) -> Any:
        return self.deployment.pi_market.bid(
            self.address(step["caller"]), step["sale_id"], step["value"]
        )

    def _execute_bid_order(self, step: dict) -> Any:
        return self.deployment.pi_market.execute_bid_order(
            self.address(step["caller"]), step["sale_id"], step["bid_index"]
        )

    def _withdraw_bid_money(self, step: dict) -> Any:
        return self.deployment.pi_market.withdraw_bid_money(
            self.address(step["caller"]), step["sale_id"], step["bid_index"]
        )

    def _advance_time(self, step: dict) -> Any:
        return self.deployment.chain.advance_time(step["seconds"])
