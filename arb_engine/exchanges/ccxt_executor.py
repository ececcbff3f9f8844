"""Live two-leg execution through ccxt."""

import asyncio
import time
from typing import Dict, Optional, Any

import ccxt.pro as ccxt
from loguru import logger

from ..config import Config
from ..core.types import StrategyType
from .base import ExecutionAdapter, ExecutionReport, ExecutionRequest


SUPPORTED = {StrategyType.DIRECT_ARBITRAGE}


class CcxtExecutionAdapter(ExecutionAdapter):
    """Buys on the cheap venue and sells on the expensive one with simultaneous market orders."""

    def __init__(self, config: Config):
        self.config = config
        self.clients: Dict[str, Any] = {}

    def _client(self, venue: str):
        """Initialize private REST client (with keys) on first use."""
        if venue not in self.clients:
            acct = self.config.venue(venue)
            client = getattr(ccxt, acct.ccxt_id or venue)({
                "apiKey": acct.api_key,
                "secret": acct.secret,
                "password": acct.password,
                "enableRateLimit": True,
                "timeout": int(self.config.execution.timeout_s * 1000),
                "options": {"defaultType": "spot"},
            })
            if acct.sandbox:
                client.set_sandbox_mode(True)
            self.clients[venue] = client
        return self.clients[venue]

    async def execute(self, request: ExecutionRequest) -> ExecutionReport:
        start = time.time()
        if request.strategy not in SUPPORTED:
            return ExecutionReport(False, error=f"unsupported strategy for live execution: "
                                                f"{request.strategy.value}")

        qty = request.amount / request.buy_price
        buy_order, sell_order = await asyncio.gather(
            self._place(request.buy_venue, request.instrument, 'buy', qty),
            self._place(request.sell_venue, request.instrument, 'sell', qty),
            return_exceptions=True,
        )
        buy_failed = isinstance(buy_order, BaseException)
        sell_failed = isinstance(sell_order, BaseException)

        if buy_failed and sell_failed:
            logger.error(f"Live execution failed for {request.candidate_id}: "
                         f"buy {buy_order}; sell {sell_order}")
            return ExecutionReport(False, error=f"buy leg: {buy_order}; sell leg: {sell_order}",
                                   latency_ms=int((time.time() - start) * 1000))
        if buy_failed or sell_failed:
            if buy_failed:
                report = await self._handle_one_leg(request, 'sell', request.sell_venue, sell_order,
                                                    request.sell_price, buy_order)
            else:
                report = await self._handle_one_leg(request, 'buy', request.buy_venue, buy_order,
                                                    request.buy_price, sell_order)
            report.latency_ms = int((time.time() - start) * 1000)
            return report

        buy_cost = _cost(buy_order, request.buy_price)
        sell_cost = _cost(sell_order, request.sell_price)
        fees = _fee(buy_order) + _fee(sell_order)
        filled = min(_filled(buy_order), _filled(sell_order))

        return ExecutionReport(
            success=True,
            order_id=f"{buy_order.get('id')}/{sell_order.get('id')}",
            realized_amount=filled * request.buy_price,
            realized_profit=sell_cost - buy_cost - fees,
            fees=fees,
            latency_ms=int((time.time() - start) * 1000),
            metadata={'buy_order': buy_order.get('id'), 'sell_order': sell_order.get('id')},
        )

    async def _handle_one_leg(self, request: ExecutionRequest, side: str, venue: str,
                              order: Dict[str, Any], reference_price: float,
                              error: BaseException) -> ExecutionReport:
        """One leg filled and the other failed: unwind the filled leg on its own venue.

        The report carries the filled order id. When the unwind also fails the
        filled notional is reported as realized_amount so the position stays
        visible as open exposure.
        """
        other = 'sell' if side == 'buy' else 'buy'
        filled = _filled(order)
        cost = _cost(order, reference_price)
        fees = _fee(order)
        logger.critical(f"🚨 SAFETY: {side} leg {order.get('id')} filled {filled} {request.instrument} "
                        f"on {venue} but {other} leg failed: {error}")

        metadata = {
            'filled_leg': side,
            'filled_order': order.get('id'),
            'filled_qty': filled,
            'unwind_order': None,
            'open_position': True,
        }
        unwind_proceeds = 0.0
        if self.config.execution.unwind_on_partial and filled > 0:
            try:
                unwind = await self._place(venue, request.instrument, other, filled)
                unwind_proceeds = _cost(unwind, reference_price)
                fees += _fee(unwind)
                metadata['unwind_order'] = unwind.get('id')
                metadata['open_position'] = False
                logger.warning(f"Unwound {side} leg {order.get('id')} on {venue} "
                               f"with {other} order {unwind.get('id')}")
            except Exception as e:
                logger.critical(f"🚨 SAFETY: unwind of {order.get('id')} on {venue} failed, "
                                f"position left open: {e}")

        if metadata['open_position']:
            realized_profit = -fees
            realized_amount = cost
        elif side == 'buy':
            realized_profit = unwind_proceeds - cost - fees
            realized_amount = 0.0
        else:
            realized_profit = cost - unwind_proceeds - fees
            realized_amount = 0.0

        order_ids = [str(order.get('id'))]
        if metadata['unwind_order']:
            order_ids.append(str(metadata['unwind_order']))
        return ExecutionReport(
            success=False,
            order_id="/".join(order_ids),
            realized_amount=realized_amount,
            realized_profit=realized_profit,
            fees=fees,
            error=f"{other} leg failed after {side} leg filled: {error}",
            metadata=metadata,
        )

    async def _place(self, venue: str, symbol: str, side: str, qty: float) -> Dict[str, Any]:
        client = self._client(venue)
        if not client.markets:
            await client.load_markets()
        amount = float(client.amount_to_precision(symbol, qty))
        logger.info(f"Sending {side} {amount} {symbol} market order to {venue}")
        result = await client.create_order(symbol=symbol, type='market', side=side, amount=amount)
        if not result or not result.get('id'):
            raise RuntimeError(f"Invalid {venue} response: missing order ID")
        return result

    async def close(self) -> None:
        for venue, client in self.clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Error closing {venue} client: {e}")
        self.clients = {}


def _filled(order: Dict[str, Any]) -> float:
    return float(order.get('filled') or order.get('amount') or 0.0)


def _cost(order: Dict[str, Any], reference_price: float) -> float:
    cost = order.get('cost')
    if cost is not None:
        return float(cost)
    price = order.get('average') or reference_price
    return _filled(order) * float(price)


def _fee(order: Dict[str, Any]) -> float:
    fee: Optional[Dict[str, Any]] = order.get('fee')
    return float(fee.get('cost') or 0.0) if fee else 0.0
