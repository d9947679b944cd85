"""Live BTC price stream.

Keeps one authenticated WebSocket connection to the trading bot's price
feed and republishes each snapshot to in-process subscribers.

Architecture:
    Trading bot /api/ws/btc-price -> PriceStreamClient -> on_price_update()
    subscribers -> dashboard relay (btcdash.web) -> connected browsers
"""
