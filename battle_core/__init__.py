"""
battle_core/ — Settlement core for PriceBattle.

Up/down price battles: players stake on whether an asset's price will be
higher or lower at close_time than at open_time, and the winning side splits
the pool pro-rata. Everything that touches stakes, outcomes and payouts
lives here; fetching prices from the network lives in the agent directories
(pyth_agent/).

Usage:
    from battle_core import engine
    from battle_core.custody import Balance
    from battle_core.models import Direction
"""
