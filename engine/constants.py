"""
Rule constants for the online card games.

This module is the single source of truth for deck composition and
scoring thresholds. Tunable values come from config.py (environment aware);
fixed rule values live here.

Color Clash deck (108 cards):
    - Per color: one 0, two each of 1-9
    - Per color: two Skip, two Reverse, two Draw Two
    - Four Wild, four Wild Draw Four

Flip 21:
    - Standard 52-card deck, no jokers
    - Ace: 1 or 11, face cards: 10
    - Dealer draws until reaching the stand value
"""

from config import config


# =============================================================================
# Color Clash
# =============================================================================

ZERO_CARDS_PER_COLOR = 1
NUMBER_CARD_COPIES = 2          # copies of 1-9 per color
ACTION_CARD_COPIES = 2          # copies of each action card per color
WILD_CARD_COUNT = 4
WILD_DRAW_FOUR_COUNT = 4
MATCHING_DECK_SIZE = 108

DRAW_TWO_PENALTY = 2
WILD_DRAW_FOUR_PENALTY = 4

COLOR_CLASH_HAND_SIZE: int = config.game_defaults.COLOR_CLASH_HAND_SIZE


# =============================================================================
# Flip 21
# =============================================================================

ELIMINATION_DECK_SIZE = 52
BUST_LIMIT = 21
FACE_CARD_VALUE = 10
ACE_LOW_VALUE = 1
ACE_HIGH_VALUE = 11
FLIP21_CARDS_PER_DEAL = 1  # single face-up card per participant per round

DEALER_STAND_VALUE: int = config.game_defaults.DEALER_STAND_VALUE
DEALER_DRAW_DELAY: float = config.game_defaults.DEALER_DRAW_DELAY


# =============================================================================
# Shared
# =============================================================================

TURN_DURATION_SECONDS: float = config.game_defaults.TURN_DURATION_SECONDS
MIN_PLAYERS: int = config.game_defaults.MIN_PLAYERS
MAX_PLAYERS: int = config.game_defaults.MAX_PLAYERS
