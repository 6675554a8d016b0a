"""
Test suite for the Color Clash state machine.

Verifies:
- Opening deal and card conservation through whole games
- Matching, wild color choice and the single-card exemption
- Skip, Reverse (skip with two players), Draw Two / Wild Draw Four
- Drawing always ends the turn; forced draws are capped by the deck
- Win detection and no mutation after the game ends
- Timer auto-draw only for the current turn generation

Run with: pytest test_color_clash.py -v
"""

import random
from datetime import datetime, timezone

import pytest

from cards import CardColor, ColorClashCard, ColorClashKind, can_play
from color_clash import (
    ColorClashState,
    GameStatus,
    PlayerActionType,
    auto_draw,
    declare_last_card,
    draw_card,
    new_game,
    play_card,
    skip_turn,
)
from constants import MATCHING_DECK_SIZE
from errors import (
    CardNotInHand,
    DeckExhausted,
    GameFinished,
    InvalidAction,
    InvalidCardPlay,
    NotYourTurn,
    WildColorRequired,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def num(color: CardColor, n: int) -> ColorClashCard:
    return ColorClashCard(ColorClashKind.NUMBER, color=color, number=n)


def act(color: CardColor, kind: ColorClashKind) -> ColorClashCard:
    return ColorClashCard(kind, color=color)


def filler(count: int, color: CardColor = CardColor.GREEN) -> list[ColorClashCard]:
    return [num(color, (i % 9) + 1) for i in range(count)]


def make_state(
    hands: dict[str, list[ColorClashCard]],
    top: ColorClashCard,
    deck: list[ColorClashCard] = None,
    current: int = 0,
) -> ColorClashState:
    """Build a playing snapshot with controlled hands."""
    return ColorClashState(
        room_code="ABCD",
        player_order=list(hands.keys()),
        player_hands=hands,
        deck=filler(20) if deck is None else deck,
        discard_pile=[top],
        current_player_index=current,
        current_color=top.effective_color,
        status=GameStatus.PLAYING,
        turn_started_at=NOW,
        turn_generation=1,
    )


# =============================================================================
# New Game
# =============================================================================

class TestNewGame:

    def test_opening_deal(self):
        state = new_game("ABCD", ["a", "b", "c"], rng=random.Random(3), now=NOW)

        assert state.status == GameStatus.PLAYING
        assert all(len(state.hand(p)) == 7 for p in ["a", "b", "c"])
        assert len(state.discard_pile) == 1
        assert state.top_card.kind == ColorClashKind.NUMBER
        assert state.current_color == state.top_card.color
        assert state.current_player_id == "a"
        assert state.turn_started_at == NOW
        assert state.turn_generation == 1
        assert state.total_cards() == MATCHING_DECK_SIZE

    def test_hands_do_not_overlap(self):
        state = new_game("ABCD", ["a", "b", "c", "d"], rng=random.Random(5))
        ids = [c.id for p in state.player_order for c in state.hand(p)]
        ids += [c.id for c in state.deck + state.discard_pile]
        assert len(ids) == len(set(ids)) == MATCHING_DECK_SIZE

    def test_no_burned_color_by_default(self):
        assert new_game("ABCD", ["a", "b"]).burned_color is None

    def test_burned_color_house_rule(self):
        state = new_game("ABCD", ["a", "b"], rng=random.Random(1), burn_color=True)
        assert state.burned_color in list(CardColor)

    @pytest.mark.parametrize("players", [["a"], [f"p{i}" for i in range(9)]])
    def test_player_count_limits(self, players):
        with pytest.raises(InvalidAction):
            new_game("ABCD", players)

    def test_duplicate_players_rejected(self):
        with pytest.raises(InvalidAction):
            new_game("ABCD", ["a", "a"])


# =============================================================================
# Playing Cards
# =============================================================================

class TestPlayCard:

    def test_matching_number_passes_turn(self):
        """Red 5 on red 5: legal, color stays red, turn passes to B."""
        card = num(CardColor.RED, 5)
        state = make_state({"a": [card, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))

        new = play_card(state, "a", card.id, now=NOW)

        assert new.top_card.id == card.id
        assert new.current_color == CardColor.RED
        assert new.current_player_id == "b"
        assert new.hand_count("a") == 1
        assert new.last_action_player == "a"
        assert new.last_action_type == PlayerActionType.PLAYED
        assert new.turn_generation == 2

    def test_color_changes_on_number_match(self):
        card = num(CardColor.BLUE, 5)
        state = make_state({"a": [card, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))
        new = play_card(state, "a", card.id)
        assert new.current_color == CardColor.BLUE

    def test_invalid_card_rejected_without_mutation(self):
        card = num(CardColor.BLUE, 7)
        state = make_state({"a": [card, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))
        before = state.to_dict()

        with pytest.raises(InvalidCardPlay):
            play_card(state, "a", card.id)

        assert state.to_dict() == before

    def test_single_card_exempt_from_matching(self):
        card = num(CardColor.BLUE, 7)
        state = make_state({"a": [card], "b": filler(3)}, top=num(CardColor.RED, 5))
        new = play_card(state, "a", card.id)
        assert new.winner_id == "a"

    def test_not_your_turn(self):
        card = num(CardColor.RED, 1)
        state = make_state({"a": filler(2), "b": [card, num(CardColor.RED, 2)]},
                           top=num(CardColor.RED, 5))
        with pytest.raises(NotYourTurn):
            play_card(state, "b", card.id)

    def test_card_not_in_hand(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5))
        with pytest.raises(CardNotInHand):
            play_card(state, "a", "no-such-card")

    def test_wild_without_color_suspends(self):
        wild = ColorClashCard(ColorClashKind.WILD)
        state = make_state({"a": [wild, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))
        before = state.to_dict()

        with pytest.raises(WildColorRequired):
            play_card(state, "a", wild.id)

        assert state.to_dict() == before

    def test_wild_with_color(self):
        wild = ColorClashCard(ColorClashKind.WILD)
        state = make_state({"a": [wild, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))

        new = play_card(state, "a", wild.id, chosen_color=CardColor.YELLOW)

        assert new.current_color == CardColor.YELLOW
        assert new.top_card.selected_color == CardColor.YELLOW
        assert new.current_player_id == "b"

    def test_burned_color_number_rejected(self):
        card = num(CardColor.RED, 2)
        state = make_state({"a": [card, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))
        state.burned_color = CardColor.RED
        with pytest.raises(InvalidCardPlay):
            play_card(state, "a", card.id)

    def test_input_state_not_mutated(self):
        card = num(CardColor.RED, 3)
        state = make_state({"a": [card, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))
        before = state.to_dict()
        play_card(state, "a", card.id)
        assert state.to_dict() == before


# =============================================================================
# Card Effects
# =============================================================================

class TestEffects:

    def three_players(self, card: ColorClashCard) -> ColorClashState:
        return make_state(
            {"a": [card, num(CardColor.BLUE, 1)], "b": filler(3), "c": filler(3)},
            top=num(CardColor.RED, 5),
        )

    def test_skip_passes_exactly_one_player(self):
        card = act(CardColor.RED, ColorClashKind.SKIP)
        new = play_card(self.three_players(card), "a", card.id)
        assert new.current_player_id == "c"
        assert new.skip_next_player is False

    def test_reverse_with_three_players(self):
        card = act(CardColor.RED, ColorClashKind.REVERSE)
        new = play_card(self.three_players(card), "a", card.id)
        assert new.turn_direction == -1
        assert new.current_player_id == "c"

        # Direction stays reversed for the following turn
        after = skip_turn(new, "c")
        assert after.current_player_id == "b"

    def test_reverse_is_skip_with_two_players(self):
        reverse = act(CardColor.RED, ColorClashKind.REVERSE)
        skip = act(CardColor.RED, ColorClashKind.SKIP)
        by_reverse = play_card(
            make_state({"a": [reverse, num(CardColor.BLUE, 1)], "b": filler(3)},
                       top=num(CardColor.RED, 5)),
            "a", reverse.id,
        )
        by_skip = play_card(
            make_state({"a": [skip, num(CardColor.BLUE, 1)], "b": filler(3)},
                       top=num(CardColor.RED, 5)),
            "a", skip.id,
        )
        assert by_reverse.current_player_index == by_skip.current_player_index == 0

    def test_skip_with_two_players_starts_new_turn(self):
        skip = act(CardColor.RED, ColorClashKind.SKIP)
        state = make_state({"a": [skip, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))
        new = play_card(state, "a", skip.id)
        assert new.current_player_id == "a"
        assert new.turn_generation == state.turn_generation + 1

    def test_draw_two_victim_must_draw(self):
        card = act(CardColor.RED, ColorClashKind.DRAW_TWO)
        new = play_card(self.three_players(card), "a", card.id)

        assert new.current_player_id == "b"
        assert new.pending_draw == 2
        assert new.skip_next_player is True

        with pytest.raises(InvalidAction):
            play_card(new, "b", new.hand("b")[0].id)
        with pytest.raises(InvalidAction):
            skip_turn(new, "b")

        after = draw_card(new, "b")
        assert after.hand_count("b") == 5
        assert after.pending_draw == 0
        assert after.skip_next_player is False
        assert after.current_player_id == "c"

    def test_wild_draw_four_sets_color_and_skips_victim(self):
        """Wild Draw Four choosing blue: B draws 4 and the turn comes back to A."""
        wd4 = ColorClashCard(ColorClashKind.WILD_DRAW_FOUR)
        state = make_state({"a": [wd4, num(CardColor.BLUE, 1)], "b": filler(3)},
                           top=num(CardColor.RED, 5))

        new = play_card(state, "a", wd4.id, chosen_color=CardColor.BLUE)
        assert new.pending_draw == 4
        assert new.skip_next_player is True
        assert new.current_color == CardColor.BLUE

        after = draw_card(new, "b")
        assert after.hand_count("b") == 7
        assert after.current_player_id == "a"
        assert after.pending_draw == 0


# =============================================================================
# Drawing, Passing and Declaring
# =============================================================================

class TestDrawAndPass:

    def test_draw_one_ends_turn(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5))
        new = draw_card(state, "a", now=NOW)
        assert new.hand_count("a") == 3
        assert new.current_player_id == "b"
        assert new.last_action_type == PlayerActionType.DREW
        assert new.total_cards() == state.total_cards()

    def test_draw_reshuffles_discards(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5), deck=[])
        wild = ColorClashCard(ColorClashKind.WILD, selected_color=CardColor.BLUE)
        state.discard_pile = [wild, num(CardColor.RED, 5)]

        new = draw_card(state, "a")

        assert new.hand("a")[-1].id == wild.id
        assert new.hand("a")[-1].selected_color is None
        assert len(new.discard_pile) == 1

    def test_single_draw_with_no_cards_raises(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5), deck=[])
        with pytest.raises(DeckExhausted):
            draw_card(state, "a")

    def test_forced_draw_capped_by_available_cards(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5),
                           deck=filler(1))
        state.pending_draw = 4
        state.skip_next_player = True

        new = draw_card(state, "a")

        assert new.hand_count("a") == 3
        assert new.pending_draw == 0
        assert new.skip_next_player is False
        assert new.current_player_id == "b"

    def test_skip_turn(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5))
        new = skip_turn(state, "a")
        assert new.current_player_id == "b"
        assert new.hand_count("a") == 2
        assert new.last_action_type == PlayerActionType.SKIPPED

    def test_cannot_pass_while_draw_owed(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5),
                           deck=filler(4))
        state.pending_draw = 4
        state.skip_next_player = True

        with pytest.raises(InvalidAction):
            skip_turn(state, "a")

        new = skip_turn(draw_card(state, "a"), "b")
        assert new.current_player_id == "a"
        assert new.last_action_type == PlayerActionType.SKIPPED

    def test_declare_last_card(self):
        state = make_state({"a": filler(2), "b": filler(1)}, top=num(CardColor.RED, 5))
        # Allowed off-turn, only with exactly one card
        new = declare_last_card(state, "b")
        assert new.last_card_declared["b"] is True

        with pytest.raises(InvalidAction):
            declare_last_card(state, "a")

    def test_declaration_cleared_by_drawing(self):
        state = make_state({"a": filler(1), "b": filler(2)}, top=num(CardColor.RED, 5))
        declared = declare_last_card(state, "a")
        new = draw_card(declared, "a")
        assert "a" not in new.last_card_declared


# =============================================================================
# Winning
# =============================================================================

class TestWinDetection:

    def finished_game(self) -> ColorClashState:
        card = num(CardColor.RED, 9)
        state = make_state({"a": [card], "b": filler(3)}, top=num(CardColor.RED, 5))
        return play_card(state, "a", card.id)

    def test_emptying_hand_wins(self):
        new = self.finished_game()
        assert new.status == GameStatus.FINISHED
        assert new.winner_id == "a"
        assert new.current_player_id is None

    def test_no_mutation_after_finish(self):
        new = self.finished_game()
        with pytest.raises(GameFinished):
            draw_card(new, "b")
        with pytest.raises(GameFinished):
            skip_turn(new, "b")
        with pytest.raises(GameFinished):
            play_card(new, "b", new.hand("b")[0].id)
        with pytest.raises(GameFinished):
            declare_last_card(new, "b")


# =============================================================================
# Timer Auto-Draw
# =============================================================================

class TestAutoDraw:

    def test_auto_draw_current_generation(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5))
        new = auto_draw(state, "a", generation=1)
        assert new is not None
        assert new.hand_count("a") == 3
        assert new.current_player_id == "b"

    def test_stale_generation_is_noop(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5))
        moved_on = skip_turn(skip_turn(state, "a"), "b")
        assert moved_on.current_player_id == "a"
        assert auto_draw(moved_on, "a", generation=1) is None

    def test_auto_draw_pays_pending_obligation(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5))
        state.pending_draw = 2
        state.skip_next_player = True
        new = auto_draw(state, "a", generation=1)
        assert new.hand_count("a") == 4

    def test_auto_draw_passes_when_deck_exhausted(self):
        state = make_state({"a": filler(2), "b": filler(2)}, top=num(CardColor.RED, 5), deck=[])
        new = auto_draw(state, "a", generation=1)
        assert new.current_player_id == "b"
        assert new.last_action_type == PlayerActionType.SKIPPED

    def test_auto_draw_after_finish_is_noop(self):
        card = num(CardColor.RED, 9)
        state = make_state({"a": [card], "b": filler(3)}, top=num(CardColor.RED, 5))
        finished = play_card(state, "a", card.id)
        assert auto_draw(finished, "b", generation=finished.turn_generation) is None


# =============================================================================
# Whole Games
# =============================================================================

def play_randomly(state: ColorClashState, rng: random.Random, max_steps: int = 2000):
    """Yield every snapshot of a game played with random legal moves."""
    for _ in range(max_steps):
        if state.status == GameStatus.FINISHED:
            return
        pid = state.current_player_id
        hand = state.hand(pid)

        if state.pending_draw > 0 and state.skip_next_player:
            state = draw_card(state, pid, rng=rng)
        else:
            legal = [
                c for c in hand
                if len(hand) == 1
                or can_play(c, state.top_card, state.current_color, state.burned_color)
            ]
            if legal:
                card = rng.choice(legal)
                color = rng.choice(list(CardColor)) if card.is_wild else None
                state = play_card(state, pid, card.id, chosen_color=color)
            else:
                try:
                    state = draw_card(state, pid, rng=rng)
                except DeckExhausted:
                    state = skip_turn(state, pid)
        yield state


class TestWholeGames:

    @pytest.mark.parametrize("seed,players", [(1, 2), (2, 3), (3, 4), (4, 8)])
    def test_card_conservation(self, seed, players):
        rng = random.Random(seed)
        state = new_game("ABCD", [f"p{i}" for i in range(players)], rng=rng, burn_color=seed % 2 == 0)
        assert state.total_cards() == MATCHING_DECK_SIZE

        for snapshot in play_randomly(state, rng):
            assert snapshot.total_cards() == MATCHING_DECK_SIZE
            ids = [c.id for h in snapshot.player_hands.values() for c in h]
            ids += [c.id for c in snapshot.deck + snapshot.discard_pile]
            assert len(set(ids)) == MATCHING_DECK_SIZE

    def test_serialization_round_trip_mid_game(self):
        rng = random.Random(9)
        state = new_game("ABCD", ["a", "b", "c"], rng=rng, now=NOW)
        for i, snapshot in enumerate(play_randomly(state, rng)):
            if i == 15:
                state = snapshot
                break

        restored = ColorClashState.from_dict(state.to_dict())
        assert restored.to_dict() == state.to_dict()
