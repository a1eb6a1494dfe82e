from sudoku_rogue.grid import box_cells
from sudoku_rogue.store import Wallet
from sudoku_rogue.telemetry import POWERUP_EFFECT_RESULT
from sudoku_rogue.types import (
    AmbiguityTier,
    AmbiguityZone,
    ForbiddenSlot,
    LevelModifier,
    ModifierType,
    Phase,
    Rarity,
    RerollMethod,
    ShopSession,
    Upgrade,
    UpgradeKind,
)


def _load(sim, state, selected=None):
    state.selected = selected
    sim.state = state
    return state


def _passive(effect, **kwargs):
    return Upgrade(id=effect, name=effect, kind=UpgradeKind.PASSIVE, effect=effect, **kwargs)


def _depth(n):
    return LevelModifier(ModifierType.DELAYED_VALIDATION, n)


# -- run start -----------------------------------------------------------------

def test_new_run_starts_on_floor_one(sim):
    state = sim.state
    assert state.floor == 1
    assert state.phase == Phase.PUZZLE
    assert state.of == 100
    assert state.owns("starter_hint")
    assert [m.type for m in state.modifiers] == [ModifierType.DELAYED_VALIDATION]
    assert sim.stats["total_games_played"] == 1


def test_select_cell_ignores_fixed_cells(sim, make_state):
    state = _load(sim, make_state(empty=[(0, 0)]))
    assert sim.select_cell(0, 1) is state
    assert sim.select_cell(9, 0) is state
    assert sim.select_cell(0, 0).selected == (0, 0)


# -- guards ----------------------------------------------------------------------

def test_rejected_placements_return_the_same_state(sim, make_state):
    state = _load(sim, make_state(empty=[(0, 0)]), selected=(0, 1))
    assert sim.place_number(5) is state
    state.selected = None
    assert sim.place_number(5) is state
    state.selected = (0, 0)
    assert sim.place_number(0) is state
    assert sim.place_number(10) is state


def test_locked_cell_and_locked_box_reject(sim, make_state, solution):
    state = _load(sim, make_state(empty=[(0, 0)]), selected=(0, 0))
    state.cells[0][0].lock_turns = 2
    assert sim.place_number(solution[0][0]) is state
    state.cells[0][0].lock_turns = 0
    state.locked_boxes.append(0)
    assert sim.place_number(solution[0][0]) is state


def test_forbidden_slot_is_only_a_hint(sim, make_state, wrong_digit):
    digit = wrong_digit(0, 0)
    state = _load(sim, make_state(empty=[(0, 0), (8, 8)]), selected=(0, 0))
    state.forbidden_slots.append(ForbiddenSlot(0, 0, digit))
    new = sim.place_number(digit)
    assert new is not state
    assert new.cells[0][0].value == digit
    assert new.mistakes == 1
    assert new.forbidden_slots == [ForbiddenSlot(0, 0, digit)]


# -- placement & validation ------------------------------------------------------------

def test_correct_placement_publishes_a_new_state(sim, make_state, solution):
    state = _load(sim, make_state(empty=[(0, 0), (8, 8)]), selected=(0, 0))
    new = sim.place_number(solution[0][0])
    assert new is not state
    assert new.cells[0][0].value == solution[0][0]
    assert new.turn == 1 and new.mistakes == 0
    assert new.move_history[0].validated and new.move_history[0].correct
    # the earlier state is untouched
    assert state.cells[0][0].value is None
    assert state.turn == 0 and state.move_history == []


def test_wrong_placement_counts_and_spreads(sim, make_state, wrong_digit):
    _load(sim, make_state(empty=[(0, 0), (0, 1), (0, 2), (8, 8)]), selected=(0, 0))
    new = sim.place_number(wrong_digit(0, 0))
    assert new.mistakes == 1 and new.run_mistakes == 1
    assert new.cells[0][0].correct is False
    assert new.cells[0][1].corruption == 1 and new.cells[0][2].corruption == 1
    assert new.cells[8][8].corruption == 0
    assert new.corruption == 2


def test_delayed_validation_checks_the_oldest_move(sim, make_state, wrong_digit):
    _load(sim, make_state(empty=[(0, 0), (4, 4), (8, 8), (2, 6)], modifiers=[_depth(3)]))
    for n, (r, c) in enumerate([(0, 0), (4, 4), (8, 8)], start=1):
        sim.select_cell(r, c)
        state = sim.place_number(wrong_digit(r, c))
        if n < 3:
            assert state.mistakes == 0
    assert state.mistakes == 1
    assert state.move_history[0].validated
    assert not state.move_history[1].validated
    assert len(state.pending) == 2


def test_depth_one_validates_immediately(sim, make_state, wrong_digit):
    _load(sim, make_state(empty=[(0, 0), (8, 8)], modifiers=[_depth(1)]), selected=(0, 0))
    assert sim.place_number(wrong_digit(0, 0)).mistakes == 1


def test_completion_flushes_pending_moves(sim, make_state, solution, wrong_digit):
    _load(sim, make_state(empty=[(0, 0), (4, 4)], modifiers=[_depth(5)]), selected=(0, 0))
    sim.place_number(wrong_digit(0, 0))
    sim.place_number(solution[0][0])
    sim.select_cell(4, 4)
    state = sim.place_number(solution[4][4])
    assert state.pending == []
    assert state.mistakes == 1
    assert state.phase == Phase.SHOP


# -- corruption thresholds ---------------------------------------------------------------

def test_threshold_fires_once_per_floor(sim, make_state, wrong_digit):
    state = make_state(empty=[(0, 0), (0, 1), (8, 8), (8, 7), (7, 7)])
    state.cells[8][8].corruption = 5
    state.cells[8][7].corruption = 4
    state.cells[7][7].candidates = [1, 2]
    state.corruption = 9
    _load(sim, state, selected=(0, 0))

    new = sim.place_number(wrong_digit(0, 0))
    assert new.corruption == 10
    assert new.fired_thresholds == [10]
    assert new.cells[7][7].candidates == []

    # drop back under the boundary and cross it again
    new.cells[0][1].corruption = 0
    new.corruption = 9
    new.cells[7][7].candidates = [3]
    new.selected = (0, 1)
    again = sim.place_number(wrong_digit(0, 1))
    assert again.corruption == 10
    assert again.fired_thresholds == [10]
    assert again.cells[7][7].candidates == [3]


def test_crossing_fifty_is_a_loss(sim, make_state, wrong_digit):
    state = make_state(empty=[(0, 0), (0, 1), (4, 4)] + box_cells(8))
    for r, c in box_cells(8):
        state.cells[r][c].corruption = 5
    state.cells[4][4].corruption = 4
    state.corruption = 49
    state.fired_thresholds = [10, 20, 30, 40]
    _load(sim, state, selected=(0, 0))

    new = sim.place_number(wrong_digit(0, 0))
    assert new.corruption == 50
    assert new.phase == Phase.DEFEAT
    assert new.game_over and new.loss_reason == "corruption"
    new.selected = (0, 1)
    assert sim.place_number(1) is new


def test_mistake_cap_ends_the_run(sim, make_state, wrong_digit):
    _load(sim, make_state(empty=[(0, 0), (8, 8)], max_mistakes=1), selected=(0, 0))
    new = sim.place_number(wrong_digit(0, 0))
    assert new.phase == Phase.DEFEAT
    assert new.loss_reason == "mistakes"
    assert sim.stats["current_win_streak"] == 0


# -- mistake mitigation -----------------------------------------------------------------

def test_first_mistake_safe_skips_spread(sim, make_state, wrong_digit):
    state = make_state(empty=[(0, 0), (0, 1), (8, 8)], upgrades=[_passive("first_mistake_safe")])
    _load(sim, state, selected=(0, 0))
    new = sim.place_number(wrong_digit(0, 0))
    assert new.mistakes == 1
    assert new.corruption == 0


def test_no_spread_mutator(sim, make_state, wrong_digit):
    state = make_state(empty=[(0, 0), (0, 1), (8, 8)], upgrades=[_passive("no_spread")], mistakes=1)
    _load(sim, state, selected=(0, 0))
    assert sim.place_number(wrong_digit(0, 0)).corruption == 0


def test_corrupt_gold_pays_per_mistake(sim, make_state, wrong_digit):
    state = make_state(empty=[(0, 0), (8, 8)], upgrades=[_passive("corrupt_gold")])
    _load(sim, state, selected=(0, 0))
    new = sim.place_number(wrong_digit(0, 0))
    assert new.of == 10
    assert new.mistakes == 1


def test_neutralizer_and_shield_absorb_mistakes(sim, make_state, wrong_digit):
    neutralizer = _passive("mistake_neutralize", charges=1, max_charges=1)
    state = make_state(empty=[(0, 0), (0, 1), (8, 8)], upgrades=[neutralizer], shield_charges=1)
    _load(sim, state, selected=(0, 0))
    new = sim.place_number(wrong_digit(0, 0))
    assert new.mistakes == 0
    assert new.upgrades[0].charges == 0
    assert new.shield_charges == 1

    new.selected = (0, 1)
    after = sim.place_number(wrong_digit(0, 1))
    assert after.mistakes == 0
    assert after.shield_charges == 0


# -- upgrades on placement -------------------------------------------------------------

def test_correct_placement_triggers_digit_upgrades(sim, make_state, solution, telemetry):
    digit = solution[0][0]
    golden = _passive("golden_number", digit=digit)
    bonus = Upgrade(id="bonus", name="Bonus", kind=UpgradeKind.NUMBER, effect="grant_currency",
                    digit=digit, params={"amount": 4})
    _load(sim, make_state(empty=[(0, 0), (8, 8)], upgrades=[golden, bonus]), selected=(0, 0))
    new = sim.place_number(digit)
    assert new.of == 5
    assert [e.upgrade_id for e in new.applied_effects] == ["bonus"]
    assert POWERUP_EFFECT_RESULT in telemetry.names()


def test_wrong_placement_does_not_trigger_upgrades(sim, make_state, solution, wrong_digit):
    digit = wrong_digit(0, 0)
    bonus = Upgrade(id="bonus", name="Bonus", kind=UpgradeKind.NUMBER, effect="grant_currency",
                    digit=digit, params={"amount": 4})
    _load(sim, make_state(empty=[(0, 0), (8, 8)], upgrades=[bonus]), selected=(0, 0))
    assert sim.place_number(digit).of == 0


# -- other puzzle commands ---------------------------------------------------------------

def test_consumable_solves_selected_tile(sim, make_state, solution):
    hint = Upgrade(id="starter_hint", name="Hint", kind=UpgradeKind.CONSUMABLE, effect="solve_tile",
                   charges=1, max_charges=1)
    state = _load(sim, make_state(empty=[(0, 0), (8, 8)], upgrades=[hint]))
    assert sim.use_consumable("starter_hint") is state
    assert sim.use_consumable("missing") is state

    state.selected = (0, 0)
    new = sim.use_consumable("starter_hint")
    assert new.cells[0][0].value == solution[0][0]
    assert new.cells[0][0].fixed
    assert not new.owns("starter_hint")


def test_consumable_with_nothing_to_do_keeps_its_charge(sim, make_state):
    heal = Upgrade(id="mistake_heal", name="Heal", kind=UpgradeKind.CONSUMABLE, effect="heal_mistake",
                   charges=1, max_charges=1)
    state = _load(sim, make_state(empty=[(0, 0)], upgrades=[heal]))
    assert sim.use_consumable("mistake_heal") is state
    state.mistakes = 2
    assert sim.use_consumable("mistake_heal").mistakes == 1


def test_clear_and_toggle_candidates(sim, make_state, solution):
    _load(sim, make_state(empty=[(0, 0), (8, 8)]), selected=(8, 8))
    sim.toggle_candidate(3)
    state = sim.toggle_candidate(1)
    assert state.cells[8][8].candidates == [1, 3]
    state = sim.toggle_candidate(3)
    assert state.cells[8][8].candidates == [1]

    sim.place_number(solution[8][8])
    cleared = sim.clear_cell()
    assert cleared.cells[8][8].value is None
    cleared.selected = (0, 1)
    assert sim.clear_cell() is cleared


def test_timed_hide_cycles_on_tick(sim, make_state):
    hide = LevelModifier(ModifierType.TIMED_HIDE, duration_ms=1000)
    timer_cells = [rc for rc in box_cells(0) if rc != (0, 0)]
    state = make_state(empty=box_cells(0), modifiers=[hide], timed_hide_box=0,
                       timed_hide_since=0.0, timed_hidden=list(timer_cells))
    for r, c in box_cells(0):
        state.cells[r][c].hidden = True
    # hidden by corruption, not by the timer
    state.cells[0][0].corruption = 4
    _load(sim, state)

    assert sim.tick(0.5) is state
    shown = sim.tick(1.5)
    assert shown.timed_hide_box is None and shown.timed_hidden == []
    assert not any(shown.cells[r][c].hidden for r, c in timer_cells)
    assert shown.cells[0][0].hidden

    hidden = sim.tick(3.0)
    assert hidden.timed_hide_box is not None
    assert hidden.timed_hide_since == 3.0
    assert (0, 0) not in hidden.timed_hidden
    for r, c in hidden.timed_hidden:
        assert hidden.cells[r][c].hidden


def test_candidate_shuffle_respects_flow_state(sim, make_state):
    shuffle = LevelModifier(ModifierType.CANDIDATE_SHUFFLE, regions=[0], cooldown_ms=1000)
    state = make_state(empty=[(0, 0)], modifiers=[shuffle], last_shuffle_at=0.0,
                       upgrades=[_passive("flow_state")])
    _load(sim, state)
    assert sim.tick(5.0) is state
    state.upgrades = []
    assert sim.tick(5.0).last_shuffle_at == 5.0


# -- floor end, shop, next floor ---------------------------------------------------------

def test_floor_completion_pays_out(sim, make_state, solution):
    _load(sim, make_state(empty=[(0, 0)]), selected=(0, 0))
    new = sim.place_number(solution[0][0])
    assert new.phase == Phase.SHOP and new.complete
    assert new.of == 70
    assert new.ed == 5
    assert sim.stats["total_floors_completed"] == 1
    assert sim.stats["perfect_floors_completed"] == 1


def test_currency_multiplier_and_momentum(sim, make_state, solution):
    golden_touch = _passive("currency_multiplier", params={"factor": 2})
    state = make_state(empty=[(0, 0)], upgrades=[golden_touch])
    state.memory.momentum_stacks = 10
    _load(sim, state, selected=(0, 0))
    assert sim.place_number(solution[0][0]).of == 154


def test_last_floor_is_a_victory(sim, make_state, solution):
    _load(sim, make_state(empty=[(0, 0)], floor=9), selected=(0, 0))
    new = sim.place_number(solution[0][0])
    assert new.phase == Phase.VICTORY
    assert sim.stats["games_won"] == 1
    assert sim.open_shop() is None


def test_shop_visit_purchase_and_reroll(sim, make_state, solution, telemetry):
    wallet = Wallet(order_fragments=2000, entropy_dust=100)
    _load(sim, make_state(empty=[(0, 0)], wallet=wallet), selected=(0, 0))
    sim.place_number(solution[0][0])

    session = sim.open_shop()
    assert 1 <= len(session.offers) <= 3
    assert sim.open_shop() is session
    assert sim.state.shops_opened == 1
    assert "shop_open" in telemetry.names()

    before = sim.state
    rerolled = sim.reroll_shop()
    assert rerolled.reroll_count == 1
    assert sim.state.of == before.of - 25
    assert session.reroll_count == 0

    offer = rerolled.offers[0]
    before = sim.state
    after = sim.purchase_upgrade(offer.id)
    assert after.owns(offer.id)
    assert after.of == before.of - offer.base_cost_of
    assert after.ed == before.ed - offer.base_cost_ed
    assert sim.shop.rerolls_since_purchase == 0
    assert sim.purchase_upgrade(offer.id) is after
    assert sim.stats["total_upgrades_purchased"] == 1

    nxt = sim.skip_shop()
    assert nxt.floor == 2
    assert nxt.phase == Phase.PUZZLE
    assert nxt.owns(offer.id)
    assert sim.shop is None
    assert "shop_skip" in telemetry.names()


def test_purchase_guards(sim, make_state):
    price_anchor = sim.catalog.get("price_anchor")
    shop_state = make_state(phase=Phase.SHOP, upgrades=[_passive("inflation_immunity")])
    shop_state.upgrades[0].id = "price_anchor"
    _load(sim, shop_state)
    sim.shop = ShopSession(floor=1, seed=0, offers=[price_anchor])
    assert sim.purchase_upgrade("price_anchor") is shop_state
    assert sim.purchase_upgrade("not_on_shelf") is shop_state

    poor = make_state(phase=Phase.SHOP)
    _load(sim, poor)
    assert sim.purchase_upgrade("price_anchor") is poor


def test_permanent_mistake_bonus_applies_at_once(sim, make_state):
    buffer = sim.catalog.get("reinforced_buffer")
    state = make_state(phase=Phase.SHOP, wallet=Wallet(order_fragments=500, entropy_dust=50))
    _load(sim, state)
    sim.shop = ShopSession(floor=1, seed=0, offers=[buffer])
    new = sim.purchase_upgrade("reinforced_buffer")
    assert new.max_mistakes == 4
    assert new.ed == 50 - buffer.base_cost_ed


def test_buying_an_owned_consumable_tops_up(sim, make_state):
    purify = sim.catalog.get("purify_global")
    owned = Upgrade(id="purify_global", name="Purify", kind=UpgradeKind.CONSUMABLE,
                    effect=purify.effect, charges=1, max_charges=1)
    state = make_state(phase=Phase.SHOP, upgrades=[owned], wallet=Wallet(order_fragments=500))
    _load(sim, state)
    sim.shop = ShopSession(floor=1, seed=0, offers=[purify])
    new = sim.purchase_upgrade("purify_global")
    assert len(new.upgrades) == 1
    assert new.upgrades[0].charges == 2


def test_reroll_without_funds_is_a_noop(sim, make_state, solution):
    _load(sim, make_state(empty=[(0, 0)]), selected=(0, 0))
    sim.place_number(solution[0][0])
    session = sim.open_shop()
    before = sim.state
    assert sim.reroll_shop(method=RerollMethod.PREMIUM) is session
    assert sim.state is before


def test_restart_game_starts_a_fresh_run(sim, make_state):
    _load(sim, make_state(empty=[(0, 0)], floor=4))
    new = sim.restart_game()
    assert new.floor == 1
    assert new.owns("starter_hint")
    assert sim.stats["total_games_played"] == 2


# -- ambiguity on placement --------------------------------------------------------------

def _ambiguous_row(make_state, upgrades):
    state = make_state(empty=[(0, c) for c in range(9)] + [(8, 8)],
                       upgrades=[_passive("no_spread")] + upgrades)
    cell = state.cells[0][0]
    cell.ambiguous = True
    cell.ambiguity_tier = AmbiguityTier.A2
    state.zones.append(AmbiguityZone(cells=[(0, 0), (0, 1), (0, 2)], tier=AmbiguityTier.A2))
    return state


def test_wrong_guess_in_a2_pocket_corrupts_the_row(sim, make_state, wrong_digit):
    _load(sim, _ambiguous_row(make_state, []), selected=(0, 0))
    new = sim.place_number(wrong_digit(0, 0))
    assert [new.cells[0][c].corruption for c in range(9)] == [1] * 9
    assert new.cells[8][8].corruption == 0
    assert new.corruption == 9


def test_containment_limits_pocket_penalty_to_the_cell(sim, make_state, wrong_digit):
    _load(sim, _ambiguous_row(make_state, [_passive("ambiguity_contain")]), selected=(0, 0))
    new = sim.place_number(wrong_digit(0, 0))
    assert new.cells[0][0].corruption == 1
    assert new.corruption == 1


def test_a2_zone_resolves_with_two_of_three_correct(sim, make_state, solution, wrong_digit):
    coords = [(0, 0), (0, 1), (0, 2)]
    state = make_state(empty=coords + [(8, 8)])
    state.zones.append(AmbiguityZone(cells=list(coords), tier=AmbiguityTier.A2))
    state.cells[0][0].value = solution[0][0]
    state.cells[0][2].value = wrong_digit(0, 2)
    _load(sim, state, selected=(0, 1))

    new = sim.place_number(solution[0][1])
    assert new.zones[0].resolved
    assert not state.zones[0].resolved


def test_digit_upgrade_pays_exactly_one(sim, make_state, solution):
    digit = solution[0][0]
    plus_one = Upgrade(id="plus_one", name="Plus One", kind=UpgradeKind.NUMBER, effect="grant_currency",
                       digit=digit, params={"amount": 1})
    _load(sim, make_state(empty=[(0, 0), (0, 1), (8, 8)], upgrades=[plus_one]), selected=(0, 1))
    assert sim.place_number(solution[0][1]).of == 0
    sim.select_cell(0, 0)
    assert sim.place_number(digit).of == 1


def test_corruption_from_completion_flush_is_checked(sim, make_state, solution, wrong_digit):
    state = make_state(empty=[(0, 0), (0, 1), (0, 2)], modifiers=[_depth(5)])
    state.cells[0][1].corruption = 4
    state.cells[0][2].corruption = 5
    state.corruption = 9
    _load(sim, state, selected=(0, 0))

    sim.place_number(wrong_digit(0, 0))
    sim.place_number(solution[0][0])
    for col in (1, 2):
        sim.select_cell(0, col)
        new = sim.place_number(solution[0][col])
    assert new.mistakes == 1
    assert new.corruption == 10
    assert new.fired_thresholds == [10]
    assert new.phase == Phase.SHOP


# -- consumables and floor transitions -----------------------------------------------------

def test_purifier_on_a_clean_board_keeps_its_charges(sim, make_state):
    purifier = Upgrade(id="purify_global", name="Purifier", kind=UpgradeKind.CONSUMABLE, effect="purify",
                       params={"scope": "global", "max_cells": 3}, charges=2, max_charges=2)
    state = _load(sim, make_state(empty=[(0, 0)], upgrades=[purifier]))
    assert sim.use_consumable("purify_global") is state
    assert state.upgrades[0].charges == 2

    state.cells[0][0].corruption = 3
    new = sim.use_consumable("purify_global")
    assert new.cells[0][0].corruption == 0
    assert new.upgrades[0].charges == 1


def test_rogue_upgrade_fires_once_on_next_floor(sim, make_state):
    rogue = Upgrade(id="rogue_tithe", name="Tithe", kind=UpgradeKind.NUMBER, effect="grant_currency",
                    rarity=Rarity.ROGUE, params={"amount": 7})
    _load(sim, make_state(phase=Phase.SHOP, upgrades=[rogue], wallet=Wallet(order_fragments=20)))
    new = sim.next_floor()
    assert new.floor == 2
    assert new.of == 27
    assert [e.upgrade_id for e in new.applied_effects] == ["rogue_tithe"]


def test_rule_mutators_drain_entropy_on_next_floor(sim, make_state):
    mutators = [
        _passive("no_spread"),
        _passive("degradation_resist"),
    ]
    mutators[0].id = "mutator_quarantine"
    mutators[1].id = "mutator_steady_hand"
    _load(sim, make_state(phase=Phase.SHOP, upgrades=mutators, wallet=Wallet(entropy_dust=10)))
    assert sim.next_floor().ed == 7


def test_reroll_accepts_method_names(sim, make_state, solution):
    wallet = Wallet(order_fragments=500, entropy_dust=50)
    _load(sim, make_state(empty=[(0, 0)], wallet=wallet), selected=(0, 0))
    sim.place_number(solution[0][0])
    session = sim.open_shop()
    ed_before = sim.state.ed

    assert sim.reroll_shop("gold") is session
    rerolled = sim.reroll_shop("ed")
    assert rerolled.reroll_count == 1
    assert sim.state.ed == ed_before - 15
