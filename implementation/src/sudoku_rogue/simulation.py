from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from sudoku_rogue import ambiguity, corruption, modifiers
from sudoku_rogue.catalog import OfferCatalog, load_catalog
from sudoku_rogue.config import EngineConfig
from sudoku_rogue.effects import TARGETED_EFFECTS, EffectDelta, apply_delta, context_for, dispatch
from sudoku_rogue.floors import difficulty_for_floor, modifiers_for_floor
from sudoku_rogue.generator import generate_puzzle
from sudoku_rogue.grid import box_index, in_bounds, is_complete, values_of
from sudoku_rogue.save import (
    JsonProgressStore,
    MemoryProgressStore,
    ProgressStore,
    record_defeat,
    record_floor_completed,
    record_game_started,
    record_upgrade_purchased,
    record_victory,
    update_achievements,
)
from sudoku_rogue import shop
from sudoku_rogue.state import EffectMemory, GameState
from sudoku_rogue.store import Wallet
from sudoku_rogue.telemetry import (
    POWERUP_APPLIED,
    POWERUP_EFFECT_RESULT,
    SHOP_OPEN,
    SHOP_PITY_TRIGGERED,
    SHOP_PURCHASE,
    SHOP_REROLL,
    SHOP_SKIP,
    LoggingTelemetrySink,
    TelemetrySink,
    safe_emit,
)
from sudoku_rogue.types import (
    AmbiguityTier,
    AppliedEffect,
    ModifierType,
    MoveRecord,
    OfferType,
    Phase,
    RerollMethod,
    ShopOffer,
    ShopSession,
    Upgrade,
    UpgradeKind,
)
from sudoku_rogue.upgrades import (
    CORRUPT_GOLD_PER_MISTAKE,
    Passive,
    find_upgrade,
    golden_digits,
    has_passive,
    max_mistake_bonus,
    neutralize_mistakes,
    number_upgrades_for,
    rogue_upgrades,
    start_shield_charges,
    upgrade_from_offer,
    use_charge,
    with_effect,
)

logger = logging.getLogger(__name__)

STARTER_UPGRADE_ID = "starter_hint"
DISTORTION_LOCK_TURNS = 3


def _default_store(config: EngineConfig) -> ProgressStore:
    if config.progress_dir:
        return JsonProgressStore(Path(config.progress_dir))
    return MemoryProgressStore()


@dataclass
class Simulation:
    """Turn-resolution engine and the command surface a UI drives.

    Every command works on a clone of the current GameState and publishes the
    clone, so a state handed out earlier never changes underneath its holder.
    Illegal commands log the reason and return the current state unchanged.

    place_number pipeline:
    1. Guards (phase, selection, fixed/locked cell, locked box)
    2. Record the move and queue it for validation
    3. Forced lock duration and corruption distortion; recent-hide window
    4. Tick outstanding cell locks
    5. Delayed validation of the oldest surplus moves (mistakes, spread)
    6. Corruption degradation
    7. Threshold events on upward boundary crossings
    8. Ambiguity penalty and zone resolution
    9. Upgrade dispatch for correct placements
    10. Completion / game over
    """
    config: EngineConfig = field(default_factory=EngineConfig)
    catalog: Optional[OfferCatalog] = None
    progress: Optional[ProgressStore] = None
    telemetry: TelemetrySink = field(default_factory=LoggingTelemetrySink)
    clock: Callable[[], float] = time.monotonic
    rng: Optional[random.Random] = None
    run_seed: Optional[int] = None

    state: GameState = field(init=False)
    shop: Optional[ShopSession] = field(init=False, default=None)
    stats: Dict[str, Any] = field(init=False, default_factory=dict)
    achievements: List[Dict[str, Any]] = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        if self.catalog is None:
            self.catalog = load_catalog()
        if self.progress is None:
            self.progress = _default_store(self.config)
        if self.rng is None:
            self.rng = random.Random(self.config.seed)
        self.stats = self.progress.load_stats()
        self.achievements = self.progress.load_achievements()
        self.state = self._start_run(self.run_seed)

    # -- lifecycle -------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def _publish(self, state: GameState) -> GameState:
        self.state = state
        return state

    def _starter_upgrade(self) -> Optional[Upgrade]:
        offer = self.catalog.get(self.config.starter_consumable)
        if offer is None:
            logger.warning(f"[engine] starter consumable '{self.config.starter_consumable}' not in catalog")
            return None
        upgrade = upgrade_from_offer(offer, self.rng)
        upgrade.id = STARTER_UPGRADE_ID
        upgrade.charges = upgrade.max_charges = self.config.starter_charges
        return upgrade

    def _start_run(self, run_seed: Optional[int] = None) -> GameState:
        seed = run_seed if run_seed is not None else self.rng.randint(1, 999_999)
        wallet = Wallet()
        wallet.add_order_fragments(self.config.starting_order_fragments)
        wallet.add_entropy_dust(self.config.starting_entropy_dust)
        starter = self._starter_upgrade()
        upgrades = [starter] if starter is not None else []
        self.shop = None
        self._save_progress(record_game_started(self.stats))
        logger.info(f"[engine] new run, seed {seed}")
        return self._build_floor(1, wallet, upgrades, EffectMemory(), seed, shops_opened=0, shops_since_rare=0)

    def _build_floor(
        self,
        floor: int,
        wallet: Wallet,
        upgrades: List[Upgrade],
        memory: EffectMemory,
        run_seed: int,
        shops_opened: int,
        shops_since_rare: int,
        run_mistakes: int = 0,
    ) -> GameState:
        now = self.clock()
        floor_modifiers = modifiers_for_floor(floor, self.rng)
        puzzle, solution = generate_puzzle(difficulty_for_floor(floor), self.rng)
        cells, zones = modifiers.build_floor_grid(puzzle, solution, floor_modifiers, self.rng)
        wallet.start_floor()

        state = GameState(
            floor=floor,
            cells=cells,
            solution=solution,
            max_floors=self.config.max_floors,
            max_mistakes=self.config.base_max_mistakes + max_mistake_bonus(upgrades),
            run_mistakes=run_mistakes,
            wallet=wallet,
            upgrades=upgrades,
            modifiers=floor_modifiers,
            zones=zones,
            shield_charges=start_shield_charges(upgrades),
            forced_bifurcation=modifiers.find_modifier(floor_modifiers, ModifierType.FORCED_BIFURCATION) is not None,
            floor_started_at=now,
            memory=memory.for_new_floor(),
            run_seed=run_seed,
            shops_opened=shops_opened,
            shops_since_rare=shops_since_rare,
        )
        if modifiers.find_modifier(floor_modifiers, ModifierType.TIMED_HIDE) is not None:
            state.timed_hide_box = self.rng.randrange(9)
            state.timed_hide_since = now
            state.timed_hidden = modifiers.hide_box(state.cells, state.timed_hide_box)
        if modifiers.find_modifier(floor_modifiers, ModifierType.CANDIDATE_SHUFFLE) is not None:
            state.last_shuffle_at = now

        for upgrade in rogue_upgrades(state.upgrades):
            self._run_effect(state, upgrade, target=None, digit=upgrade.digit, trigger="floor_start")
        ambiguity.check_resolution(state.zones, state.cells, state.solution)
        state.corruption = corruption.total_corruption(state.cells)
        logger.info(f"[engine] floor {floor} ready: {len(floor_modifiers)} modifiers, {len(zones)} zones")
        return state

    def restart_game(self) -> GameState:
        if self.state.phase in (Phase.PUZZLE, Phase.SHOP):
            self._save_progress(record_defeat(self.stats))
        return self._publish(self._start_run())

    def next_floor(self) -> GameState:
        state = self.state
        if state.phase != Phase.SHOP:
            logger.info(f"[engine] next_floor ignored in phase {state.phase.value}")
            return state
        old = state.clone()
        drain = 0
        for upgrade in old.upgrades:
            offer = self.catalog.get(upgrade.id)
            if offer is not None:
                drain += offer.entropy_drain_per_floor
        if drain:
            old.wallet.entropy_dust = max(0, old.wallet.entropy_dust - drain)
        self.shop = None
        new = self._build_floor(
            old.floor + 1,
            old.wallet,
            old.upgrades,
            old.memory,
            old.run_seed,
            shops_opened=old.shops_opened,
            shops_since_rare=old.shops_since_rare,
            run_mistakes=old.run_mistakes,
        )
        return self._publish(new)

    # -- puzzle commands -----------------------------------------------------------

    def select_cell(self, row: int, col: int) -> GameState:
        state = self.state
        if state.phase != Phase.PUZZLE:
            return state
        if not in_bounds(row, col) or state.cells[row][col].fixed:
            logger.debug(f"[engine] select ({row},{col}) ignored")
            return state
        new = state.clone()
        new.selected = (row, col)
        return self._publish(new)

    def _placement_block(self, state: GameState, digit: int) -> Optional[str]:
        if state.phase != Phase.PUZZLE or state.complete or state.game_over:
            return f"phase {state.phase.value}"
        if state.selected is None:
            return "no cell selected"
        if not 1 <= digit <= 9:
            return f"digit {digit} out of range"
        row, col = state.selected
        cell = state.cells[row][col]
        if cell.fixed:
            return "cell is fixed"
        if cell.locked:
            return f"cell locked for {cell.lock_turns} turns"
        if box_index(row, col) in state.locked_boxes:
            return "box is locked"
        return None

    def place_number(self, digit: int) -> GameState:
        state = self.state
        reason = self._placement_block(state, digit)
        if reason:
            logger.info(f"[engine] placement rejected: {reason}")
            return state

        new = state.clone()
        row, col = new.selected
        cell = new.cells[row][col]
        previous_total = new.corruption

        # Step 2: record
        new.turn += 1
        move = MoveRecord(row=row, col=col, value=digit, turn=new.turn, previous_value=cell.value)
        new.move_history.append(move)
        new.pending.append(move)

        # Step 3: lockout / distortion from the cell's corruption before the move
        lock = modifiers.lockout_turns(new.modifiers)
        distortion = corruption.distortion_for(cell.corruption, self.rng)
        if distortion.lock:
            lock = max(lock, DISTORTION_LOCK_TURNS)
        cell.value = digit
        cell.correct = True
        if distortion.hide:
            cell.hidden = True
        if distortion.bifurcation:
            new.forced_bifurcation = True
        recent = modifiers.find_modifier(new.modifiers, ModifierType.RECENT_HIDE)
        if recent is not None:
            window = modifiers.recent_cells(new.move_history, new.turn, int(recent.intensity))
            modifiers.apply_recent_hide(new.cells, new.recent_hidden, window)
            new.recent_hidden = window

        # Step 4: outstanding locks tick before the new one lands
        modifiers.tick_locks(new.cells)
        if lock:
            cell.lock_turns = lock

        # Step 5: delayed validation
        self._validate(new, self._due_moves(new))

        # Step 6: degradation
        corruption.degrade(
            new.cells,
            self.rng,
            resist=has_passive(new.upgrades, Passive.DEGRADATION_RESIST),
            shield=has_passive(new.upgrades, Passive.CORRUPTION_SHIELD),
        )

        # Step 7: thresholds
        self._resolve_thresholds(new, previous_total)

        # Step 8: ambiguity
        correct = digit == new.solution[row][col]
        suppressed = modifiers.is_validation_suppressed(new.modifiers, row, col)
        if not correct and cell.ambiguous and cell.ambiguity_tier != AmbiguityTier.NONE and not suppressed:
            if has_passive(new.upgrades, Passive.AMBIGUITY_CONTAIN):
                ambiguity.spread_ambiguity_corruption(new.cells, row, col, AmbiguityTier.A1)
            else:
                ambiguity.spread_ambiguity_corruption(new.cells, row, col, cell.ambiguity_tier)
            logger.info(f"[engine] wrong guess in {cell.ambiguity_tier.value} pocket at ({row},{col})")
        ambiguity.check_resolution(new.zones, new.cells, new.solution)

        # Step 9: upgrades
        if correct:
            golden = golden_digits(new.upgrades).count(digit)
            if golden:
                new.wallet.add_order_fragments(golden)
            for upgrade in number_upgrades_for(new.upgrades, digit):
                self._run_effect(new, upgrade, target=(row, col), digit=digit)
            ambiguity.check_resolution(new.zones, new.cells, new.solution)

        # Step 10
        self._finish_turn(new, previous_total)
        return self._publish(new)

    def clear_cell(self) -> GameState:
        state = self.state
        if state.phase != Phase.PUZZLE or state.selected is None:
            return state
        row, col = state.selected
        cell = state.cells[row][col]
        if cell.fixed or cell.locked or cell.value is None or box_index(row, col) in state.locked_boxes:
            logger.info(f"[engine] clear ({row},{col}) rejected")
            return state
        new = state.clone()
        new.cells[row][col].value = None
        new.cells[row][col].correct = True
        return self._publish(new)

    def toggle_candidate(self, digit: int) -> GameState:
        state = self.state
        if state.phase != Phase.PUZZLE or state.selected is None or not 1 <= digit <= 9:
            return state
        row, col = state.selected
        cell = state.cells[row][col]
        if cell.fixed or cell.value is not None:
            return state
        new = state.clone()
        target = new.cells[row][col]
        if digit in target.candidates:
            target.candidates = [d for d in target.candidates if d != digit]
        else:
            target.candidates = sorted(target.candidates + [digit])
        return self._publish(new)

    def use_consumable(self, upgrade_id: str) -> GameState:
        state = self.state
        if state.phase != Phase.PUZZLE or state.complete or state.game_over:
            return state
        upgrade = find_upgrade(state.upgrades, upgrade_id)
        if upgrade is None or upgrade.kind != UpgradeKind.CONSUMABLE or not upgrade.charges:
            logger.info(f"[engine] consumable '{upgrade_id}' unavailable")
            return state
        if upgrade.effect in TARGETED_EFFECTS:
            if state.selected is None or state.cells[state.selected[0]][state.selected[1]].fixed:
                logger.info(f"[engine] consumable '{upgrade_id}' needs a selected open cell")
                return state

        new = state.clone()
        previous_total = new.corruption
        owned = find_upgrade(new.upgrades, upgrade_id)
        delta = self._run_effect(new, owned, target=new.selected, digit=None, trigger="consumable")
        if delta.empty:
            logger.info(f"[engine] consumable '{upgrade_id}' had nothing to do; charge kept")
            return state
        use_charge(new.upgrades, owned)
        ambiguity.check_resolution(new.zones, new.cells, new.solution)
        self._finish_turn(new, previous_total)
        return self._publish(new)

    def tick(self, now: Optional[float] = None) -> GameState:
        """Re-check timer-driven modifiers; the caller decides how often."""
        state = self.state
        if state.phase != Phase.PUZZLE:
            return state
        now = self.clock() if now is None else now
        new: Optional[GameState] = None

        hide = modifiers.find_modifier(state.modifiers, ModifierType.TIMED_HIDE)
        if hide is not None and state.timed_hide_since is not None:
            if now - state.timed_hide_since >= hide.duration_ms / 1000.0:
                new = state.clone()
                if new.timed_hide_box is not None:
                    modifiers.unhide_cells(new.cells, new.timed_hidden)
                    new.timed_hide_box = None
                    new.timed_hidden = []
                else:
                    new.timed_hide_box = self.rng.randrange(9)
                    new.timed_hidden = modifiers.hide_box(new.cells, new.timed_hide_box)
                new.timed_hide_since = now

        if not has_passive(state.upgrades, Passive.FLOW_STATE) and state.last_shuffle_at is not None:
            for shuffle in state.modifiers:
                if shuffle.type != ModifierType.CANDIDATE_SHUFFLE:
                    continue
                if now - state.last_shuffle_at >= shuffle.cooldown_ms / 1000.0:
                    new = new or state.clone()
                    modifiers.shuffle_candidates(new.cells, shuffle.regions, self.rng)
                    new.last_shuffle_at = now

        return self._publish(new) if new is not None else state

    # -- turn internals ------------------------------------------------------------

    def _due_moves(self, new: GameState) -> List[MoveRecord]:
        depth = modifiers.validation_depth(new.modifiers)
        if depth <= 1:
            due, new.pending = new.pending, []
            return due
        if len(new.pending) < depth:
            return []
        surplus = len(new.pending) - depth + 1
        due, new.pending = new.pending[:surplus], new.pending[surplus:]
        return due

    def _validate(self, new: GameState, moves: List[MoveRecord]) -> None:
        wrong: List[MoveRecord] = []
        for move in moves:
            move.validated = True
            move.correct = move.value == new.solution[move.row][move.col]
            cell = new.cells[move.row][move.col]
            if cell.value == move.value and not cell.fixed:
                shown = move.correct
                if modifiers.is_signal_inverted(new.modifiers, move.row, move.col):
                    shown = not shown
                cell.correct = shown
            if not move.correct:
                wrong.append(move)
        if not wrong:
            return

        mistakes_before = new.mistakes
        if has_passive(new.upgrades, Passive.CORRUPT_GOLD):
            new.wallet.add_order_fragments(CORRUPT_GOLD_PER_MISTAKE * len(wrong))
        remaining = neutralize_mistakes(new.upgrades, len(wrong))
        absorbed = min(new.shield_charges, remaining)
        new.shield_charges -= absorbed
        remaining -= absorbed
        new.mistakes += remaining
        new.run_mistakes += remaining
        logger.info(f"[engine] validated {len(moves)} moves: {len(wrong)} wrong, {remaining} counted")

        if has_passive(new.upgrades, Passive.NO_SPREAD):
            return
        if has_passive(new.upgrades, Passive.FIRST_MISTAKE_SAFE) and mistakes_before == 0:
            logger.info("[engine] first mistake of the floor contained")
            return
        for move in wrong:
            corruption.spread(
                new.cells, move.row, move.col, new.mistakes, self.rng,
                base=self.config.spread_base_cells, cap=self.config.spread_max_cells,
            )

    def _resolve_thresholds(self, new: GameState, previous: int) -> None:
        current = corruption.total_corruption(new.cells)
        new.corruption = current
        crossed = corruption.crossed_boundaries(previous, current, new.fired_thresholds)
        if not crossed:
            return
        new.fired_thresholds.extend(crossed)
        outcome = corruption.apply_thresholds(
            new.cells, crossed, new.locked_boxes, self.rng,
            wipe_immune=has_passive(new.upgrades, Passive.WIPE_IMMUNITY),
        )
        new.corruption = corruption.total_corruption(new.cells)
        if outcome.loss:
            self._defeat(new, "corruption")

    def _finish_turn(self, new: GameState, previous_total: int) -> None:
        # Covers corruption added after the threshold pass (ambiguity, effects).
        self._resolve_thresholds(new, max(previous_total, new.corruption))
        if new.phase == Phase.DEFEAT:
            return
        if is_complete(values_of(new.cells), new.solution):
            self._validate(new, new.pending)
            new.pending = []
            self._resolve_thresholds(new, new.corruption)
            if new.phase == Phase.DEFEAT:
                return
            if new.mistakes >= new.max_mistakes:
                self._defeat(new, "mistakes")
                return
            self._complete_floor(new)
            return
        if new.mistakes >= new.max_mistakes:
            self._defeat(new, "mistakes")

    def _complete_floor(self, new: GameState) -> None:
        reward = self.config.floor_reward_base + self.config.floor_reward_per_floor * new.floor
        for upgrade in with_effect(new.upgrades, Passive.CURRENCY_MULTIPLIER.value):
            reward *= int(upgrade.params.get("factor", 2))
        reward += reward * new.memory.momentum_stacks // 100
        new.wallet.add_order_fragments(reward)
        new.wallet.add_entropy_dust(self.config.ed_reward_per_floor)
        new.complete = True
        elapsed = max(0.0, self.clock() - new.floor_started_at)
        stats = record_floor_completed(self.stats, new.floor, reward, new.mistakes, elapsed)
        if new.floor >= new.max_floors:
            new.phase = Phase.VICTORY
            stats = record_victory(stats)
            logger.info(f"[engine] run won on floor {new.floor}")
        else:
            new.phase = Phase.SHOP
            logger.info(f"[engine] floor {new.floor} complete, +{reward} OF")
        self._save_progress(stats, new.run_mistakes)

    def _defeat(self, new: GameState, reason: str) -> None:
        if new.phase == Phase.DEFEAT:
            return
        new.phase = Phase.DEFEAT
        new.game_over = True
        new.loss_reason = reason
        logger.info(f"[engine] run lost on floor {new.floor}: {reason}")
        self._save_progress(record_defeat(self.stats), new.run_mistakes)

    def _run_effect(self, new: GameState, upgrade: Upgrade, target, digit: Optional[int],
                    trigger: str = "placement") -> EffectDelta:
        ctx = context_for(new, upgrade, self.rng, target=target, digit=digit)
        delta = dispatch(upgrade.effect, ctx)
        apply_delta(new, delta)
        new.applied_effects.append(AppliedEffect(upgrade.id, upgrade.effect, new.turn, delta.message))
        safe_emit(self.telemetry, POWERUP_EFFECT_RESULT, {
            "upgrade_id": upgrade.id,
            "effect": upgrade.effect,
            "trigger": trigger,
            "applied": not delta.empty,
            "fallback": delta.fallback,
            "message": delta.message,
            "floor": new.floor,
        })
        return delta

    def _save_progress(self, stats: Dict[str, Any], run_mistakes: int = 0) -> None:
        self.stats = stats
        self.achievements = update_achievements(self.achievements, stats, run_mistakes)
        self.progress.save_stats(self.stats)
        self.progress.save_achievements(self.achievements)

    # -- shop commands ---------------------------------------------------------------

    def _owned_ids(self, state: GameState) -> List[str]:
        return [u.id for u in state.upgrades]

    def open_shop(self) -> Optional[ShopSession]:
        state = self.state
        if state.phase != Phase.SHOP:
            logger.info(f"[shop] cannot open shop in phase {state.phase.value}")
            return None
        if self.shop is not None:
            return self.shop
        new = state.clone()
        pity = shop.pity_rarity(0, new.shops_since_rare)
        session = shop.create_session(
            self.catalog, new.floor, new.run_seed, self._owned_ids(new), new.shops_since_rare,
        )
        new.shops_opened += 1
        new.shops_since_rare = 0 if shop.has_rare(session.offers) else new.shops_since_rare + 1
        self.shop = session
        self._publish(new)
        safe_emit(self.telemetry, SHOP_OPEN, {
            "floor": new.floor,
            "seed": session.seed,
            "offers": [o.id for o in session.offers],
        })
        if pity is not None:
            safe_emit(self.telemetry, SHOP_PITY_TRIGGERED, {"floor": new.floor, "rarity": pity.name})
        return session

    def reroll_shop(self, method: Union[str, RerollMethod] = RerollMethod.OF) -> Optional[ShopSession]:
        state = self.state
        session = self.shop
        try:
            method = RerollMethod(method)
        except ValueError:
            logger.info(f"[shop] unknown reroll method {method!r}")
            return session
        if state.phase != Phase.SHOP or session is None:
            logger.info("[shop] reroll ignored: shop not open")
            return session
        immune = has_passive(state.upgrades, Passive.INFLATION_IMMUNITY)
        cost_of, cost_ed = shop.reroll_price(session, method, state.corruption, immune)
        if not state.wallet.can_afford(cost_of, cost_ed):
            logger.info(f"[shop] reroll ({method.value}) rejected: needs {cost_of} OF / {cost_ed} ED")
            return session

        new = state.clone()
        new.wallet.spend(cost_of, cost_ed)
        guarantee = shop.reroll_guarantee(method)
        rerolled = shop.reroll(session, self.catalog, new.run_seed, self._owned_ids(new),
                               new.shops_since_rare, guarantee)
        if shop.has_rare(rerolled.offers):
            new.shops_since_rare = 0
        self.shop = rerolled
        self._publish(new)
        safe_emit(self.telemetry, SHOP_REROLL, {
            "floor": new.floor,
            "method": method.value,
            "cost_of": cost_of,
            "cost_ed": cost_ed,
            "reroll_count": rerolled.reroll_count,
            "offers": [o.id for o in rerolled.offers],
        })
        pity = shop.pity_rarity(rerolled.rerolls_since_purchase, state.shops_since_rare, guarantee)
        if pity is not None:
            safe_emit(self.telemetry, SHOP_PITY_TRIGGERED, {"floor": new.floor, "rarity": pity.name})
        return rerolled

    def purchase_upgrade(self, offer: Union[str, ShopOffer]) -> GameState:
        state = self.state
        session = self.shop
        offer_id = offer if isinstance(offer, str) else offer.id
        if state.phase != Phase.SHOP or session is None:
            logger.info(f"[shop] purchase of '{offer_id}' ignored: shop not open")
            return state
        listed = next((o for o in session.offers if o.id == offer_id), None)
        if listed is None:
            logger.info(f"[shop] '{offer_id}' is not on the shelf")
            return state
        if offer_id in session.purchased_ids:
            logger.info(f"[shop] '{offer_id}' already bought this visit")
            return state
        if state.owns(offer_id) and listed.type != OfferType.CONSUMABLE:
            logger.info(f"[shop] '{offer_id}' already owned")
            return state
        immune = has_passive(state.upgrades, Passive.INFLATION_IMMUNITY)
        cost_of, cost_ed = shop.offer_price(listed, state.corruption, immune)
        if not state.wallet.can_afford(cost_of, cost_ed):
            logger.info(f"[shop] cannot afford '{offer_id}': {cost_of} OF / {cost_ed} ED")
            return state

        new = state.clone()
        new.wallet.spend(cost_of, cost_ed)
        upgrade = upgrade_from_offer(listed, self.rng, cost=cost_of)
        stocked = find_upgrade(new.upgrades, offer_id)
        if stocked is not None:
            # Same consumable again tops up its charges.
            stocked.charges = (stocked.charges or 0) + (upgrade.charges or 1)
            stocked.max_charges = max(stocked.max_charges or 0, stocked.charges)
            upgrade = stocked
        else:
            new.upgrades.append(upgrade)
        if upgrade.effect == Passive.MAX_MISTAKES.value:
            new.max_mistakes += int(upgrade.params.get("amount", 1))
        self.shop = shop.record_purchase(session, offer_id)
        self._save_progress(record_upgrade_purchased(self.stats), new.run_mistakes)
        safe_emit(self.telemetry, SHOP_PURCHASE, {
            "floor": new.floor,
            "offer_id": offer_id,
            "rarity": listed.rarity.name,
            "cost_of": cost_of,
            "cost_ed": cost_ed,
        })
        safe_emit(self.telemetry, POWERUP_APPLIED, {
            "upgrade_id": upgrade.id,
            "effect": upgrade.effect,
            "kind": upgrade.kind.value,
            "digit": upgrade.digit,
        })
        return self._publish(new)

    def skip_shop(self) -> GameState:
        if self.state.phase != Phase.SHOP:
            return self.state
        safe_emit(self.telemetry, SHOP_SKIP, {
            "floor": self.state.floor,
            "purchased": list(self.shop.purchased_ids) if self.shop else [],
        })
        return self.next_floor()
