"""
Engine - Transition Computation Layer

The TransitionEngine is the deterministic core of the workflow ("The Manager"):
given the active state, the context and an event it computes the next state,
the next context and the ordered list of side effects to run. It never runs
those effects, never awaits and never touches the context it was given.
-----------------------------------------------

Rule lookup is hierarchical. The engine tries the rules of the innermost
active state first and falls back to each ancestor in turn, so a rule
declared on a compound state (or at the machine root) applies to every state
nested inside it.

A single event may cause several microsteps: after a transition lands, any
eventless ("always") rules of the new state are taken immediately, inside the
same macrostep.
"""

import copy
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..domain.exceptions import MachineDefinitionError
from ..domain.models import MAX_EVENTLESS_STEPS, MachineDefinition, StateNode, Transition
from ..schemas.events import INIT_EVENT, Event
from .schemas.state_machine import (
    ArmTimer,
    CancelInvocation,
    CancelTimers,
    Effect,
    StartInvocation,
    StateMachineTransition,
    TransitionResult,
)

logger = logging.getLogger(__name__)

Context = Dict[str, Any]


class TransitionEngine:
    def __init__(self, definition: MachineDefinition):
        self.definition = definition

    def initial_state(self, context: Optional[Mapping[str, Any]] = None) -> TransitionResult:
        """
        Enters the machine's initial state.

        `context` is merged over the definition's declared initial context.
        """
        ctx: Context = copy.deepcopy({**self.definition.context, **(context or {})})
        root = self.definition.root
        leaf = self.definition.initial_leaf(root)
        ctx, effects = self._enter(root, leaf, ctx, INIT_EVENT)
        leaf, ctx, effects, _ = self._settle_eventless(leaf, ctx, INIT_EVENT, effects)
        effects = self._net_effects(effects)

        transition_type = (
            StateMachineTransition.EXIT if leaf.terminal else StateMachineTransition.ADVANCE
        )
        return TransitionResult(transition_type, leaf.path, ctx, effects)

    def transition(
        self, value: str, context: Mapping[str, Any], event: Event
    ) -> TransitionResult:
        """
        The pure transition function: (state, context, event) -> TransitionResult.
        """
        leaf = self.definition.get_state(value)
        hold = TransitionResult(StateMachineTransition.HOLD, value, dict(context))

        if leaf.terminal:
            return hold

        selected = self._select(leaf, context, event, lambda node: node.rules_for(event.type))
        if selected is None:
            return hold

        source, rule = selected
        leaf, ctx, effects, moved = self._microstep(leaf, source, rule, dict(context), event)
        leaf, ctx, effects, settled_moved = self._settle_eventless(leaf, ctx, event, effects)
        effects = self._net_effects(effects)

        if leaf.terminal:
            transition_type = StateMachineTransition.EXIT
        elif moved or settled_moved:
            transition_type = StateMachineTransition.ADVANCE
        else:
            transition_type = StateMachineTransition.UPDATE
        return TransitionResult(transition_type, leaf.path, ctx, effects)

    def restore(self, value: str) -> List[Effect]:
        """
        Returns the effects needed to re-arm a state restored from a snapshot.

        Entry actions are not replayed: the restored context already reflects them.
        """
        leaf = self.definition.get_state(value)
        if leaf.is_compound:
            raise MachineDefinitionError(
                f"Cannot restore '{self.definition.id}' into compound state '{value}'."
            )
        effects: List[Effect] = []
        for node in reversed(leaf.lineage()):
            if not node.is_root:
                effects.extend(self._arm(node))
        return effects

    # ==========================================================================
    # Rule Selection (Pure Domain)
    # ==========================================================================

    def _select(
        self,
        leaf: StateNode,
        context: Mapping[str, Any],
        event: Event,
        rules_of: Callable[[StateNode], List[Transition]],
    ) -> Optional[Tuple[StateNode, Transition]]:
        """
        Walks from the innermost state outwards; the first rule whose guard
        passes wins.
        """
        view = MappingProxyType(dict(context))
        for node in leaf.lineage():
            for rule in rules_of(node):
                if rule.guard is None or self.definition.guards[rule.guard](view, event):
                    return node, rule
        return None

    # ==========================================================================
    # State Mutation (The Core Logic)
    # ==========================================================================

    def _microstep(
        self,
        leaf: StateNode,
        source: StateNode,
        rule: Transition,
        ctx: Context,
        event: Event,
    ) -> Tuple[StateNode, Context, List[Effect], bool]:
        # Targetless: actions only.
        if rule.target is None:
            return leaf, self._run_actions(rule.actions, ctx, event), [], False

        target = self.definition.resolve_target(source, rule.target)
        target_leaf = self.definition.initial_leaf(target)

        # Transition into the state we are already in: no exit, no re-entry.
        if target_leaf is leaf:
            return leaf, self._run_actions(rule.actions, ctx, event), [], False

        domain = self._transition_domain(leaf, target)
        effects: List[Effect] = []

        # 1. Exit innermost-first, up to (not including) the domain.
        for node in leaf.lineage():
            if node is domain:
                break
            ctx = self._run_actions(node.exit, ctx, event)
            effects.extend(self._disarm(node))

        # 2. Transition actions.
        ctx = self._run_actions(rule.actions, ctx, event)

        # 3. Enter outermost-first.
        ctx, entry_effects = self._enter(domain, target_leaf, ctx, event)
        effects.extend(entry_effects)

        logger.debug(f"[{self.definition.id}] {leaf.path} -> {target_leaf.path} on {event.type}")
        return target_leaf, ctx, effects, True

    def _settle_eventless(
        self,
        leaf: StateNode,
        ctx: Context,
        event: Event,
        effects: List[Effect],
    ) -> Tuple[StateNode, Context, List[Effect], bool]:
        moved = False
        for _ in range(MAX_EVENTLESS_STEPS):
            if leaf.terminal:
                return leaf, ctx, effects, moved
            selected = self._select(leaf, ctx, event, lambda node: node.always)
            if selected is None:
                return leaf, ctx, effects, moved
            source, rule = selected
            leaf, ctx, step_effects, step_moved = self._microstep(leaf, source, rule, ctx, event)
            effects.extend(step_effects)
            moved = moved or step_moved
        raise MachineDefinitionError(
            f"Eventless transitions of '{self.definition.id}' did not settle "
            f"after {MAX_EVENTLESS_STEPS} steps (stuck near '{leaf.path}')."
        )

    def _enter(
        self, domain: StateNode, target_leaf: StateNode, ctx: Context, event: Event
    ) -> Tuple[Context, List[Effect]]:
        entering = []
        for node in target_leaf.lineage():
            if node is domain:
                break
            entering.append(node)

        effects: List[Effect] = []
        for node in reversed(entering):
            ctx = self._run_actions(node.entry, ctx, event)
            effects.extend(self._arm(node))
        return ctx, effects

    def _transition_domain(self, leaf: StateNode, target: StateNode) -> StateNode:
        """
        Deepest proper ancestor of `target` that also contains `leaf`.

        Targeting an ancestor of the active state therefore exits and re-enters it.
        """
        active = leaf.lineage()
        for node in target.parent.lineage():
            if any(node is a for a in active):
                return node
        return self.definition.root

    def _run_actions(self, names: List[str], ctx: Context, event: Event) -> Context:
        for name in names:
            updates = self.definition.actions[name](MappingProxyType(ctx), event)
            if updates:
                ctx = {**ctx, **updates}
        return ctx

    # ==========================================================================
    # Effect Helpers
    # ==========================================================================

    @staticmethod
    def _arm(node: StateNode) -> List[Effect]:
        effects: List[Effect] = []
        if node.invoke is not None:
            effects.append(StartInvocation(node.path))
        for delay in node.after:
            effects.append(ArmTimer(node.path, delay))
        return effects

    @staticmethod
    def _net_effects(effects: List[Effect]) -> List[Effect]:
        """
        Drops work armed and disarmed within the same macrostep.

        A state entered and left again by eventless rules was never
        observably active, so its invocation and timers must not start.
        """
        net: List[Effect] = []
        for effect in effects:
            if isinstance(effect, CancelInvocation):
                armed = [
                    e for e in net
                    if isinstance(e, StartInvocation) and e.state_path == effect.state_path
                ]
            elif isinstance(effect, CancelTimers):
                armed = [
                    e for e in net
                    if isinstance(e, ArmTimer) and e.state_path == effect.state_path
                ]
            else:
                net.append(effect)
                continue

            if armed:
                net = [e for e in net if not any(e is a for a in armed)]
            else:
                net.append(effect)
        return net

    @staticmethod
    def _disarm(node: StateNode) -> List[Effect]:
        effects: List[Effect] = []
        if node.invoke is not None:
            effects.append(CancelInvocation(node.path))
        if node.after:
            effects.append(CancelTimers(node.path))
        return effects
