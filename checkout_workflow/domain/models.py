"""
Domain Layer - Static Machine Definitions

This module defines the static structure of a workflow machine: its states,
the transitions between them, the asynchronous work bound to a state and the
nested machines a state may delegate to. These dataclasses carry no runtime
data; a MachineInterpreter brings one of them to life with its own context.

Behaviour is referenced by name. Actions and guards live in the registries of
the owning MachineDefinition and are always called with an explicit
(context, event) pair, so definitions stay declarative and free of captured
mutable state.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from .exceptions import MachineDefinitionError

# Returns the fields to replace in the context, or None when nothing changes.
ActionFn = Callable[[Mapping[str, Any], Any], Optional[Mapping[str, Any]]]
GuardFn = Callable[[Mapping[str, Any], Any], bool]
ProjectionFn = Callable[[Mapping[str, Any]], Any]
ServiceFn = Callable[[Any], Awaitable[Any]]

PATH_SEPARATOR = "."
MAX_EVENTLESS_STEPS = 100


@dataclass
class Transition:
    """
    A single candidate branch of a transition rule.

    Rules for one event type are kept as an ordered list of Transitions; the
    first one whose guard passes (or which has no guard) is taken.

    Attributes:
        target: Key or dotted path of the destination state. None makes the
            transition targetless: actions run but the state does not change.
        guard: Name of a guard in the machine's guard registry.
        actions: Names of actions in the machine's action registry, run in order.
    """
    target: Optional[str] = None
    guard: Optional[str] = None
    actions: List[str] = field(default_factory=list)


@dataclass
class Invocation:
    """
    Asynchronous operation started when its owning state is entered.

    Attributes:
        id: Identifier used to build the synthetic done/error event types.
        src: Name of the service (async collaborator) to call.
        input: Projection from the context to the service input.
        on_done: Rules evaluated against the success event.
        on_error: Rules evaluated against the failure event.
    """
    id: str
    src: str
    input: Optional[ProjectionFn] = None
    on_done: List[Transition] = field(default_factory=list)
    on_error: List[Transition] = field(default_factory=list)


@dataclass
class ChildSpec:
    """
    Nested machine run to completion as the invocation of its owning state.

    Attributes:
        id: Identifier used to build the synthetic done/error event types.
        machine: Definition of the child workflow.
        input: Projection from the parent context; merged into the child's
            initial context.
        start_event: Event sent to the child right after it starts, carrying
            the same input as data.
        forward_events: Event types the parent relays to the running child.
        on_done: Rules evaluated when the child reaches a terminal state.
        on_error: Rules evaluated when the child cannot be run at all.
    """
    id: str
    machine: "MachineDefinition"
    input: Optional[ProjectionFn] = None
    start_event: Optional[str] = None
    forward_events: List[str] = field(default_factory=list)
    on_done: List[Transition] = field(default_factory=list)
    on_error: List[Transition] = field(default_factory=list)


InvokeSpec = Union[Invocation, ChildSpec]


def done_event_type(invoke_id: str) -> str:
    return f"done.invoke.{invoke_id}"


def error_event_type(invoke_id: str) -> str:
    return f"error.invoke.{invoke_id}"


def timer_event_type(state_path: str, delay_ms: int) -> str:
    return f"after.{delay_ms}.{state_path}"


@dataclass
class StateNode:
    """
    One node of the state tree.

    A node with child `states` is compound: entering it enters its `initial`
    child. Leaf nodes are the positions a running machine can rest in.

    Attributes:
        entry: Action names run, in order, when the state is entered.
        exit: Action names run, in order, when the state is left.
        on: Transition rules keyed by event type.
        always: Eventless rules checked right after the state is entered.
        after: Delayed rules keyed by delay in milliseconds.
        invoke: At most one Invocation or ChildSpec bound to the state.
        states: Child nodes keyed by their local id.
        initial: Local id of the child entered by default.
        terminal: Reaching this state completes the machine.
        output: Projection from the final context to the machine's output.
    """
    entry: List[str] = field(default_factory=list)
    exit: List[str] = field(default_factory=list)
    on: Dict[str, List[Transition]] = field(default_factory=dict)
    always: List[Transition] = field(default_factory=list)
    after: Dict[int, List[Transition]] = field(default_factory=dict)
    invoke: Optional[InvokeSpec] = None
    states: Dict[str, "StateNode"] = field(default_factory=dict)
    initial: Optional[str] = None
    terminal: bool = False
    output: Optional[ProjectionFn] = None

    # Populated by MachineDefinition when the tree is linked.
    key: str = field(default="", init=False)
    path: str = field(default="", init=False)
    parent: Optional["StateNode"] = field(default=None, init=False, repr=False, compare=False)
    handlers: Dict[str, List[Transition]] = field(default_factory=dict, init=False, repr=False)

    @property
    def is_compound(self) -> bool:
        return bool(self.states)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def lineage(self) -> List["StateNode"]:
        """Returns this node followed by its ancestors, innermost first."""
        nodes = []
        node: Optional[StateNode] = self
        while node is not None:
            nodes.append(node)
            node = node.parent
        return nodes

    def rules_for(self, event_type: str) -> List[Transition]:
        return self.handlers.get(event_type, [])


@dataclass
class MachineDefinition:
    """
    Complete, validated description of a workflow machine.

    Attributes:
        id: Unique machine identifier.
        initial: Key of the top-level state entered on start.
        states: Top-level states keyed by id.
        context: Initial context; copied for every new instance.
        on: Rules that apply in every state (declared at the machine root).
        actions: Action registry (name -> pure context updater).
        guards: Guard registry (name -> pure predicate).
    """
    id: str
    initial: str
    states: Dict[str, StateNode]
    context: Dict[str, Any] = field(default_factory=dict)
    on: Dict[str, List[Transition]] = field(default_factory=dict)
    actions: Dict[str, ActionFn] = field(default_factory=dict)
    guards: Dict[str, GuardFn] = field(default_factory=dict)

    root: StateNode = field(init=False, repr=False)
    _index: Dict[str, StateNode] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self.root = StateNode(on=self.on, states=self.states, initial=self.initial)
        self.root.key = self.id
        self._link(self.root)
        self._validate()

    # ==========================================================================
    # Lookup
    # ==========================================================================

    def get_state(self, path: str) -> StateNode:
        if path not in self._index:
            raise MachineDefinitionError(f"Machine '{self.id}' has no state '{path}'.")
        return self._index[path]

    def has_state(self, path: str) -> bool:
        return path in self._index

    def initial_leaf(self, node: StateNode) -> StateNode:
        """Follows `initial` pointers down from a node to the leaf entered by default."""
        while node.is_compound:
            node = node.states[node.initial]
        return node

    def resolve_target(self, source: StateNode, target: str) -> StateNode:
        """
        Resolves a transition target declared on `source`.

        Targets are looked up as siblings of the source first, then as siblings
        of each ancestor in turn, and finally as a dotted path from the root.
        """
        scopes = [source] if source.is_root else source.parent.lineage()
        for scope in scopes:
            node = self._descend(scope, target)
            if node is not None:
                return node
        raise MachineDefinitionError(
            f"Machine '{self.id}': target '{target}' is not reachable from '{source.path or self.id}'."
        )

    # ==========================================================================
    # Construction
    # ==========================================================================

    def _descend(self, scope: StateNode, target: str) -> Optional[StateNode]:
        node = scope
        for key in target.split(PATH_SEPARATOR):
            node = node.states.get(key)
            if node is None:
                return None
        return node

    def _link(self, node: StateNode):
        for key, child in node.states.items():
            if PATH_SEPARATOR in key:
                raise MachineDefinitionError(f"State key '{key}' must not contain '{PATH_SEPARATOR}'.")
            child.key = key
            child.parent = node
            child.path = key if node.is_root else f"{node.path}{PATH_SEPARATOR}{key}"
            self._index[child.path] = child
            self._link(child)

        handlers: Dict[str, List[Transition]] = {k: list(v) for k, v in node.on.items()}
        if node.invoke is not None:
            handlers[done_event_type(node.invoke.id)] = list(node.invoke.on_done)
            handlers[error_event_type(node.invoke.id)] = list(node.invoke.on_error)
        for delay, rules in node.after.items():
            handlers[timer_event_type(node.path, delay)] = list(rules)
        node.handlers = handlers

    def _validate(self):
        errors = []
        for node in [self.root, *self._index.values()]:
            name = node.path or self.id
            if node.is_compound and node.initial not in node.states:
                errors.append(f"'{name}' declares initial state '{node.initial}' which does not exist.")
            if node.terminal and node.is_compound:
                errors.append(f"Terminal state '{name}' cannot have child states.")
            if node.invoke is not None and any(a.invoke is not None for a in node.lineage()[1:]):
                errors.append(f"'{name}' declares an invocation inside a state that already has one.")
            for delay in node.after:
                if delay < 0:
                    errors.append(f"'{name}' declares a negative delay ({delay}).")

            rules = [t for ts in node.handlers.values() for t in ts] + list(node.always)
            for transition in rules:
                if transition.guard and transition.guard not in self.guards:
                    errors.append(f"'{name}' references unknown guard '{transition.guard}'.")
                for action in transition.actions:
                    if action not in self.actions:
                        errors.append(f"'{name}' references unknown action '{action}'.")
                if transition.target is not None:
                    try:
                        self.resolve_target(node, transition.target)
                    except MachineDefinitionError as e:
                        errors.append(str(e))

            for action in [*node.entry, *node.exit]:
                if action not in self.actions:
                    errors.append(f"'{name}' references unknown action '{action}'.")

        if errors:
            raise MachineDefinitionError(f"Invalid machine '{self.id}':\n" + "\n".join(errors))
