# anchorweb/layout.py
"""
Force-directed 3D layout of entries and anchors.

The engine runs a fixed number of ticks. Each tick sums three forces per
node and integrates them with damped velocities:

    repulsion   every pair closer than the cutoff pushes apart with k / d^2
    attraction  entry-anchor edges pull like springs (anchors move more)
    thematic    entries drift back toward the attractor of their dominant tag

    v <- damping * (v + F * step_gain)
    x <- x + v

Node ids in the output map are prefixed: "entry:<id>" and "anchor:<word>".
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .config import Config
from .graph import log_event

logger = logging.getLogger(__name__)

ENTRY_PREFIX = "entry:"
ANCHOR_PREFIX = "anchor:"

# Rows of the pairwise repulsion computed per block, bounding memory to
# BLOCK * N * 3 floats
REPULSION_BLOCK = 512


# --- Emotional attractors ---
EMOTIONAL_ATTRACTORS: Dict[str, np.ndarray] = {
    "happy": np.array([12.0, 8.0, 5.0]),
    "exciting": np.array([15.0, -3.0, 8.0]),
    "love": np.array([-8.0, 10.0, -6.0]),
    "grateful": np.array([-10.0, -5.0, 10.0]),
    "calm": np.array([5.0, -12.0, -8.0]),
    "sad": np.array([-12.0, 2.0, -10.0]),
    "fear": np.array([-15.0, -8.0, 5.0]),
    "angry": np.array([10.0, 5.0, -12.0]),
    "neutral": np.array([0.0, 0.0, 0.0]),  # untagged
}

EMOTION_PRIORITY = ["love", "happy", "exciting", "grateful", "calm", "sad", "fear", "angry"]


def detect_primary_emotion(tags: Optional[Iterable]) -> str:
    """First emotion (by priority) contained in any tag, else "neutral"."""
    names = [str(getattr(t, "value", t)).lower() for t in tags or []]
    for emotion in EMOTION_PRIORITY:
        for name in names:
            if emotion in name:
                return emotion
    return "neutral"


class LayoutState(Enum):
    UNINITIALIZED = "uninitialized"
    SEEDING = "seeding"
    RELAXING = "relaxing"
    SETTLED = "settled"


SEED_POLICIES = ("attractor", "sphere")


@dataclass
class LayoutConfig:
    max_ticks: int = 240
    repulsion: float = 1.2
    repulsion_cutoff: float = 3.0
    repulsion_stride: int = 1
    min_distance: float = 0.1
    attraction: float = 0.02
    entry_share: float = 0.3
    thematic_strength: float = 0.05
    thematic_deadzone: float = 2.0
    damping: float = 0.88
    step_gain: float = 0.15
    seed_policy: str = "attractor"
    spread: float = 4.0
    jitter: float = 3.0
    scatter_radius: float = 10.0
    seed: Optional[int] = None

    def __post_init__(self):
        if not 0.0 < self.damping < 1.0:
            raise ValueError(f"damping must lie strictly between 0 and 1, got {self.damping}")
        if self.max_ticks < 0:
            raise ValueError("max_ticks must be >= 0")
        if self.min_distance <= 0:
            raise ValueError("min_distance must be > 0")
        if self.repulsion_stride < 1:
            raise ValueError("repulsion_stride must be >= 1")
        if self.seed_policy not in SEED_POLICIES:
            raise ValueError(f"Unknown seed policy '{self.seed_policy}', expected one of {SEED_POLICIES}")

    @classmethod
    def desktop(cls, **overrides) -> "LayoutConfig":
        return cls(**overrides)

    @classmethod
    def mobile(cls, **overrides) -> "LayoutConfig":
        """Shorter run, weaker repulsion and tighter clusters for small screens."""
        params = dict(max_ticks=180, repulsion=0.8, spread=3.0, jitter=2.0)
        params.update(overrides)
        return cls(**params)

    @classmethod
    def from_config(cls, **overrides) -> "LayoutConfig":
        c = Config.layout
        params = dict(
            max_ticks=c.MAX_TICKS,
            repulsion=c.REPULSION,
            repulsion_cutoff=c.REPULSION_CUTOFF,
            repulsion_stride=c.REPULSION_STRIDE,
            min_distance=c.MIN_DISTANCE,
            attraction=c.ATTRACTION,
            entry_share=c.ENTRY_SHARE,
            thematic_strength=c.THEMATIC_STRENGTH,
            thematic_deadzone=c.THEMATIC_DEADZONE,
            damping=c.DAMPING,
            step_gain=c.STEP_GAIN,
            seed_policy=c.SEED_POLICY,
            spread=c.SPREAD,
            jitter=c.JITTER,
            scatter_radius=c.SCATTER_RADIUS,
            seed=Config.core.SEED,
        )
        params.update(overrides)
        return cls(**params)


@dataclass
class LayoutSnapshot:
    """Read-only copy of the graph data a layout run needs."""
    entry_ids: List[str] = field(default_factory=list)
    entry_emotions: List[str] = field(default_factory=list)
    anchor_words: List[str] = field(default_factory=list)
    edges: List[Tuple[int, int]] = field(default_factory=list)  # (entry index, anchor index)

    @classmethod
    def from_graph(cls, graph) -> "LayoutSnapshot":
        entries = list(graph.entries.values())
        words = [node.word for node in graph.all_anchors()]
        anchor_index = {w: i for i, w in enumerate(words)}

        edges = []
        for i, entry in enumerate(entries):
            for noun in entry.nouns:
                j = anchor_index.get(noun)
                if j is None:
                    continue  # dangling edge
                edges.append((i, j))

        return cls(
            entry_ids=[e.entry_id for e in entries],
            entry_emotions=[detect_primary_emotion(e.tags) for e in entries],
            anchor_words=words,
            edges=edges,
        )

    @property
    def node_ids(self) -> List[str]:
        return ([ENTRY_PREFIX + i for i in self.entry_ids]
                + [ANCHOR_PREFIX + w for w in self.anchor_words])


class ForceLayout:
    """
    Tick-based force simulation over one graph snapshot.

    UNINITIALIZED -> SEEDING -> RELAXING -> SETTLED. Positions are readable
    at any tick; abandoning `ticks()` halfway leaves usable partial output.
    """

    def __init__(self, graph, config: Optional[LayoutConfig] = None):
        self.config = config or LayoutConfig.from_config()
        self.snapshot = LayoutSnapshot.from_graph(graph)
        self.node_ids = self.snapshot.node_ids
        self.n_entries = len(self.snapshot.entry_ids)

        self.state = LayoutState.UNINITIALIZED
        self.tick_count = 0
        self.pos = np.zeros((len(self.node_ids), 3))
        self.vel = np.zeros_like(self.pos)
        self._rng = np.random.default_rng(self.config.seed)

        edges = np.array(self.snapshot.edges, dtype=int).reshape(-1, 2)
        self._edge_entries = edges[:, 0]
        self._edge_anchors = edges[:, 1] + self.n_entries
        self._entry_targets = np.array(
            [EMOTIONAL_ATTRACTORS[e] for e in self.snapshot.entry_emotions]
        ).reshape(-1, 3)

    # --- Seeding ---
    def _offset(self, width: float) -> np.ndarray:
        return (self._rng.random(3) - 0.5) * width

    def _scatter(self) -> np.ndarray:
        direction = self._rng.normal(size=3)
        direction /= (np.linalg.norm(direction) + 1e-8)
        return direction * self.config.scatter_radius * self._rng.random() ** (1.0 / 3.0)

    def seed(self, previous: Optional[Dict[str, np.ndarray]] = None):
        """
        Assign initial positions and zero velocities.

        Nodes found in `previous` keep that position (warm start); the rest
        are seeded by the configured policy.
        """
        self.state = LayoutState.SEEDING
        previous = previous or {}
        cfg = self.config
        n = self.n_entries

        for i in range(n):
            node_id = self.node_ids[i]
            if node_id in previous:
                self.pos[i] = np.asarray(previous[node_id], dtype=float)
            elif cfg.seed_policy == "attractor":
                self.pos[i] = self._entry_targets[i] + self._offset(cfg.spread)
            else:
                self.pos[i] = self._scatter()

        members: Dict[int, List[int]] = {}
        for e, a in self.snapshot.edges:
            members.setdefault(a, []).append(e)

        for a in range(len(self.snapshot.anchor_words)):
            k = n + a
            node_id = self.node_ids[k]
            if node_id in previous:
                self.pos[k] = np.asarray(previous[node_id], dtype=float)
            elif a in members:
                centroid = self.pos[members[a]].mean(axis=0)
                self.pos[k] = centroid + self._offset(cfg.jitter)
            else:
                self.pos[k] = self._scatter()

        self.vel[:] = 0.0
        self.tick_count = 0
        self.state = LayoutState.RELAXING if cfg.max_ticks > 0 else LayoutState.SETTLED

    # --- Forces ---
    def _repulsion(self) -> np.ndarray:
        cfg = self.config
        pos = self.pos
        n = len(pos)
        forces = np.zeros_like(pos)
        if n < 2 or cfg.repulsion == 0:
            return forces

        cols = np.arange(n)
        for start in range(0, n, REPULSION_BLOCK):
            rows = np.arange(start, min(start + REPULSION_BLOCK, n))
            delta = pos[rows, None, :] - pos[None, :, :]         # [B, N, 3], j -> i
            raw = np.linalg.norm(delta, axis=-1)                  # [B, N]
            dist = np.maximum(raw, cfg.min_distance)

            gap = np.abs(rows[:, None] - cols[None, :])
            mask = (gap > 0) & (gap % cfg.repulsion_stride == 0) & (dist < cfg.repulsion_cutoff)

            strength = np.where(mask, cfg.repulsion / dist ** 2, 0.0)
            # Coincident nodes have no direction and get no push
            unit = delta / np.where(raw > 0, raw, 1.0)[..., None]
            forces[rows] = (unit * strength[..., None]).sum(axis=1)
        return forces

    def _edge_attraction(self) -> np.ndarray:
        cfg = self.config
        forces = np.zeros_like(self.pos)
        if len(self._edge_entries) == 0 or cfg.attraction == 0:
            return forces

        # Magnitude attraction * d along anchor -> entry
        pull = (self.pos[self._edge_entries] - self.pos[self._edge_anchors]) * cfg.attraction
        np.add.at(forces, self._edge_anchors, pull)
        np.add.at(forces, self._edge_entries, -pull * cfg.entry_share)
        return forces

    def _thematic_attraction(self) -> np.ndarray:
        cfg = self.config
        forces = np.zeros_like(self.pos)
        if self.n_entries == 0 or cfg.thematic_strength == 0:
            return forces

        delta = self._entry_targets - self.pos[:self.n_entries]
        dist = np.linalg.norm(delta, axis=1)
        active = dist > cfg.thematic_deadzone
        forces[:self.n_entries][active] = cfg.thematic_strength * delta[active]
        return forces

    def net_forces(self) -> np.ndarray:
        return self._repulsion() + self._edge_attraction() + self._thematic_attraction()

    # --- Integration ---
    def tick(self) -> bool:
        """Advance one tick. Returns False once the tick budget is spent."""
        if self.state == LayoutState.UNINITIALIZED:
            self.seed()
        if self.state != LayoutState.RELAXING:
            return False

        cfg = self.config
        forces = self.net_forces()
        self.vel = cfg.damping * (self.vel + forces * cfg.step_gain)
        self.pos += self.vel
        self.tick_count += 1

        if self.tick_count >= cfg.max_ticks:
            self.state = LayoutState.SETTLED
            log_event("LAYOUT", f"Settled after {self.tick_count} ticks",
                      {"nodes": len(self.node_ids), "energy": f"{self.kinetic_energy():.6f}"})
        return True

    def ticks(self) -> Iterator[int]:
        """Yield the tick number after each tick; stop iterating to cancel."""
        while self.tick():
            yield self.tick_count

    def run(self, previous: Optional[Dict[str, np.ndarray]] = None) -> Dict[str, np.ndarray]:
        if self.state == LayoutState.UNINITIALIZED or previous is not None:
            self.seed(previous)
        for _ in self.ticks():
            pass
        return self.positions()

    # --- Introspection ---
    def positions(self) -> Dict[str, np.ndarray]:
        return {node_id: self.pos[i].copy() for i, node_id in enumerate(self.node_ids)}

    def kinetic_energy(self) -> float:
        return float(0.5 * np.sum(self.vel ** 2))


def layout(graph, config: Optional[LayoutConfig] = None,
           previous: Optional[Dict[str, np.ndarray]] = None) -> Dict[str, np.ndarray]:
    """Seed and relax a full layout of `graph`, returning node id -> position."""
    engine = ForceLayout(graph, config)
    return engine.run(previous)


def split_positions(positions: Dict[str, np.ndarray]) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
    """Separate a layout map into (entry positions, anchor positions) with bare keys."""
    entries, anchors = {}, {}
    for node_id, p in positions.items():
        if node_id.startswith(ENTRY_PREFIX):
            entries[node_id[len(ENTRY_PREFIX):]] = p
        elif node_id.startswith(ANCHOR_PREFIX):
            anchors[node_id[len(ANCHOR_PREFIX):]] = p
    return entries, anchors
