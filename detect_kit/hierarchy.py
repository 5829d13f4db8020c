from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

PathLike = Union[str, Path]

ROOT = -1


@dataclass(frozen=True)
class Hierarchy:
    """
    Label taxonomy: `parents[k]` is the parent class of class k (ROOT for top level).

    Class probabilities predicted for a hierarchical model are conditional on the
    parent, so the absolute probability of a class is the product along its path.
    """

    names: Tuple[str, ...]
    parents: Tuple[int, ...]
    _children: Dict[int, Tuple[int, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if len(self.names) != len(self.parents):
            raise ValueError("names and parents must have the same length")
        children: Dict[int, List[int]] = {}
        for k, parent in enumerate(self.parents):
            if parent != ROOT and not 0 <= parent < k:
                raise ValueError(f"class {k} ({self.names[k]!r}) has invalid parent {parent}")
            children.setdefault(parent, []).append(k)
        if ROOT not in children:
            raise ValueError("hierarchy has no root classes")
        object.__setattr__(self, "_children", {p: tuple(c) for p, c in children.items()})

    @property
    def num_classes(self) -> int:
        return len(self.parents)

    def children(self, parent: int) -> Tuple[int, ...]:
        return self._children.get(parent, ())

    def cumulative(self, probs: Sequence[float]) -> List[float]:
        # parents always precede their children, so one forward pass is enough
        out: List[float] = []
        for k, parent in enumerate(self.parents):
            p = float(probs[k])
            out.append(p if parent == ROOT else p * out[parent])
        return out

    def top_prediction(self, probs: Sequence[float], threshold: float) -> Tuple[int, float]:
        """
        Most specific class whose cumulative probability exceeds `threshold`.

        Descends from the root group into the best child while the running
        product stays above the threshold. Returns (class_id, cumulative_prob).
        """

        p = 1.0
        parent = ROOT
        while True:
            group = self.children(parent)
            best = max(group, key=lambda k: probs[k])
            if p * probs[best] > threshold:
                p *= float(probs[best])
                if not self.children(best):
                    return best, p
                parent = best
            elif parent == ROOT:
                return best, p * float(probs[best])
            else:
                return parent, p


def load_hierarchy(path: PathLike) -> Hierarchy:
    """
    Read a tree file: one `name parent_index` line per class, -1 for top level.
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Hierarchy file not found: {p}")

    names: List[str] = []
    parents: List[int] = []
    with p.open("r", encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.rsplit(None, 1)
            if len(parts) != 2:
                raise ValueError(f"{p}:{lineno}: expected 'name parent_index'")
            try:
                parent = int(parts[1])
            except ValueError as exc:
                raise ValueError(f"{p}:{lineno}: parent index must be an integer") from exc
            names.append(parts[0])
            parents.append(parent)

    return Hierarchy(names=tuple(names), parents=tuple(parents))
